"""
Fan-out of new flights to subscribers.
Each (flight, subscriber) delivery runs independently with its own retries.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

import pytz

from .messenger import Messenger
from .templates import MessageTemplates
from ..database import Database, User
from ..errors import DeliveryError
from ..feed import Flight

logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
    """Result of delivering one flight to one subscriber."""
    recipient: str
    delivered: bool
    attempts: int
    error: Optional[str] = None


@dataclass
class DispatchReport:
    """Summary of one flight's fan-out."""
    flight: Flight
    outcomes: List[DeliveryOutcome] = field(default_factory=list)

    @property
    def delivered(self) -> List[str]:
        return [o.recipient for o in self.outcomes if o.delivered]

    @property
    def dropped(self) -> List[str]:
        return [o.recipient for o in self.outcomes if not o.delivered]


class FanOutDispatcher:
    """
    Delivers flight notifications to every subscriber of the flight's pilot.

    Delivery logic:
    - Subscribers are resolved when the flight is dispatched, not when
      it was fetched
    - Transient failures are retried with exponential backoff
      (backoff_seconds, 2 * backoff_seconds, ...) up to max_attempts
    - Permanent failures are logged and not retried
    - A failing recipient never affects the other recipients
    """

    def __init__(
        self,
        db: Database,
        messenger: Messenger,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        timezone: pytz.BaseTzInfo = pytz.UTC
    ):
        """
        Initialize the dispatcher.

        Args:
            db: Database instance
            messenger: Outbound messenger
            max_attempts: Delivery attempts per recipient
            backoff_seconds: Delay before the first retry, doubled afterwards
            timezone: Timezone for notification timestamps
        """
        self.db = db
        self.messenger = messenger
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.timezone = timezone
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of flights still being dispatched in the background."""
        return len(self._tasks)

    def submit(self, flight: Flight) -> asyncio.Task:
        """
        Start dispatching a flight in the background.

        Tasks are created in call order, so flights submitted in feed
        order start delivering in feed order.
        """
        task = asyncio.create_task(self.dispatch(flight), name=f"dispatch:{flight.flight_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Dispatch task {task.get_name()} failed: {error}")

    async def drain(self) -> None:
        """Wait until all background dispatches have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel background dispatches (used on shutdown)."""
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    async def dispatch(self, flight: Flight) -> DispatchReport:
        """
        Notify all current subscribers of the flight's pilot.

        Args:
            flight: Newly discovered flight

        Returns:
            Report of delivered and dropped recipients
        """
        report = DispatchReport(flight=flight)
        subscribers = await self.db.subscribers_of(flight.pilot_handle)
        recipients = self._filter_recipients(subscribers)

        if not recipients:
            logger.debug(f"No subscribers for {flight.pilot_handle}, flight {flight.flight_id}")
            return report

        message = MessageTemplates.format_flight_message(flight, self.timezone)
        logger.info(
            f"Notifying {len(recipients)} subscriber(s) of {flight.pilot_handle} "
            f"about flight {flight.flight_id}"
        )

        results = await asyncio.gather(
            *(self._deliver(user.username, message, flight) for user in recipients),
            return_exceptions=True
        )

        for user, result in zip(recipients, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected error notifying {user.username}: {result!r}")
                report.outcomes.append(DeliveryOutcome(
                    recipient=user.username,
                    delivered=False,
                    attempts=0,
                    error=repr(result)
                ))
            else:
                report.outcomes.append(result)

        logger.info(
            f"Flight {flight.flight_id}: delivered={len(report.delivered)}, "
            f"dropped={len(report.dropped)}"
        )
        return report

    def _filter_recipients(self, subscribers: List[User]) -> List[User]:
        recipients = []
        for user in subscribers:
            if user.usertype != self.messenger.kind:
                logger.warning(
                    f"Unsupported notification channel {user.usertype} for user {user.username}"
                )
                continue
            recipients.append(user)
        return recipients

    async def _deliver(self, recipient: str, text: str, flight: Flight) -> DeliveryOutcome:
        """Deliver to one recipient, retrying transient failures."""
        last_error: Optional[DeliveryError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.messenger.send(recipient, text)
                if attempt > 1:
                    logger.info(f"Delivered flight {flight.flight_id} to {recipient} on attempt {attempt}")
                return DeliveryOutcome(recipient=recipient, delivered=True, attempts=attempt)
            except DeliveryError as e:
                last_error = e

                if not e.transient:
                    logger.error(f"Permanent delivery error for {recipient}: {e}")
                    return DeliveryOutcome(
                        recipient=recipient, delivered=False, attempts=attempt, error=str(e)
                    )

                if attempt >= self.max_attempts:
                    break

                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Delivery to {recipient} failed (attempt {attempt}/{self.max_attempts}): {e}; "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        logger.warning(
            f"Dropping notification about flight {flight.flight_id} for {recipient} "
            f"after {self.max_attempts} attempts: {last_error}"
        )
        return DeliveryOutcome(
            recipient=recipient,
            delivered=False,
            attempts=self.max_attempts,
            error=str(last_error)
        )
