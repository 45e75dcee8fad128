"""
Deduplicating flight poller.
Periodically fetches the flight feed, marks unseen flights as processed and
hands them to the fan-out dispatcher.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Protocol

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .database import Database, MarkResult
from .errors import FeedUnavailable, StoreUnavailable
from .feed import Flight
from .notifications import FanOutDispatcher

logger = logging.getLogger(__name__)


class FlightFeed(Protocol):
    """Source of currently published flights."""

    async def fetch_flights(self) -> List[Flight]:
        ...


class PollState(Enum):
    """Phase of the current poll cycle."""
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    DISPATCHING = "dispatching"


@dataclass
class CycleResult:
    """Outcome of one poll cycle."""
    fetched: int = 0
    new_flights: List[Flight] = field(default_factory=list)
    skipped: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FlightPoller:
    """
    Runs single poll cycles.

    Cycle: Idle → Fetching → Filtering → Dispatching → Idle

    A flight is marked as processed before it is dispatched. A crash after
    marking can lose a notification but never causes a duplicate one.
    """

    def __init__(
        self,
        feed: FlightFeed,
        db: Database,
        dispatcher: FanOutDispatcher,
        timezone: pytz.BaseTzInfo = pytz.UTC
    ):
        self.feed = feed
        self.db = db
        self.dispatcher = dispatcher
        self.timezone = timezone
        self.state = PollState.IDLE
        self.last_poll_at: Optional[datetime] = None

    async def run_cycle(self) -> CycleResult:
        """
        Run one fetch/filter/dispatch cycle.

        Feed and store failures abort the cycle and are reported in the
        result instead of being raised.
        """
        result = CycleResult()
        self.last_poll_at = datetime.now(self.timezone)

        try:
            self.state = PollState.FETCHING
            try:
                flights = await self.feed.fetch_flights()
            except FeedUnavailable as e:
                logger.error(f"Feed unavailable, skipping cycle: {e}")
                result.error = str(e)
                return result
            result.fetched = len(flights)

            self.state = PollState.FILTERING
            try:
                for flight in flights:
                    outcome = await self.db.mark_processed(
                        flight.flight_id, flight.pilot_handle, datetime.now(self.timezone)
                    )
                    if outcome is MarkResult.ALREADY_PROCESSED:
                        result.skipped += 1
                        continue
                    result.new_flights.append(flight)
            except StoreUnavailable as e:
                # Flights marked so far are still dispatched below
                logger.error(f"Store unavailable while filtering flights: {e}")
                result.error = str(e)

            self.state = PollState.DISPATCHING
            for flight in result.new_flights:
                logger.info(f"New flight by {flight.pilot_handle}: {flight.flight_id}")
                self.dispatcher.submit(flight)

            logger.debug(
                f"Poll cycle done: fetched={result.fetched}, new={len(result.new_flights)}, "
                f"skipped={result.skipped}"
            )
            return result
        finally:
            self.state = PollState.IDLE


class PollScheduler:
    """
    Owns the periodic poll job.

    At most one cycle runs at a time: if a tick fires while a cycle is still
    fetching or filtering, that tick is skipped. Dispatches started by a
    previous cycle run in the background and never block the next tick.
    """

    JOB_ID = "flight_poll"

    def __init__(
        self,
        poller: FlightPoller,
        interval_minutes: int,
        timezone: pytz.BaseTzInfo = pytz.UTC
    ):
        self.poller = poller
        self.interval_minutes = interval_minutes
        self.timezone = timezone
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def start(self, run_immediately: bool = True) -> None:
        """Create the scheduler and register the poll job."""
        if self.running:
            logger.warning("Poll scheduler is already running")
            return

        job_options = {}
        if run_immediately:
            job_options["next_run_time"] = datetime.now(self.timezone)

        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.scheduler.add_job(
            self._scheduled_poll,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=self.JOB_ID,
            name="Periodic flight poll",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_options
        )
        self.scheduler.start()

        logger.debug(f"Scheduler configured: flight poll every {self.interval_minutes} minutes")

    def shutdown(self) -> None:
        """Stop the scheduler without waiting for a running cycle."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

    async def _scheduled_poll(self) -> None:
        """Scheduled job to poll the feed once."""
        logger.debug("Running scheduled flight poll")
        try:
            await self.poller.run_cycle()
        except Exception as e:
            logger.exception(f"Error in scheduled flight poll: {e}")
