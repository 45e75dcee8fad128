from __future__ import annotations

from typing import Optional

import pytest
import pytest_asyncio

from xcbot.database import Database
from xcbot.errors import DeliveryError, FeedUnavailable
from xcbot.feed import Flight


class FakeMessenger:
    """Records sent messages; per-recipient errors can be queued up front."""

    kind = "telegram"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.attempts: dict[str, int] = {}
        self.failures: dict[str, list[DeliveryError]] = {}

    def fail(self, recipient: str, *errors: DeliveryError) -> None:
        self.failures.setdefault(recipient, []).extend(errors)

    async def send(self, recipient: str, text: str) -> None:
        self.attempts[recipient] = self.attempts.get(recipient, 0) + 1
        pending = self.failures.get(recipient)
        if pending:
            raise pending.pop(0)
        self.sent.append((recipient, text))

    def messages_to(self, recipient: str) -> list[str]:
        return [text for to, text in self.sent if to == recipient]


class FakeFeed:
    def __init__(self) -> None:
        self.flights: list[Flight] = []
        self.error: Optional[FeedUnavailable] = None
        self.calls = 0

    async def fetch_flights(self) -> list[Flight]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.flights)


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "xcbot.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()
