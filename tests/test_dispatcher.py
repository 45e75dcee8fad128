from __future__ import annotations

import pytest

from xcbot.errors import DeliveryError
from xcbot.feed import Flight
from xcbot.notifications import FanOutDispatcher

FLIGHT = Flight(
    flight_id="https://www.xcontest.org/switzerland/en/flights/detail:alice/1.5.2021/10:23",
    pilot_handle="alice",
    summary="01.05.21 [87.12 km :: free_flight] Alice",
)


async def _subscribe(db, username: str, pilot: str = "alice", usertype: str = "telegram") -> None:
    user = await db.find_or_create_user(username, usertype)
    await db.add_subscription(user.id, pilot)


def _dispatcher(db, messenger, max_attempts: int = 3) -> FanOutDispatcher:
    return FanOutDispatcher(db=db, messenger=messenger, max_attempts=max_attempts, backoff_seconds=0)


@pytest.mark.asyncio
async def test_transient_failures_then_success_counts_as_delivered(db, messenger) -> None:
    await _subscribe(db, "bob")
    messenger.fail("bob", DeliveryError("timeout"), DeliveryError("network"))

    report = await _dispatcher(db, messenger).dispatch(FLIGHT)

    assert report.delivered == ["bob"]
    assert report.dropped == []
    assert report.outcomes[0].attempts == 3
    assert len(messenger.messages_to("bob")) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_do_not_affect_other_recipients(db, messenger) -> None:
    await _subscribe(db, "bob")
    await _subscribe(db, "carol")
    messenger.fail("bob", *[DeliveryError("down") for _ in range(3)])

    report = await _dispatcher(db, messenger).dispatch(FLIGHT)

    assert report.dropped == ["bob"]
    assert report.delivered == ["carol"]
    assert messenger.attempts["bob"] == 3
    assert messenger.messages_to("bob") == []
    assert len(messenger.messages_to("carol")) == 1


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried(db, messenger) -> None:
    await _subscribe(db, "bob")
    messenger.fail("bob", DeliveryError("chat not found", transient=False))

    report = await _dispatcher(db, messenger).dispatch(FLIGHT)

    assert report.dropped == ["bob"]
    assert messenger.attempts["bob"] == 1


@pytest.mark.asyncio
async def test_only_subscribers_of_the_pilot_are_notified(db, messenger) -> None:
    await _subscribe(db, "bob")
    await _subscribe(db, "dave", pilot="zoe")

    await _dispatcher(db, messenger).dispatch(FLIGHT)

    assert len(messenger.messages_to("bob")) == 1
    assert "alice" in messenger.messages_to("bob")[0]
    assert messenger.messages_to("dave") == []


@pytest.mark.asyncio
async def test_subscribers_of_other_messengers_are_skipped(db, messenger) -> None:
    await _subscribe(db, "ECHOECHO", usertype="threema")

    report = await _dispatcher(db, messenger).dispatch(FLIGHT)

    assert report.outcomes == []
    assert messenger.sent == []


@pytest.mark.asyncio
async def test_submit_runs_in_background_until_drained(db, messenger) -> None:
    await _subscribe(db, "bob")
    dispatcher = _dispatcher(db, messenger)

    dispatcher.submit(FLIGHT)
    assert dispatcher.pending == 1

    await dispatcher.drain()

    assert dispatcher.pending == 0
    assert len(messenger.messages_to("bob")) == 1
