from __future__ import annotations

import pytest

from xcbot.errors import FeedUnavailable, StoreUnavailable
from xcbot.feed import Flight
from xcbot.notifications import FanOutDispatcher
from xcbot.poller import FlightPoller, PollScheduler, PollState


def _flight(flight_id: str, pilot: str) -> Flight:
    return Flight(flight_id=flight_id, pilot_handle=pilot, summary=f"Flight {flight_id} by {pilot}")


def _poller(db, feed, messenger) -> FlightPoller:
    dispatcher = FanOutDispatcher(db=db, messenger=messenger, max_attempts=3, backoff_seconds=0)
    return FlightPoller(feed=feed, db=db, dispatcher=dispatcher)


async def _follow(db, username: str, pilot: str) -> None:
    user = await db.find_or_create_user(username, "telegram")
    await db.add_subscription(user.id, pilot)


@pytest.mark.asyncio
async def test_new_flight_is_notified_exactly_once(db, feed, messenger) -> None:
    await _follow(db, "bob", "alice")
    feed.flights = [_flight("F1", "alice")]
    poller = _poller(db, feed, messenger)

    first = await poller.run_cycle()
    await poller.dispatcher.drain()

    assert [f.flight_id for f in first.new_flights] == ["F1"]
    assert len(messenger.messages_to("bob")) == 1
    assert "F1" in messenger.messages_to("bob")[0]

    second = await poller.run_cycle()
    await poller.dispatcher.drain()

    assert second.new_flights == []
    assert second.skipped == 1
    assert len(messenger.sent) == 1


@pytest.mark.asyncio
async def test_flight_is_not_sent_to_non_subscribers(db, feed, messenger) -> None:
    await _follow(db, "bob", "alice")
    await _follow(db, "carol", "zoe")
    feed.flights = [_flight("F1", "alice")]
    poller = _poller(db, feed, messenger)

    await poller.run_cycle()
    await poller.dispatcher.drain()

    assert len(messenger.messages_to("bob")) == 1
    assert messenger.messages_to("carol") == []


@pytest.mark.asyncio
async def test_new_flights_keep_feed_order(db, feed, messenger) -> None:
    feed.flights = [_flight("F3", "alice"), _flight("F1", "zoe"), _flight("F2", "alice")]
    await db.mark_processed("F1", "zoe")
    poller = _poller(db, feed, messenger)

    result = await poller.run_cycle()
    await poller.dispatcher.drain()

    assert result.fetched == 3
    assert [f.flight_id for f in result.new_flights] == ["F3", "F2"]
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_feed_failure_skips_cycle_without_raising(db, feed, messenger) -> None:
    feed.error = FeedUnavailable("connection refused")
    poller = _poller(db, feed, messenger)

    result = await poller.run_cycle()

    assert not result.ok
    assert result.new_flights == []
    assert poller.state is PollState.IDLE
    assert poller.last_poll_at is not None

    # The next cycle works again once the feed is back
    feed.error = None
    feed.flights = [_flight("F1", "alice")]
    result = await poller.run_cycle()
    await poller.dispatcher.drain()
    assert result.ok
    assert [f.flight_id for f in result.new_flights] == ["F1"]


@pytest.mark.asyncio
async def test_store_failure_stops_filtering_but_dispatches_marked_flights(
    db, feed, messenger, monkeypatch
) -> None:
    await _follow(db, "bob", "alice")
    feed.flights = [_flight("F1", "alice"), _flight("F2", "alice"), _flight("F3", "alice")]
    mark_processed = db.mark_processed
    calls = []

    async def flaky_mark(flight_id, pilot, discovered_at=None):
        calls.append(flight_id)
        if len(calls) == 2:
            raise StoreUnavailable("database is locked")
        return await mark_processed(flight_id, pilot, discovered_at)

    monkeypatch.setattr(db, "mark_processed", flaky_mark)
    poller = _poller(db, feed, messenger)

    result = await poller.run_cycle()
    await poller.dispatcher.drain()

    assert result.ok is False
    assert "locked" in result.error
    assert [f.flight_id for f in result.new_flights] == ["F1"]
    assert calls == ["F1", "F2"]
    assert poller.state is PollState.IDLE
    assert len(messenger.messages_to("bob")) == 1
    assert "F1" in messenger.messages_to("bob")[0]
    assert not await db.is_processed("F2")


@pytest.mark.asyncio
async def test_follow_before_dispatch_is_honored(db, feed, messenger) -> None:
    feed.flights = [_flight("F1", "alice")]
    poller = _poller(db, feed, messenger)

    await poller.run_cycle()
    # Subscribers are resolved when the background dispatch runs
    await _follow(db, "bob", "alice")
    await poller.dispatcher.drain()

    # Either outcome is allowed; a later flight is always seen
    assert len(messenger.messages_to("bob")) <= 1

    feed.flights = [_flight("F2", "alice")]
    await poller.run_cycle()
    await poller.dispatcher.drain()
    assert any("F2" in text for text in messenger.messages_to("bob"))


@pytest.mark.asyncio
async def test_scheduler_registers_single_instance_job(db, feed, messenger) -> None:
    scheduler = PollScheduler(_poller(db, feed, messenger), interval_minutes=5)

    scheduler.start(run_immediately=False)
    try:
        assert scheduler.running
        job = scheduler.scheduler.get_job(PollScheduler.JOB_ID)
        assert job is not None
        assert job.max_instances == 1
    finally:
        scheduler.shutdown()

    assert not scheduler.running
