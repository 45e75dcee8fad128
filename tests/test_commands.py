from __future__ import annotations

import asyncio

import pytest

from xcbot import __version__
from xcbot.handlers import CommandInterpreter, parse_command
from xcbot.notifications import MessageTemplates


def _interpreter(db, admins=()) -> CommandInterpreter:
    return CommandInterpreter(db=db, messenger_kind="telegram", admin_identities=admins)


async def _subscriptions(db, username: str) -> list[str]:
    user = await db.find_or_create_user(username, "telegram")
    return await db.list_subscriptions(user.id)


def test_parse_command_is_case_insensitive_and_trims_argument() -> None:
    command = parse_command("  FOLLOW   alice  ")
    assert command.name == "follow"
    assert command.argument == "alice"


def test_parse_command_accepts_telegram_slash_commands() -> None:
    command = parse_command("/Follow@XcBot chrigel")
    assert command.name == "follow"
    assert command.argument == "chrigel"


def test_parse_command_empty_message_means_help() -> None:
    assert parse_command("   ").name == "help"


@pytest.mark.asyncio
async def test_follow_from_new_user_creates_user_and_subscription(db) -> None:
    interpreter = _interpreter(db)

    reply = await interpreter.handle("carol", "FOLLOW alice")

    assert reply == MessageTemplates.format_now_following("alice")
    assert reply != MessageTemplates.format_already_following("alice")
    assert (await db.get_stats()).user_count == 1
    assert await _subscriptions(db, "carol") == ["alice"]

    again = await interpreter.handle("carol", "follow alice")
    assert again == MessageTemplates.format_already_following("alice")
    assert await _subscriptions(db, "carol") == ["alice"]


@pytest.mark.asyncio
async def test_stop_without_argument_replies_usage_and_changes_nothing(db) -> None:
    interpreter = _interpreter(db)
    await interpreter.handle("bob", "follow alice")

    reply = await interpreter.handle("bob", "stop")

    assert reply == MessageTemplates.format_stop_usage()
    assert await _subscriptions(db, "bob") == ["alice"]


@pytest.mark.asyncio
async def test_follow_without_argument_replies_usage(db) -> None:
    reply = await _interpreter(db).handle("bob", "follow   ")

    assert reply == MessageTemplates.format_follow_usage()
    assert await _subscriptions(db, "bob") == []


@pytest.mark.asyncio
async def test_follow_rejects_handles_with_spaces(db) -> None:
    reply = await _interpreter(db).handle("bob", "follow Chrigel Maurer")

    assert "must not contain spaces" in reply
    assert await _subscriptions(db, "bob") == []


@pytest.mark.asyncio
async def test_follow_list_stop_list_roundtrip(db) -> None:
    interpreter = _interpreter(db)

    await interpreter.handle("bob", "follow alice")
    listed = await interpreter.handle("bob", "list")
    stopped = await interpreter.handle("bob", "stop alice")
    listed_after = await interpreter.handle("bob", "list")

    assert "alice" in listed
    assert stopped == MessageTemplates.format_stopped_following("alice")
    assert "alice" not in listed_after
    assert listed_after == MessageTemplates.format_subscription_list([])


@pytest.mark.asyncio
async def test_stop_unknown_pilot_reports_not_following(db) -> None:
    reply = await _interpreter(db).handle("bob", "stopp zoe")

    assert reply == MessageTemplates.format_was_not_following("zoe")


@pytest.mark.asyncio
async def test_list_is_newline_joined_and_sorted(db) -> None:
    interpreter = _interpreter(db)
    for pilot in ("zoe", "alice", "mike"):
        await interpreter.handle("bob", f"add {pilot}")

    reply = await interpreter.handle("bob", "liste")

    assert reply.endswith("• alice\n• mike\n• zoe")


@pytest.mark.asyncio
async def test_help_creates_user_for_first_time_sender(db) -> None:
    reply = await _interpreter(db).handle("dave", "help")

    assert reply == MessageTemplates.format_help_message()
    assert (await db.get_stats()).user_count == 1


@pytest.mark.asyncio
async def test_version_reports_package_version(db) -> None:
    reply = await _interpreter(db).handle("bob", "version")

    assert reply == MessageTemplates.format_version_message(__version__)


@pytest.mark.asyncio
async def test_unknown_command_names_command_and_points_to_help(db) -> None:
    reply = await _interpreter(db).handle("bob", "fly alice", nickname="Bobby")

    assert "fly" in reply
    assert "help" in reply
    assert "Bobby" in reply


@pytest.mark.asyncio
async def test_unknown_command_without_nickname_uses_identity(db) -> None:
    reply = await _interpreter(db).handle("bob", "hello")

    assert "Hi bob" in reply


@pytest.mark.asyncio
async def test_stats_is_only_available_to_admins(db) -> None:
    interpreter = _interpreter(db, admins=["admin"])
    await interpreter.handle("bob", "follow alice")
    await db.mark_processed("F1", "alice")

    admin_reply = await interpreter.handle("admin", "stats")
    user_reply = await interpreter.handle("bob", "stats")

    assert "Users: 2" in admin_reply
    assert "Subscriptions: 1" in admin_reply
    assert "Flights: 1" in admin_reply
    assert "Unknown command" in user_reply


@pytest.mark.asyncio
async def test_same_sender_commands_apply_in_arrival_order(db) -> None:
    interpreter = _interpreter(db)

    replies = await asyncio.gather(
        interpreter.handle("bob", "follow alice"),
        interpreter.handle("bob", "stop alice"),
        interpreter.handle("bob", "follow zoe"),
    )

    assert replies == [
        MessageTemplates.format_now_following("alice"),
        MessageTemplates.format_stopped_following("alice"),
        MessageTemplates.format_now_following("zoe"),
    ]
    assert await _subscriptions(db, "bob") == ["zoe"]


@pytest.mark.asyncio
async def test_store_failure_produces_no_reply(tmp_path) -> None:
    from xcbot.database import Database

    closed = Database(str(tmp_path / "never-opened.db"))

    assert await _interpreter(closed).handle("bob", "list") is None
