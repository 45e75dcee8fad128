"""
Chat command interpreter.
Parses inbound text messages, applies them to the subscription store and
produces the reply text. Independent of the messenger transport.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterable, Optional

from .. import __version__
from ..database import Database, User, SubscriptionResult, RemovalResult
from ..errors import CommandParseError, StoreUnavailable
from ..notifications import MessageTemplates

logger = logging.getLogger(__name__)

# Accepted spellings (including the original German ones) per command
COMMAND_ALIASES = {
    "help": "help",
    "start": "help",
    "version": "version",
    "follow": "follow",
    "folge": "follow",
    "add": "follow",
    "stop": "stop",
    "stopp": "stop",
    "remove": "stop",
    "list": "list",
    "liste": "list",
    "github": "github",
    "stats": "stats",
}


@dataclass(frozen=True)
class ParsedCommand:
    """A command token and its (possibly empty) argument."""
    name: str
    argument: str


def parse_command(text: str) -> ParsedCommand:
    """
    Split a message into command and argument.

    The command is the first whitespace-delimited token, lower-cased. A
    leading "/" and a "@botname" suffix are dropped so Telegram-style
    commands work too. The rest of the message, trimmed, is the argument.
    An empty message is treated as "help".
    """
    parts = (text or "").strip().split(None, 1)
    if not parts:
        return ParsedCommand(name="help", argument="")

    token = parts[0].lower()
    if token.startswith("/"):
        token = token[1:].split("@", 1)[0]
    argument = parts[1].strip() if len(parts) > 1 else ""
    return ParsedCommand(name=token, argument=argument)


def validate_pilot(command: ParsedCommand) -> str:
    """
    Return the pilot handle of a follow/stop command.

    Raises:
        CommandParseError: With the usage reply if the handle is missing or invalid
    """
    canonical = COMMAND_ALIASES.get(command.name)
    pilot = command.argument

    if canonical == "follow":
        if not pilot:
            raise CommandParseError(MessageTemplates.format_follow_usage())
        if any(ch.isspace() for ch in pilot):
            raise CommandParseError(MessageTemplates.format_follow_usage(
                "The XContest username must not contain spaces!"
            ))
    elif not pilot:
        raise CommandParseError(MessageTemplates.format_stop_usage())

    return pilot


class CommandInterpreter:
    """
    Handles chat commands from all senders.

    Messages from different senders are processed concurrently. Messages
    from the same sender are processed one at a time in arrival order.
    """

    def __init__(
        self,
        db: Database,
        messenger_kind: str,
        admin_identities: Iterable[str] = (),
        version: str = __version__
    ):
        """
        Initialize the interpreter.

        Args:
            db: Database instance
            messenger_kind: Tag stored as usertype for new users
            admin_identities: Senders allowed to use admin commands
            version: Version string reported by the version command
        """
        self.db = db
        self.messenger_kind = messenger_kind
        self.admin_identities = {str(identity) for identity in admin_identities}
        self.version = version
        self._sender_locks: Dict[str, asyncio.Lock] = {}
        self._sender_waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def _serialized(self, sender: str) -> AsyncIterator[None]:
        """Serialize processing per sender; locks are dropped when idle."""
        lock = self._sender_locks.setdefault(sender, asyncio.Lock())
        self._sender_waiters[sender] = self._sender_waiters.get(sender, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._sender_waiters[sender] -= 1
            if self._sender_waiters[sender] == 0:
                del self._sender_waiters[sender]
                del self._sender_locks[sender]

    async def handle(
        self,
        sender: str,
        text: str,
        nickname: Optional[str] = None
    ) -> Optional[str]:
        """
        Process one inbound message.

        Args:
            sender: Sender identity on the messenger
            text: Message body
            nickname: Display name of the sender, if known

        Returns:
            Reply text, or None if no reply should be sent (store failure)
        """
        async with self._serialized(sender):
            logger.info(f"Incoming message from {sender}: {text!r}")
            try:
                user = await self.db.find_or_create_user(sender, self.messenger_kind)
                return await self._dispatch(user, parse_command(text), nickname)
            except CommandParseError as e:
                return str(e)
            except StoreUnavailable as e:
                logger.error(f"Store unavailable while handling message from {sender}: {e}")
                return None

    async def _dispatch(
        self,
        user: User,
        command: ParsedCommand,
        nickname: Optional[str]
    ) -> str:
        canonical = COMMAND_ALIASES.get(command.name)

        if canonical == "stats" and user.username not in self.admin_identities:
            canonical = None

        if canonical == "help":
            return MessageTemplates.format_help_message()
        if canonical == "version":
            return MessageTemplates.format_version_message(self.version)
        if canonical == "github":
            return MessageTemplates.format_github_message()
        if canonical == "follow":
            return await self._handle_follow(user, validate_pilot(command))
        if canonical == "stop":
            return await self._handle_stop(user, validate_pilot(command))
        if canonical == "list":
            return await self._handle_list(user)
        if canonical == "stats":
            return await self._handle_stats(user)

        logger.debug(f"Unknown command: {command.name!r}")
        name = (nickname or "").strip() or user.username
        return MessageTemplates.format_unknown_command(command.name, name)

    async def _handle_follow(self, user: User, pilot: str) -> str:
        result = await self.db.add_subscription(user.id, pilot)
        if result is SubscriptionResult.CREATED:
            return MessageTemplates.format_now_following(pilot)
        return MessageTemplates.format_already_following(pilot)

    async def _handle_stop(self, user: User, pilot: str) -> str:
        result = await self.db.remove_subscription(user.id, pilot)
        if result is RemovalResult.REMOVED:
            return MessageTemplates.format_stopped_following(pilot)
        return MessageTemplates.format_was_not_following(pilot)

    async def _handle_list(self, user: User) -> str:
        pilots = await self.db.list_subscriptions(user.id)
        return MessageTemplates.format_subscription_list(pilots)

    async def _handle_stats(self, user: User) -> str:
        logger.info(f"Received stats request from admin {user.username}")
        stats = await self.db.get_stats()
        return MessageTemplates.format_stats_message(stats)
