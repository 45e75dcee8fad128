"""
Messenger gateway.
Wraps the outbound side of a chat backend behind a small interface so the
dispatcher and the command handlers do not depend on Telegram directly.
"""

import asyncio
import logging
from typing import Protocol

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TelegramError

from ..errors import DeliveryError

logger = logging.getLogger(__name__)


class Messenger(Protocol):
    """Outbound messaging capability."""

    # Messenger kind tag stored as users.usertype
    kind: str

    async def send(self, recipient: str, text: str) -> None:
        """
        Deliver a text message.

        Raises:
            DeliveryError: transient or permanent delivery failure
        """
        ...


class TelegramMessenger:
    """Messenger backed by the Telegram Bot API."""

    kind = "telegram"

    def __init__(self, bot: Bot, timeout_seconds: float = 15):
        """
        Initialize the messenger.

        Args:
            bot: Telegram bot instance
            timeout_seconds: Upper bound for one delivery attempt
        """
        self.bot = bot
        self.timeout_seconds = timeout_seconds

    async def send(self, recipient: str, text: str) -> None:
        """Send a MarkdownV2 message to a Telegram chat."""
        try:
            await asyncio.wait_for(
                self.bot.send_message(
                    chat_id=recipient,
                    text=text,
                    parse_mode=ParseMode.MARKDOWN_V2
                ),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"Timed out sending to {recipient}", transient=True) from e
        except (Forbidden, BadRequest) as e:
            # Blocked bot, unknown chat or malformed message: retrying won't help
            raise DeliveryError(f"Rejected message to {recipient}: {e}", transient=False) from e
        except RetryAfter as e:
            raise DeliveryError(f"Rate limited sending to {recipient}: {e}", transient=True) from e
        except NetworkError as e:
            raise DeliveryError(f"Network error sending to {recipient}: {e}", transient=True) from e
        except TelegramError as e:
            raise DeliveryError(f"Telegram error sending to {recipient}: {e}", transient=True) from e

        logger.debug(f"Message sent to {recipient}")
