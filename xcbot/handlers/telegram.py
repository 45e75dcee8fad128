"""
Telegram inbound adapter.
Feeds text messages from Telegram updates into the command interpreter
and sends the reply back to the sender.
"""

import logging

from telegram import Update
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from .commands import CommandInterpreter
from ..errors import DeliveryError
from ..notifications import Messenger

logger = logging.getLogger(__name__)


class TelegramHandlers:
    """Routes Telegram text messages to the command interpreter."""

    def __init__(self, interpreter: CommandInterpreter, messenger: Messenger):
        """
        Initialize handlers.

        Args:
            interpreter: Command interpreter
            messenger: Messenger used for replies
        """
        self.interpreter = interpreter
        self.messenger = messenger

    def register(self, application: Application) -> None:
        """Register the message handler on a Telegram application."""
        # Commands ("/follow x") and plain text ("follow x") are both accepted
        application.add_handler(
            MessageHandler(filters.TEXT & filters.ChatType.PRIVATE, self.message_handler)
        )
        logger.debug("Message handler registered")

    async def message_handler(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle one inbound text message."""
        message = update.effective_message
        chat = update.effective_chat
        if message is None or chat is None or not message.text:
            return

        user = update.effective_user
        nickname = user.first_name if user else None
        sender = str(chat.id)

        reply = await self.interpreter.handle(sender, message.text, nickname=nickname)
        if reply is None:
            return

        try:
            await self.messenger.send(sender, reply)
        except DeliveryError as e:
            logger.error(f"Could not send reply to {sender}: {e}")
