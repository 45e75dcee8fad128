"""Chat command handlers module."""

from .commands import CommandInterpreter, ParsedCommand, parse_command
from .telegram import TelegramHandlers

__all__ = ["CommandInterpreter", "ParsedCommand", "parse_command", "TelegramHandlers"]
