"""Notification module for the XC Bot."""

from .dispatcher import FanOutDispatcher, DispatchReport, DeliveryOutcome
from .messenger import Messenger, TelegramMessenger
from .templates import MessageTemplates

__all__ = [
    "FanOutDispatcher",
    "DispatchReport",
    "DeliveryOutcome",
    "Messenger",
    "TelegramMessenger",
    "MessageTemplates"
]
