"""
Database models for the XC Bot.
These dataclasses represent the structure of data stored in SQLite.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass
class User:
    """
    A chat identity known to the bot.

    Attributes:
        id: Unique identifier (auto-generated)
        username: External identity on the messenger, used as recipient
            Example: "123456789" (Telegram chat id)
        usertype: Messenger kind, separates identity namespaces
            Example: "telegram"
        since: When this user was first seen
    """
    username: str
    usertype: str
    id: Optional[int] = None
    since: Optional[datetime] = None


@dataclass
class ProcessedFlight:
    """
    Marker for a flight that has already been evaluated for notification.
    Written once, never updated or deleted.
    """
    flight_id: str  # Flight detail URL from the feed
    pilot_username: str
    discovered_at: datetime


@dataclass
class Stats:
    """Row counts shown to admins."""
    user_count: int
    subscription_count: int
    flight_count: int


class MarkResult(Enum):
    """Outcome of marking a flight as processed."""
    MARKED = "marked"
    ALREADY_PROCESSED = "already_processed"


class SubscriptionResult(Enum):
    """Outcome of adding a subscription."""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class RemovalResult(Enum):
    """Outcome of removing a subscription."""
    REMOVED = "removed"
    NOT_FOUND = "not_found"
