"""Database module for the XC Bot."""

from .db import Database
from .models import User, ProcessedFlight, Stats, MarkResult, SubscriptionResult, RemovalResult

__all__ = [
    "Database",
    "User",
    "ProcessedFlight",
    "Stats",
    "MarkResult",
    "SubscriptionResult",
    "RemovalResult"
]
