"""
Database operations for the XC Bot.
Uses SQLite with async support via aiosqlite.
"""

import asyncio
import aiosqlite
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional, List

from .models import User, ProcessedFlight, MarkResult, SubscriptionResult, RemovalResult, Stats
from ..errors import StoreUnavailable

logger = logging.getLogger(__name__)


class Database:
    """
    Async SQLite database manager.

    Every public operation runs as a single committed transaction, so
    the poller and the command handlers can share one instance without
    any locking of their own.
    """

    def __init__(self, db_path: str):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file (or ":memory:")
        """
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to the database and create tables if needed."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA foreign_keys = ON")
            await self._create_tables()
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Could not open database {self.db_path}: {e}") from e
        logger.info(f"Connected to database: {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Cursor]:
        """
        Yield a cursor inside one transaction.

        Commits on success, rolls back on any failure (cancellation
        included) and converts driver errors to StoreUnavailable.
        """
        if self._connection is None:
            raise StoreUnavailable("Database is not connected")

        async with self._lock:
            try:
                async with self._connection.cursor() as cursor:
                    yield cursor
                await self._connection.commit()
            except aiosqlite.Error as e:
                await self._rollback()
                raise StoreUnavailable(str(e)) from e
            except BaseException:
                # Uncommitted writes must not leak into the next caller's commit
                await self._rollback()
                raise

    async def _rollback(self) -> None:
        if self._connection is None:
            return
        try:
            await self._connection.rollback()
        except aiosqlite.Error:
            logger.debug("Rollback failed", exc_info=True)

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        async with self._connection.cursor() as cursor:
            # Users table
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    usertype TEXT NOT NULL,
                    since TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(username, usertype)
                )
            """)

            # Subscriptions table
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    pilot_username TEXT NOT NULL COLLATE NOCASE,
                    since TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id),
                    UNIQUE(user_id, pilot_username)
                )
            """)

            # Processed flights table (dedup markers)
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS processed_flights (
                    flight_id TEXT PRIMARY KEY,
                    pilot_username TEXT NOT NULL COLLATE NOCASE,
                    discovered_at TIMESTAMP NOT NULL
                )
            """)

            # Create indexes for faster queries
            await cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_subscriptions_pilot
                ON subscriptions(pilot_username)
            """)

            await self._connection.commit()

    # =========================================================================
    # Processed flight operations
    # =========================================================================

    async def is_processed(self, flight_id: str) -> bool:
        """Check whether a flight has already been marked as processed."""
        return await self.get_processed_flight(flight_id) is not None

    async def get_processed_flight(self, flight_id: str) -> Optional[ProcessedFlight]:
        """Get the processed marker of a flight, if any."""
        async with self._transaction() as cursor:
            await cursor.execute(
                "SELECT * FROM processed_flights WHERE flight_id = ?",
                (flight_id,)
            )
            row = await cursor.fetchone()

        if row is None:
            return None
        return ProcessedFlight(
            flight_id=row["flight_id"],
            pilot_username=row["pilot_username"],
            discovered_at=datetime.fromisoformat(row["discovered_at"])
        )

    async def mark_processed(
        self,
        flight_id: str,
        pilot_username: str,
        discovered_at: Optional[datetime] = None
    ) -> MarkResult:
        """
        Record that a flight has been evaluated.

        Returns MarkResult.ALREADY_PROCESSED if another cycle (or another
        process sharing the database) claimed the flight first.
        """
        discovered_at = discovered_at or datetime.now(timezone.utc)
        async with self._transaction() as cursor:
            await cursor.execute("""
                INSERT OR IGNORE INTO processed_flights (flight_id, pilot_username, discovered_at)
                VALUES (?, ?, ?)
            """, (flight_id, pilot_username, discovered_at.isoformat()))
            inserted = cursor.rowcount == 1

        if not inserted:
            return MarkResult.ALREADY_PROCESSED
        logger.debug(f"Marked flight as processed: {flight_id}")
        return MarkResult.MARKED

    # =========================================================================
    # User operations
    # =========================================================================

    async def find_or_create_user(self, username: str, usertype: str) -> User:
        """Return the user with this identity, creating it if needed."""
        async with self._transaction() as cursor:
            await cursor.execute("""
                INSERT OR IGNORE INTO users (username, usertype)
                VALUES (?, ?)
            """, (username, usertype))
            created = cursor.rowcount == 1
            await cursor.execute(
                "SELECT * FROM users WHERE username = ? AND usertype = ?",
                (username, usertype)
            )
            row = await cursor.fetchone()

        if created:
            logger.info(f"Created user {usertype}/{username} (id={row['id']})")
        return self._row_to_user(row)

    def _row_to_user(self, row: aiosqlite.Row) -> User:
        """Convert a database row to a User object."""
        return User(
            id=row["id"],
            username=row["username"],
            usertype=row["usertype"],
            since=row["since"]
        )

    # =========================================================================
    # Subscription operations
    # =========================================================================

    async def add_subscription(self, user_id: int, pilot_username: str) -> SubscriptionResult:
        """Subscribe a user to a pilot. Following twice is a no-op."""
        async with self._transaction() as cursor:
            await cursor.execute("""
                INSERT OR IGNORE INTO subscriptions (user_id, pilot_username)
                VALUES (?, ?)
            """, (user_id, pilot_username))
            inserted = cursor.rowcount == 1

        if inserted:
            logger.info(f"User {user_id} now follows {pilot_username}")
            return SubscriptionResult.CREATED
        return SubscriptionResult.ALREADY_EXISTS

    async def remove_subscription(self, user_id: int, pilot_username: str) -> RemovalResult:
        """Unsubscribe a user from a pilot."""
        async with self._transaction() as cursor:
            await cursor.execute(
                "DELETE FROM subscriptions WHERE user_id = ? AND pilot_username = ?",
                (user_id, pilot_username)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"User {user_id} stopped following {pilot_username}")
            return RemovalResult.REMOVED
        return RemovalResult.NOT_FOUND

    async def list_subscriptions(self, user_id: int) -> List[str]:
        """Return the pilots a user follows, sorted by name."""
        async with self._transaction() as cursor:
            await cursor.execute("""
                SELECT pilot_username FROM subscriptions
                WHERE user_id = ?
                ORDER BY pilot_username COLLATE NOCASE ASC
            """, (user_id,))
            rows = await cursor.fetchall()
        return [row["pilot_username"] for row in rows]

    async def subscribers_of(self, pilot_username: str) -> List[User]:
        """Return all users following a pilot, as committed right now."""
        async with self._transaction() as cursor:
            await cursor.execute("""
                SELECT u.* FROM subscriptions s
                INNER JOIN users u ON s.user_id = u.id
                WHERE s.pilot_username = ?
                ORDER BY u.id
            """, (pilot_username,))
            rows = await cursor.fetchall()
        return [self._row_to_user(row) for row in rows]

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_stats(self) -> Stats:
        """Return row counts for users, subscriptions and processed flights."""
        async with self._transaction() as cursor:
            await cursor.execute("""
                SELECT
                    (SELECT COUNT(*) FROM users) AS user_count,
                    (SELECT COUNT(*) FROM subscriptions) AS subscription_count,
                    (SELECT COUNT(*) FROM processed_flights) AS flight_count
            """)
            row = await cursor.fetchone()
        return Stats(
            user_count=row["user_count"],
            subscription_count=row["subscription_count"],
            flight_count=row["flight_count"]
        )
