"""
Configuration management for the XC Bot.
Values are seeded from the environment (.env supported) and may be
overridden at startup from a TOML config file.
"""

import os
import logging
from pathlib import Path
from typing import List, Any
from dotenv import load_dotenv
import pytz
import toml

load_dotenv()

DEFAULT_DATABASE_PATH = "database/xcbot.db"
DEFAULT_CONFIG_PATH = "config.toml"
DEFAULT_FEED_URL = "https://www.xcontest.org/rss/flights/?ccc"


def _identities_from_value(v: Any) -> List[str]:
    if isinstance(v, (list, tuple)):
        return [str(x).strip() for x in v if str(x).strip()]
    if isinstance(v, (str, int)) and str(v).strip():
        return [uid.strip() for uid in str(v).split(",") if uid.strip()]
    return []


def _bool_from_value(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).lower() in ("true", "1", "yes")


class Config:
    """
    Application configuration.
    Defaults come from environment variables; keys found in the TOML
    config file (lower-case names) replace them via set_runtime_config.
    """

    BOT_TOKEN: str = os.getenv("BOT_TOKEN", "")
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH)
    FEED_URL: str = os.getenv("FEED_URL", DEFAULT_FEED_URL)
    TIMEZONE: str = os.getenv("TIMEZONE", "UTC")
    POLLING_INTERVAL_MINUTES: int = int(os.getenv("POLLING_INTERVAL_MINUTES", "3") or "3")
    FEED_TIMEOUT_SECONDS: float = float(os.getenv("FEED_TIMEOUT_SECONDS", "30") or "30")
    DELIVERY_TIMEOUT_SECONDS: float = float(os.getenv("DELIVERY_TIMEOUT_SECONDS", "15") or "15")
    DELIVERY_MAX_ATTEMPTS: int = int(os.getenv("DELIVERY_MAX_ATTEMPTS", "3") or "3")
    DELIVERY_BACKOFF_SECONDS: float = float(os.getenv("DELIVERY_BACKOFF_SECONDS", "2") or "2")
    LOG_LEVEL: str = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    DEBUG_MODE: bool = _bool_from_value(os.getenv("DEBUG_MODE", "false"))
    ADMIN_USER_IDS: List[str] = _identities_from_value(os.getenv("ADMIN_USER_IDS", ""))

    @classmethod
    def load_file(cls, path: str = DEFAULT_CONFIG_PATH) -> bool:
        """
        Load a TOML config file and apply it on top of the environment.

        Args:
            path: Path to the TOML file

        Returns:
            True if the file existed and was applied
        """
        config_path = Path(path)
        if not config_path.is_file():
            logging.getLogger(__name__).debug(f"No config file at {path}, using environment")
            return False

        cls.set_runtime_config(toml.load(config_path))
        return True

    @classmethod
    def set_runtime_config(cls, config: dict) -> None:
        """Overwrite config values from a parsed TOML document."""
        if "bot_token" in config:
            cls.BOT_TOKEN = str(config["bot_token"] or "")
        if "database_path" in config:
            cls.DATABASE_PATH = str(config["database_path"] or DEFAULT_DATABASE_PATH)
        if "feed_url" in config:
            cls.FEED_URL = str(config["feed_url"] or DEFAULT_FEED_URL)
        if "timezone" in config:
            cls.TIMEZONE = str(config["timezone"] or "UTC")
        if "polling_interval_minutes" in config:
            cls.POLLING_INTERVAL_MINUTES = int(config["polling_interval_minutes"])
        if "feed_timeout_seconds" in config:
            cls.FEED_TIMEOUT_SECONDS = float(config["feed_timeout_seconds"])
        if "delivery_timeout_seconds" in config:
            cls.DELIVERY_TIMEOUT_SECONDS = float(config["delivery_timeout_seconds"])
        if "delivery_max_attempts" in config:
            cls.DELIVERY_MAX_ATTEMPTS = int(config["delivery_max_attempts"])
        if "delivery_backoff_seconds" in config:
            cls.DELIVERY_BACKOFF_SECONDS = float(config["delivery_backoff_seconds"])
        if "log_level" in config:
            cls.LOG_LEVEL = (str(config["log_level"] or "INFO")).upper()
        if "debug_mode" in config:
            cls.DEBUG_MODE = _bool_from_value(config["debug_mode"])
        if "admin_user_ids" in config:
            cls.ADMIN_USER_IDS = _identities_from_value(config["admin_user_ids"])

    @classmethod
    def get_timezone(cls) -> pytz.BaseTzInfo:
        """Get the configured timezone object."""
        try:
            return pytz.timezone(cls.TIMEZONE)
        except pytz.exceptions.UnknownTimeZoneError:
            logging.warning(f"Unknown timezone '{cls.TIMEZONE}', using UTC")
            return pytz.UTC

    @classmethod
    def validate(cls) -> List[str]:
        """
        Validate configuration and return list of errors.
        Returns empty list if configuration is valid.
        """
        errors = []

        if not cls.BOT_TOKEN:
            errors.append("BOT_TOKEN is required")

        if not cls.FEED_URL:
            errors.append("FEED_URL is required")

        if cls.POLLING_INTERVAL_MINUTES < 1:
            errors.append("POLLING_INTERVAL_MINUTES must be at least 1")

        if cls.DELIVERY_MAX_ATTEMPTS < 1:
            errors.append("DELIVERY_MAX_ATTEMPTS must be at least 1")

        if cls.DELIVERY_BACKOFF_SECONDS < 0:
            errors.append("DELIVERY_BACKOFF_SECONDS cannot be negative")

        if cls.FEED_TIMEOUT_SECONDS <= 0:
            errors.append("FEED_TIMEOUT_SECONDS must be positive")

        if cls.DELIVERY_TIMEOUT_SECONDS <= 0:
            errors.append("DELIVERY_TIMEOUT_SECONDS must be positive")

        return errors

    @classmethod
    def setup_logging(cls) -> None:
        """Configure logging based on settings."""
        log_level = logging.DEBUG if cls.DEBUG_MODE else getattr(logging, cls.LOG_LEVEL, logging.INFO)

        logging.basicConfig(
            level=log_level,
            format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=[logging.StreamHandler()]
        )

        # Reduce noise from external libraries
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("telegram").setLevel(logging.WARNING)
        logging.getLogger("apscheduler").setLevel(logging.WARNING)
        logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    @classmethod
    def ensure_data_dir(cls) -> None:
        """Ensure the data directory exists."""
        db_path = Path(cls.DATABASE_PATH)
        db_path.parent.mkdir(parents=True, exist_ok=True)
