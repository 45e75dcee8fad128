"""
Main entry point for the XC Bot.
Initializes all components and starts the bot.
"""

import argparse
import asyncio
import logging
import signal
from typing import List, Optional

from telegram import Update
from telegram.ext import Application

from . import __version__
from .config import Config, DEFAULT_CONFIG_PATH
from .database import Database
from .feed import XContestClient
from .handlers import CommandInterpreter, TelegramHandlers
from .notifications import FanOutDispatcher, TelegramMessenger
from .poller import FlightPoller, PollScheduler

logger = logging.getLogger(__name__)


class XcBot:
    """
    Main bot class that coordinates all components.
    """

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        """Initialize the bot."""
        self.config_path = config_path
        self.db: Database = None
        self.feed: XContestClient = None
        self.messenger: TelegramMessenger = None
        self.dispatcher: FanOutDispatcher = None
        self.poller: FlightPoller = None
        self.scheduler: PollScheduler = None
        self.application: Application = None
        self._stop_event = asyncio.Event()
        self._running = False

    async def initialize(self) -> None:
        """
        Initialize all bot components.
        Environment values are applied first, the TOML config file on top.
        """
        Config.load_file(self.config_path)
        Config.setup_logging()
        errors = Config.validate()
        if errors:
            for error in errors:
                logger.error(f"Config error: {error}")
            raise ValueError("Invalid configuration. Check the config file or environment.")

        logger.debug("Initializing XC Bot...")
        Config.ensure_data_dir()
        timezone = Config.get_timezone()

        # Initialize database
        self.db = Database(Config.DATABASE_PATH)
        await self.db.connect()

        # Initialize feed client
        self.feed = XContestClient(Config.FEED_URL, timeout_seconds=Config.FEED_TIMEOUT_SECONDS)

        # Build telegram application; updates from different chats run concurrently
        self.application = (
            Application.builder()
            .token(Config.BOT_TOKEN)
            .concurrent_updates(True)
            .build()
        )

        self.messenger = TelegramMessenger(
            self.application.bot,
            timeout_seconds=Config.DELIVERY_TIMEOUT_SECONDS
        )
        self.dispatcher = FanOutDispatcher(
            db=self.db,
            messenger=self.messenger,
            max_attempts=Config.DELIVERY_MAX_ATTEMPTS,
            backoff_seconds=Config.DELIVERY_BACKOFF_SECONDS,
            timezone=timezone
        )
        self.poller = FlightPoller(
            feed=self.feed,
            db=self.db,
            dispatcher=self.dispatcher,
            timezone=timezone
        )
        self.scheduler = PollScheduler(
            self.poller,
            interval_minutes=Config.POLLING_INTERVAL_MINUTES,
            timezone=timezone
        )

        # Setup handlers
        self._setup_handlers()

        logger.debug("XC Bot initialized successfully")

    def _setup_handlers(self) -> None:
        """Setup Telegram message handlers."""
        interpreter = CommandInterpreter(
            db=self.db,
            messenger_kind=self.messenger.kind,
            admin_identities=Config.ADMIN_USER_IDS
        )
        TelegramHandlers(interpreter, self.messenger).register(self.application)

    async def start(self) -> None:
        """Start the bot and block until stop() is called."""
        if self._running:
            logger.warning("Bot is already running")
            return

        self._running = True
        logger.info(f"Starting XC Bot v{__version__}...")

        # Start bot polling
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling(
            allowed_updates=Update.ALL_TYPES
        )

        # Start flight polling
        self.scheduler.start()

        logger.info("XC Bot is running")

        await self._stop_event.wait()

    def request_stop(self) -> None:
        """Ask a running start() to return."""
        self._stop_event.set()

    async def stop(self) -> None:
        """Stop the bot gracefully."""
        logger.debug("Stopping XC Bot...")
        self._running = False
        self._stop_event.set()

        # Stop scheduler
        if self.scheduler:
            self.scheduler.shutdown()

        # Abort deliveries still in flight
        if self.dispatcher:
            await self.dispatcher.cancel_all()

        # Stop bot (updater may already be stopped)
        if self.application:
            try:
                if self.application.updater and self.application.updater.running:
                    await self.application.updater.stop()
                if self.application.running:
                    await self.application.stop()
                await self.application.shutdown()
            except RuntimeError as e:
                logger.debug(f"Telegram application shutdown: {e}")

        # Close feed client
        if self.feed:
            await self.feed.close()

        # Close database
        if self.db:
            await self.db.close()

        logger.info("XC Bot stopped")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="xc-bot",
        description="Notify Telegram users about new XContest flights of pilots they follow."
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to TOML config file (default: '{DEFAULT_CONFIG_PATH}')"
    )
    parser.add_argument("-v", "--version", action="version", version=f"xc-bot {__version__}")
    return parser.parse_args(argv)


async def main(config_path: str = DEFAULT_CONFIG_PATH) -> None:
    """Main entry point."""
    bot = XcBot(config_path)

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.debug("Received shutdown signal")
        bot.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await bot.initialize()
        await bot.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        await bot.stop()


def run(argv: Optional[List[str]] = None) -> None:
    """Run the bot (blocking)."""
    args = parse_args(argv)
    try:
        asyncio.run(main(args.config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
