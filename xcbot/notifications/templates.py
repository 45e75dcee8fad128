"""
Message templates for flight notifications and command replies.
Uses MarkdownV2 format for Telegram.
"""

import re
from datetime import datetime
from typing import List, Optional
import pytz

from ..database.models import Stats
from ..feed.xcontest import Flight


class MessageTemplates:
    """
    Message template formatter for Telegram messages.

    All templates use MarkdownV2 format which requires escaping special characters.
    """

    SOURCE_URL = "https://github.com/dbrgn/xc-bot/"

    @classmethod
    def escape_markdown(cls, text: str) -> str:
        """
        Escape special characters for MarkdownV2.

        Args:
            text: Raw text to escape

        Returns:
            Escaped text safe for MarkdownV2
        """
        if not text:
            return ""
        return re.sub(r'([_*\[\]()~`>#+=|{}.!-])', r'\\\1', str(text))

    # =========================================================================
    # Notifications
    # =========================================================================

    @classmethod
    def format_flight_message(
        cls,
        flight: Flight,
        timezone: pytz.BaseTzInfo = pytz.UTC
    ) -> str:
        """
        Format a "new flight" notification.

        Args:
            flight: Newly published flight
            timezone: Timezone for the timestamp

        Returns:
            Formatted MarkdownV2 message
        """
        now = datetime.now(timezone)
        pilot = cls.escape_markdown(flight.pilot_handle)
        summary = cls.escape_markdown(flight.summary)
        url = cls.escape_markdown(flight.url)

        return f"""🪂 *{pilot}* uploaded a new flight\\!

{summary}

🔗 {url}

_{cls.escape_markdown(now.strftime("%H:%M %d.%m.%Y"))}_"""

    # =========================================================================
    # Command replies
    # =========================================================================

    @classmethod
    def format_help_message(cls) -> str:
        """Format the help message."""
        return """🪂 *XContest flight notifications*

With this bot you can follow pilots on XContest\\. You get a notification as soon as they upload a new flight\\.

*Available commands:*

• *follow _<username\\>_* — get notified about new flights of pilot _<username\\>_
• *stop _<username\\>_* — stop notifications for pilot _<username\\>_
• *list* — show the pilots you follow
• *version* — show the bot version
• *github* — show the link to the source code
• *help* — show this message

Always use the XContest username \\(example: "follow chrigel"\\)\\."""

    @classmethod
    def format_unknown_command(cls, command: str, user_name: str) -> str:
        """Format the reply for an unrecognized command."""
        return (
            f"Hi {cls.escape_markdown(user_name)}\\! 👋\n\n"
            f"❓ Unknown command \"{cls.escape_markdown(command)}\"\\. "
            f"Send *help* for a list of commands\\."
        )

    @classmethod
    def format_version_message(cls, version: str) -> str:
        return f"xc\\-bot v{cls.escape_markdown(version)}"

    @classmethod
    def format_github_message(cls) -> str:
        return (
            "This bot is open source \\(AGPLv3\\)\\. "
            f"You can find the source code here: {cls.escape_markdown(cls.SOURCE_URL)}"
        )

    @classmethod
    def format_follow_usage(cls, error: Optional[str] = None) -> str:
        """Usage text for the follow command, optionally prefixed by an error."""
        usage = (
            "To follow a pilot, send \"follow _<username\\>_\" "
            "\\(example: \"follow chrigel\"\\)\\. "
            "You must use the XContest username\\."
        )
        if error:
            return f"⚠️ Error: {cls.escape_markdown(error)}\n\n{usage}"
        return usage

    @classmethod
    def format_stop_usage(cls) -> str:
        return (
            "To stop following a pilot, send \"stop _<username\\>_\" "
            "\\(example: \"stop chrigel\"\\)\\. "
            "You must use the XContest username\\."
        )

    @classmethod
    def format_now_following(cls, pilot: str) -> str:
        return f"✅ You are now following {cls.escape_markdown(pilot)}\\!"

    @classmethod
    def format_already_following(cls, pilot: str) -> str:
        return f"ℹ️ You are already following {cls.escape_markdown(pilot)}\\."

    @classmethod
    def format_stopped_following(cls, pilot: str) -> str:
        return f"🛑 You stopped following {cls.escape_markdown(pilot)}\\."

    @classmethod
    def format_was_not_following(cls, pilot: str) -> str:
        return f"ℹ️ You were not following {cls.escape_markdown(pilot)}\\."

    @classmethod
    def format_subscription_list(cls, pilots: List[str]) -> str:
        """
        Format the list of followed pilots.

        Args:
            pilots: Pilot usernames, already sorted

        Returns:
            Formatted MarkdownV2 message
        """
        if not pilots:
            return (
                "📭 You are not following anyone yet\\.\n\n"
                + cls.format_follow_usage()
            )

        lines = [f"• {cls.escape_markdown(pilot)}" for pilot in pilots]
        return "📋 *You are following these pilots:*\n\n" + "\n".join(lines)

    @classmethod
    def format_stats_message(cls, stats: Stats) -> str:
        """Format the admin statistics message."""
        return (
            "📊 *Database stats:*\n\n"
            f"• Users: {stats.user_count}\n"
            f"• Subscriptions: {stats.subscription_count}\n"
            f"• Flights: {stats.flight_count}"
        )
