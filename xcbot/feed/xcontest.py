"""
XContest RSS feed client.
Fetches the list of recently published flights from the leaderboard feed.
"""

import aiohttp
import asyncio
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional, List

from ..errors import FeedUnavailable

logger = logging.getLogger(__name__)

# Flight detail links look like
# https://www.xcontest.org/switzerland/en/flights/detail:chrigel/1.5.2021/10:23
PILOT_RE = re.compile(r"detail:([^/]+)/")


@dataclass(frozen=True)
class Flight:
    """
    A published flight as listed in the feed.

    Attributes:
        flight_id: Unique flight identifier (the detail URL)
        pilot_handle: XContest username of the pilot
        summary: Human-readable one-liner from the feed
            Example: "01.05.21 [87.12 km :: free_flight] Chrigel Maurer"
    """
    flight_id: str
    pilot_handle: str
    summary: str

    @property
    def url(self) -> str:
        return self.flight_id


def parse_pilot_handle(link: str) -> Optional[str]:
    """Extract the pilot username from a flight detail link."""
    match = PILOT_RE.search(link)
    if not match:
        return None
    return match.group(1).strip() or None


def parse_feed(payload: bytes) -> List[Flight]:
    """
    Parse an RSS document into flights, in feed order.

    Items without a title, a link or a recognizable pilot are skipped.

    Raises:
        FeedUnavailable: If the payload is not valid RSS
    """
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as e:
        raise FeedUnavailable(f"Invalid feed XML: {e}") from e

    channel = root.find("channel")
    if channel is None:
        raise FeedUnavailable("Feed has no <channel> element")

    flights = []
    for item in channel.findall("item"):
        title = (item.findtext("title") or "").strip()
        link = (item.findtext("link") or "").strip()
        if not title or not link:
            continue

        pilot = parse_pilot_handle(link)
        if not pilot:
            logger.debug(f"Skipping feed item without pilot: {link}")
            continue

        flights.append(Flight(flight_id=link, pilot_handle=pilot, summary=title))

    return flights


class XContestClient:
    """Client for the XContest flights RSS feed."""

    USER_AGENT = "xc-bot"

    def __init__(self, feed_url: str, timeout_seconds: float = 30):
        """
        Initialize XContest client.

        Args:
            feed_url: RSS feed URL
            timeout_seconds: Upper bound for one fetch
        """
        self.feed_url = feed_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": self.USER_AGENT}
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch_flights(self) -> List[Flight]:
        """
        Fetch the current flight list.

        Returns:
            Flights in feed order

        Raises:
            FeedUnavailable: On network error, timeout, bad status or bad XML
        """
        session = await self._get_session()

        try:
            async with session.get(self.feed_url) as response:
                if response.status != 200:
                    # Error pages are not guaranteed to match their declared charset
                    error_text = await response.text(errors="replace")
                    raise FeedUnavailable(
                        f"XContest feed error: {response.status} - {error_text[:200]}"
                    )
                payload = await response.read()
        except asyncio.TimeoutError as e:
            raise FeedUnavailable("XContest feed request timed out") from e
        except aiohttp.ClientError as e:
            raise FeedUnavailable(f"XContest feed request failed: {e}") from e

        flights = parse_feed(payload)
        logger.debug(f"Fetched {len(flights)} flights from feed")
        return flights
