"""Fetcher for calendar feeds in iCalendar format."""
import logging
from typing import Optional, Sequence

import requests

from processor.errors import SourceUnreachableError
from scraper.proxies import FEED_PROXIES, ProxyStrategy

logger = logging.getLogger(__name__)

FEED_SIGNATURE = 'begin:vcalendar'


def is_valid_feed(body: Optional[str]) -> bool:
    """Return True if the body looks like an iCalendar document."""
    if not body or not isinstance(body, str):
        return False
    return FEED_SIGNATURE in body.lower()


class CalendarFeedFetcher:
    """Fetches feed text directly, then through each proxy in turn."""

    HEADERS = {
        'Accept': 'text/calendar, text/plain, */*',
        'User-Agent': 'Mozilla/5.0 (compatible; FamilyCalendarSync/1.0)',
    }

    def __init__(
        self,
        timeout: int = 30,
        proxies: Sequence[ProxyStrategy] = FEED_PROXIES,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            proxies: Ordered proxy strategies tried after the direct request
            session: Optional requests session to reuse connections
        """
        self.timeout = timeout
        self.proxies = tuple(proxies)
        self.session = session or requests.Session()

    def fetch(self, url: str) -> str:
        """
        Fetch feed text, accepting the first response carrying a feed.

        Args:
            url: Feed URL

        Returns:
            Raw iCalendar text

        Raises:
            SourceUnreachableError: If the direct request and every proxy fail
        """
        attempts = [('direct', url)] + [
            (f"proxy {index + 1}/{len(self.proxies)}", proxy(url))
            for index, proxy in enumerate(self.proxies)
        ]

        last_error = None
        for label, target in attempts:
            try:
                logger.info(f"Fetching calendar feed ({label})")
                response = self.session.get(target, headers=self.HEADERS, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                last_error = str(e)
                logger.warning(f"Feed fetch failed ({label}): {e}")
                continue

            if is_valid_feed(response.text):
                logger.info(f"Feed fetch succeeded ({label}), {len(response.text)} bytes")
                return response.text

            last_error = 'response does not contain BEGIN:VCALENDAR'
            logger.warning(f"Feed fetch returned non-calendar content ({label})")

        logger.error(f"All {len(attempts)} feed fetch attempts failed for {url}")
        raise SourceUnreachableError(
            f"All fetch methods failed for {url}: {last_error}. "
            f"Please check if the calendar URL is publicly accessible."
        )
