"""Scraper for public collaborative-database pages."""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import requests
from bs4 import BeautifulSoup

from processor.errors import MalformedSourceError, SourceUnreachableError
from processor.models import ColumnMapping, Event, utc_now
from scraper.proxies import ProxyStrategy, allorigins_proxy
from scraper.table_inference import DebugTrace, HtmlTableInference

logger = logging.getLogger(__name__)

DATABASE_ID_PATTERN = re.compile(r'([a-f0-9]{32})', re.IGNORECASE)
TEXT_FALLBACK_STRATEGY = 'text-lines'


@dataclass(frozen=True)
class PageUrl:
    database_id: str
    view_id: Optional[str]
    clean_url: str


@dataclass
class PageMetadata:
    url: str
    title: str
    last_scraped: datetime
    event_count: int
    database_id: Optional[str] = None
    view_id: Optional[str] = None


@dataclass
class ScrapeResult:
    events: List[Event]
    metadata: PageMetadata
    strategy: str
    column_mappings: Dict[str, ColumnMapping] = field(default_factory=dict)
    debug: Optional[DebugTrace] = None


def parse_page_url(url: str) -> PageUrl:
    """
    Extract database and view ids from a page URL.

    Args:
        url: Public page URL

    Returns:
        PageUrl with a clean URL keeping only the view parameter

    Raises:
        MalformedSourceError: If the URL carries no 32 character database id
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise MalformedSourceError(f"Invalid page URL: {url}")

    match = DATABASE_ID_PATTERN.search(parsed.path)
    if not match:
        raise MalformedSourceError(f"Invalid database page URL format: {url}")

    view_id = parse_qs(parsed.query).get('v', [None])[0]
    clean_url = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
    if view_id:
        clean_url = f"{clean_url}?v={view_id}"
    return PageUrl(database_id=match.group(1).lower(), view_id=view_id, clean_url=clean_url)


class PageScraper:
    """Fetches a page through a JSON envelope proxy and infers its events."""

    def __init__(
        self,
        timeout: int = 30,
        proxy: ProxyStrategy = allorigins_proxy,
        inference: Optional[HtmlTableInference] = None,
        session: Optional[requests.Session] = None
    ):
        self.timeout = timeout
        self.proxy = proxy
        self.inference = inference or HtmlTableInference()
        self.event_factory = self.inference.event_factory
        self.session = session or requests.Session()

    def fetch_html(self, url: str) -> str:
        """
        Fetch raw page HTML through the proxy.

        Args:
            url: Clean page URL

        Returns:
            HTML from the proxy envelope's ``contents`` field

        Raises:
            SourceUnreachableError: On network failure or a missing envelope
        """
        try:
            response = self.session.get(self.proxy(url), timeout=self.timeout)
            response.raise_for_status()
            envelope = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to fetch page {url}: {e}")
            raise SourceUnreachableError(f"Failed to fetch page: {e}") from e

        contents = envelope.get('contents') if isinstance(envelope, dict) else None
        if not isinstance(contents, str):
            raise SourceUnreachableError('Proxy response has no page contents')
        return contents

    def scrape(self, url: str, calendar_id: str, debug: bool = False) -> ScrapeResult:
        """
        Scrape a page for events.

        Args:
            url: Public page URL
            calendar_id: Owning calendar id
            debug: Attach a DebugTrace to the result

        Returns:
            ScrapeResult (zero events is a valid result)

        Raises:
            MalformedSourceError: If the URL is not a database page URL
            SourceUnreachableError: If the page cannot be fetched
        """
        page_url = parse_page_url(url)
        logger.info(f"Scraping page {page_url.clean_url}")
        html = self.fetch_html(page_url.clean_url)
        return self.parse_html(html, url, calendar_id, page_url=page_url, debug=debug)

    def parse_html(self, html: str, url: str, calendar_id: str,
                   page_url: Optional[PageUrl] = None, debug: bool = False) -> ScrapeResult:
        """
        Parse already fetched HTML; table inference first, then a text-line scan.

        Args:
            html: Raw page HTML
            url: Page URL the HTML came from
            calendar_id: Owning calendar id
            page_url: Parsed URL, if already known
            debug: Attach a DebugTrace to the result

        Returns:
            ScrapeResult
        """
        soup = BeautifulSoup(html, 'html.parser')

        if debug:
            table = self.inference.parse_with_debug(soup, url, calendar_id)
        else:
            table = self.inference.parse(soup, url, calendar_id)

        events = table.events
        strategy = table.metadata.view_type
        if not events:
            logger.info('No table structure yielded events, scanning page text')
            for tag in soup(['script', 'style', 'noscript']):
                tag.decompose()
            events = self.event_factory.from_text(soup.get_text('\n'), url, calendar_id)
            strategy = TEXT_FALLBACK_STRATEGY

        if page_url is None:
            try:
                page_url = parse_page_url(url)
            except MalformedSourceError:
                page_url = None

        title = soup.title.get_text(strip=True) if soup.title else ''
        if not title and page_url:
            title = f"Database {page_url.database_id[:8]}..."

        metadata = PageMetadata(
            url=page_url.clean_url if page_url else url,
            title=title or url,
            last_scraped=utc_now(),
            event_count=len(events),
            database_id=page_url.database_id if page_url else None,
            view_id=page_url.view_id if page_url else None,
        )
        logger.info(f"Scraped {len(events)} events from {metadata.url} using '{strategy}'")

        return ScrapeResult(
            events=events,
            metadata=metadata,
            strategy=strategy,
            column_mappings=table.column_mappings,
            debug=table.debug,
        )
