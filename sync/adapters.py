"""One adapter per source kind: fetch raw content, turn it into events."""
import logging
from dataclasses import dataclass, field
from datetime import date, tzinfo
from typing import Any, Callable, Dict, List, Optional

from processor.errors import MalformedSourceError
from processor.models import Calendar, Event, SourceKind
from processor.occurrence_expander import ExpansionWindow, OccurrenceExpander
from scraper.ical_feed import CalendarFeedFetcher, is_valid_feed
from scraper.page_scraper import PageScraper, parse_page_url

logger = logging.getLogger(__name__)


@dataclass
class AdapterResult:
    """Events of one calendar plus the raw payload they were parsed from."""
    events: List[Event]
    raw_payload: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def current_year_window() -> ExpansionWindow:
    return ExpansionWindow.for_year(date.today().year)


class FeedSourceAdapter:
    """Calendar feeds: direct/proxied fetch, then occurrence expansion."""

    source_kind = SourceKind.FEED

    def __init__(
        self,
        fetcher: Optional[CalendarFeedFetcher] = None,
        expander: Optional[OccurrenceExpander] = None,
        window_provider: Callable[[], ExpansionWindow] = current_year_window
    ):
        self.fetcher = fetcher or CalendarFeedFetcher()
        self.expander = expander or OccurrenceExpander()
        self.window_provider = window_provider

    def fetch(self, calendar: Calendar) -> AdapterResult:
        """
        Fetch and expand one feed.

        Raises:
            SourceUnreachableError: If every fetch attempt failed
            MalformedSourceError: If the feed cannot be parsed
        """
        raw = self.fetcher.fetch(calendar.url)
        events = self.parse(raw, calendar)
        return AdapterResult(
            events=events,
            raw_payload=raw,
            metadata={'eventCount': len(events), 'bytes': len(raw)},
        )

    def parse(self, raw_payload: str, calendar: Calendar) -> List[Event]:
        if not is_valid_feed(raw_payload):
            raise MalformedSourceError(f"Payload for {calendar.id} is not a calendar feed")
        return self.expander.parse_feed(raw_payload, calendar, self.window_provider())

    def forget(self, calendar_id: str) -> None:
        self.expander.forget(calendar_id)


class PageSourceAdapter:
    """Collaborative-database pages: proxied fetch, then table inference."""

    source_kind = SourceKind.SCRAPED

    def __init__(self, scraper: Optional[PageScraper] = None):
        self.scraper = scraper or PageScraper()

    def fetch(self, calendar: Calendar) -> AdapterResult:
        """
        Fetch and scrape one page.

        Raises:
            SourceUnreachableError: If the page cannot be fetched
            MalformedSourceError: If the URL is not a database page URL
        """
        page_url = parse_page_url(calendar.url)
        html = self.scraper.fetch_html(page_url.clean_url)
        result = self.scraper.parse_html(html, calendar.url, calendar.id, page_url=page_url)
        return AdapterResult(
            events=result.events,
            raw_payload=html,
            metadata={
                'eventCount': len(result.events),
                'strategy': result.strategy,
                'title': result.metadata.title,
                'databaseId': result.metadata.database_id,
            },
        )

    def parse(self, raw_payload: str, calendar: Calendar) -> List[Event]:
        return self.scraper.parse_html(raw_payload, calendar.url, calendar.id).events


def default_adapters(timeout: int = 30, viewer_tz: Optional[tzinfo] = None) -> Dict[SourceKind, Any]:
    """Adapters for every supported source kind, keyed by kind."""
    return {
        SourceKind.FEED: FeedSourceAdapter(
            fetcher=CalendarFeedFetcher(timeout=timeout),
            expander=OccurrenceExpander(viewer_tz=viewer_tz),
        ),
        SourceKind.SCRAPED: PageSourceAdapter(scraper=PageScraper(timeout=timeout)),
    }
