"""Unit tests for the per-source adapters."""
from datetime import date
from unittest.mock import Mock

import pytest
from dateutil import tz

from processor.errors import MalformedSourceError, SourceUnreachableError
from processor.models import SourceKind
from processor.occurrence_expander import ExpansionWindow, OccurrenceExpander
from sync.adapters import FeedSourceAdapter, PageSourceAdapter, default_adapters

FEED = (
    'BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//Test//EN\r\n'
    'BEGIN:VEVENT\r\nUID:picnic@test\r\nSUMMARY:Picnic\r\n'
    'DTSTART;VALUE=DATE:20240601\r\nDTEND;VALUE=DATE:20240602\r\nEND:VEVENT\r\n'
    'END:VCALENDAR\r\n'
)


@pytest.fixture
def feed_adapter():
    fetcher = Mock()
    fetcher.fetch.return_value = FEED
    return FeedSourceAdapter(
        fetcher=fetcher,
        expander=OccurrenceExpander(viewer_tz=tz.UTC),
        window_provider=lambda: ExpansionWindow.for_year(2024),
    )


class TestFeedSourceAdapter:

    def test_fetch_expands_feed(self, feed_adapter, feed_calendar):
        result = feed_adapter.fetch(feed_calendar)

        assert [(e.title, e.date) for e in result.events] == [('Picnic', date(2024, 6, 1))]
        assert result.raw_payload == FEED
        assert result.metadata['eventCount'] == 1
        feed_adapter.fetcher.fetch.assert_called_once_with(feed_calendar.url)

    def test_unreachable_source_propagates(self, feed_adapter, feed_calendar):
        feed_adapter.fetcher.fetch.side_effect = SourceUnreachableError('all proxies failed')

        with pytest.raises(SourceUnreachableError):
            feed_adapter.fetch(feed_calendar)

    def test_parse_rejects_non_feed_payload(self, feed_adapter, feed_calendar):
        with pytest.raises(MalformedSourceError):
            feed_adapter.parse('<html>not a feed</html>', feed_calendar)

    def test_parse_queued_payload(self, feed_adapter, feed_calendar):
        events = feed_adapter.parse(FEED, feed_calendar)

        assert [e.calendar_id for e in events] == [feed_calendar.id]


class TestPageSourceAdapter:

    def test_fetch_uses_clean_url(self, page_calendar):
        scraper = Mock()
        scraper.fetch_html.return_value = '<html></html>'
        scraper.parse_html.return_value.events = []
        scraper.parse_html.return_value.strategy = 'none'
        scraper.parse_html.return_value.metadata.title = 'Team'
        scraper.parse_html.return_value.metadata.database_id = '0123456789abcdef0123456789abcdef'

        result = PageSourceAdapter(scraper=scraper).fetch(page_calendar)

        scraper.fetch_html.assert_called_once_with(
            'https://www.notion.so/team/0123456789abcdef0123456789abcdef?v=abc'
        )
        assert result.raw_payload == '<html></html>'
        assert result.metadata['strategy'] == 'none'
        assert result.metadata['databaseId'] == '0123456789abcdef0123456789abcdef'

    def test_invalid_page_url(self, page_calendar):
        page_calendar.url = 'https://www.notion.so/no-database-here'

        with pytest.raises(MalformedSourceError):
            PageSourceAdapter(scraper=Mock()).fetch(page_calendar)


def test_default_adapters_cover_every_remote_kind():
    adapters = default_adapters(timeout=5)

    assert set(adapters) == {SourceKind.FEED, SourceKind.SCRAPED}
    assert adapters[SourceKind.FEED].fetcher.timeout == 5
    assert adapters[SourceKind.SCRAPED].scraper.timeout == 5
