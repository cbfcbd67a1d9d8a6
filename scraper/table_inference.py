"""Heuristic inference of event tables from collaborative-database page HTML."""
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from processor.event_factory import EventFactory
from processor.models import ColumnMapping, ColumnType, Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnRule:
    """One header classification rule; rules are evaluated top to bottom."""
    column_type: ColumnType
    property_name: str
    pattern: 're.Pattern'

    def matches(self, header: str) -> bool:
        return bool(self.pattern.search(header.lower()))


# Reordering these rules changes classification; bump the version when editing.
COLUMN_RULES_VERSION = 2
COLUMN_RULES: Tuple[ColumnRule, ...] = (
    ColumnRule(ColumnType.DATE, 'date',
               re.compile(r'^(date|when|day|schedule|due|start|end)')),
    ColumnRule(ColumnType.TITLE, 'title',
               re.compile(r'^(title|name|event|task|subject|what)')),
    ColumnRule(ColumnType.STATUS, 'status',
               re.compile(r'^(status|state|done|complete|progress)')),
    ColumnRule(ColumnType.LOCATION, 'location',
               re.compile(r'^(location|where|place|venue|address)')),
    ColumnRule(ColumnType.CATEGORY, 'categories',
               re.compile(r'^(category|type|tag|label|kind|group)')),
    ColumnRule(ColumnType.DESCRIPTION, 'description',
               re.compile(r'^(description|details|notes|info|about)')),
    ColumnRule(ColumnType.TIME, 'time',
               re.compile(r'^(time|hour|at)$')),
    ColumnRule(ColumnType.PRIORITY, 'priority',
               re.compile(r'^(priority|importance|urgent|level)')),
)


def classify_header(header: str, index: int) -> Tuple[ColumnMapping, str]:
    """
    Classify one header by the first matching rule.

    Args:
        header: Header text
        index: Column position, used to key custom columns

    Returns:
        Tuple of (ColumnMapping, human readable reason)
    """
    for rule in COLUMN_RULES:
        if rule.matches(header.strip()):
            return (
                ColumnMapping(rule.column_type, rule.property_name),
                f"Detected as {rule.column_type.value} column based on header keywords",
            )
    return (
        ColumnMapping(ColumnType.CUSTOM, f"custom_{index}"),
        'No specific type detected, marked as custom column',
    )


def create_column_mappings(headers: Sequence[str]) -> Dict[str, ColumnMapping]:
    return {header: classify_header(header, index)[0] for index, header in enumerate(headers)}


@dataclass
class RowTrace:
    row_index: int
    cells: List[str]
    classification: str
    reason: str


@dataclass
class DebugTrace:
    """Parallel record of how a parse classified every row and column."""
    strategy: str = ''
    elements_found: int = 0
    headers: List[str] = field(default_factory=list)
    rows: List[RowTrace] = field(default_factory=list)
    mapping_reasons: Dict[str, str] = field(default_factory=dict)
    success_rate: float = 0.0

    def record(self, row_index: int, cells: List[str], classification: str, reason: str) -> None:
        self.rows.append(RowTrace(row_index, list(cells), classification, reason))


@dataclass
class ParseMetadata:
    total_rows: int
    successfully_parsed: int
    skipped_rows: int
    view_type: str


@dataclass
class TableParseResult:
    events: List[Event]
    column_mappings: Dict[str, ColumnMapping]
    metadata: ParseMetadata
    debug: Optional[DebugTrace] = None


def _cell_text(element) -> str:
    return ' '.join(element.get_text(' ', strip=True).split())


def _column_index(element) -> int:
    try:
        return int(element.get('data-column-index', 0))
    except (TypeError, ValueError):
        return 0


def extract_modern_rows(soup: BeautifulSoup) -> List[List[str]]:
    """Rows marked by data-block-id, cells ordered by data-column-index."""
    rows = []
    for row in soup.select('[data-block-id]'):
        cells = row.select('[data-column-index]')
        if not cells:
            continue
        # Container blocks wrap the real rows
        if row.select_one(':scope [data-block-id] [data-column-index]'):
            continue
        ordered = sorted(cells, key=_column_index)
        rows.append([_cell_text(cell) for cell in ordered])
    return rows


def extract_legacy_rows(soup: BeautifulSoup) -> List[List[str]]:
    """Rows of the older CSS-class table view."""
    table_view = soup.select_one('.notion-table-view')
    if table_view is None:
        return []
    rows = []
    for row in table_view.select('.notion-table-row'):
        cells = row.select('.notion-table-cell, .notion-selectable')
        if cells:
            rows.append([_cell_text(cell) for cell in cells])
    return rows


def extract_table_rows(soup: BeautifulSoup) -> List[List[str]]:
    """Plain table markup."""
    rows = []
    for row in soup.find_all('tr'):
        cells = row.find_all(['th', 'td'])
        if cells:
            rows.append([_cell_text(cell) for cell in cells])
    return rows


RowExtractor = Callable[[BeautifulSoup], List[List[str]]]

STRATEGIES: Tuple[Tuple[str, RowExtractor], ...] = (
    ('modern-data-attributes', extract_modern_rows),
    ('legacy-css-classes', extract_legacy_rows),
    ('generic-table', extract_table_rows),
)


class HtmlTableInference:
    """Locates an event table in a page and converts its rows to events."""

    def __init__(self, event_factory: Optional[EventFactory] = None):
        self.event_factory = event_factory or EventFactory()

    def parse(self, soup: BeautifulSoup, source_url: str, calendar_id: str) -> TableParseResult:
        """
        Try each structural strategy in order until one yields an event.

        Args:
            soup: Parsed page
            source_url: Page URL
            calendar_id: Owning calendar id

        Returns:
            TableParseResult (empty when no strategy yields an event)
        """
        return self._parse(soup, source_url, calendar_id, debug=False)

    def parse_with_debug(self, soup: BeautifulSoup, source_url: str,
                         calendar_id: str) -> TableParseResult:
        """Same as parse, with a DebugTrace attached to the result."""
        return self._parse(soup, source_url, calendar_id, debug=True)

    def _parse(self, soup: BeautifulSoup, source_url: str, calendar_id: str,
               debug: bool) -> TableParseResult:
        result = None
        for strategy, extract in STRATEGIES:
            rows = extract(soup)
            trace = DebugTrace(strategy=strategy, elements_found=len(rows)) if debug else None
            result = self._parse_rows(strategy, rows, source_url, calendar_id, trace)
            logger.info(
                f"Strategy '{strategy}' found {len(rows)} rows and "
                f"{len(result.events)} events"
            )
            if result.events:
                return result

        return result or TableParseResult(
            events=[], column_mappings={}, metadata=ParseMetadata(0, 0, 0, 'unknown')
        )

    def _parse_rows(self, strategy: str, rows: List[List[str]], source_url: str,
                    calendar_id: str, trace: Optional[DebugTrace]) -> TableParseResult:
        events: List[Event] = []
        headers: List[str] = []
        mappings: Dict[str, ColumnMapping] = {}
        skipped = 0

        for row_index, cells in enumerate(rows):
            is_empty = all(not cell for cell in cells)

            if not headers:
                if is_empty:
                    if trace:
                        trace.record(row_index, cells, 'empty', 'Empty row before header')
                    continue
                headers = [cell or f"Column {index + 1}" for index, cell in enumerate(cells)]
                mappings = create_column_mappings(headers)
                if trace:
                    trace.headers = list(headers)
                    trace.mapping_reasons = {
                        header: classify_header(header, index)[1]
                        for index, header in enumerate(headers)
                    }
                    trace.record(row_index, cells, 'header', 'First non-empty row used as header')
                continue

            if is_empty:
                if trace:
                    trace.record(row_index, cells, 'empty', 'Empty row - all cells are empty')
                continue

            event = self.event_factory.from_row(
                cells, headers, mappings, source_url, calendar_id, row_index
            )
            if event is None:
                skipped += 1
                if trace:
                    trace.record(row_index, cells, 'skipped',
                                 'Invalid event - missing required title or date')
                continue

            events.append(event)
            if trace:
                trace.record(row_index, cells, 'event',
                             'Valid event - has required title and date')

        if trace:
            trace.success_rate = (len(events) / len(trace.rows) * 100) if trace.rows else 0.0

        return TableParseResult(
            events=events,
            column_mappings=mappings,
            metadata=ParseMetadata(
                total_rows=len(rows),
                successfully_parsed=len(events),
                skipped_rows=skipped,
                view_type=strategy,
            ),
            debug=trace,
        )
