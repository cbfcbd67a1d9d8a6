"""Factory turning scraped rows and text lines into normalized events."""
import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from processor.models import ALL_DAY, ColumnMapping, ColumnType, Event, SourceKind

logger = logging.getLogger(__name__)

MONTHS = {
    'january': 1, 'february': 2, 'march': 3, 'april': 4, 'may': 5, 'june': 6,
    'july': 7, 'august': 8, 'september': 9, 'october': 10, 'november': 11,
    'december': 12,
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'jun': 6, 'jul': 7, 'aug': 8,
    'sep': 9, 'sept': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}


def _iso(match) -> Tuple[int, int, int]:
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def _slash(match) -> Tuple[int, int, int]:
    first, second, third = match.group(1), match.group(2), match.group(3)
    if len(first) == 4:
        return int(first), int(second), int(third)
    if len(third) != 4:
        raise ValueError(f"Ambiguous year in {match.group(0)!r}")
    # Regional convention: month/day/year
    return int(third), int(first), int(second)


def _dotted(match) -> Tuple[int, int, int]:
    return int(match.group(3)), int(match.group(2)), int(match.group(1))


def _month_name(match) -> Tuple[int, int, int]:
    return int(match.group(3)), MONTHS[match.group(1).lower()], int(match.group(2))


# Order matters: the first pattern yielding a valid calendar day wins.
DATE_PATTERNS = (
    ('iso', re.compile(r'(\d{4})-(\d{1,2})-(\d{1,2})'), _iso),
    ('slash', re.compile(r'(\d{1,4})/(\d{1,2})/(\d{1,4})'), _slash),
    ('dotted', re.compile(r'(\d{1,2})\.(\d{1,2})\.(\d{4})'), _dotted),
    ('month-name', re.compile(
        r'\b(January|February|March|April|May|June|July|August|September|'
        r'October|November|December)\s+(\d{1,2}),?\s+(\d{4})',
        re.IGNORECASE), _month_name),
    ('month-abbreviation', re.compile(
        r'\b(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sept|Sep|Oct|Nov|Dec)\.?\s+(\d{1,2}),?\s+(\d{4})',
        re.IGNORECASE), _month_name),
)

TIME_PATTERN = re.compile(r'(?<!\d)(\d{1,2}):(\d{2})(?:\s*([AaPp][Mm]))?')

METADATA_LINE_PATTERNS = (
    re.compile(r'^(created|updated|edited|notion|workspace|share|export)\b', re.IGNORECASE),
    re.compile(r'^\d+\s+(views?|comments?|likes?)\b', re.IGNORECASE),
)

TITLE_TRIM_CHARS = ' \t-–—:|,;.@()[]'
DEFAULT_TEXT_TITLE = 'Event'


@dataclass(frozen=True)
class ParsedDate:
    """A calendar day (and optional time) found inside free text."""
    date: date
    time: Optional[str]
    pattern: str
    date_span: Tuple[int, int]
    time_span: Optional[Tuple[int, int]]


def parse_date_text(text: str) -> Optional[ParsedDate]:
    """
    Find the first valid date in a piece of text.

    Patterns are tried in order: ISO, slash-delimited, dot-delimited,
    full month name, abbreviated month name. A ``HH:MM[ am/pm]`` time
    anywhere else in the text is returned alongside.

    Args:
        text: Free text, typically one table cell or one line

    Returns:
        ParsedDate or None if no pattern yields a valid day
    """
    if not text:
        return None

    for name, pattern, extract in DATE_PATTERNS:
        for match in pattern.finditer(text):
            try:
                year, month, day = extract(match)
                parsed = date(year, month, day)
            except (ValueError, KeyError):
                continue

            time_text, time_span = None, None
            for time_match in TIME_PATTERN.finditer(text):
                if time_match.start() >= match.end() or time_match.end() <= match.start():
                    time_text = time_match.group(0).strip()
                    time_span = time_match.span()
                    break

            return ParsedDate(
                date=parsed,
                time=time_text,
                pattern=name,
                date_span=match.span(),
                time_span=time_span,
            )
    return None


class EventFactory:
    """Builds Event records from inferred table rows or plain text lines."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    def from_row(
        self,
        cells: Sequence[str],
        headers: Sequence[str],
        mappings: Dict[str, ColumnMapping],
        source_url: str,
        calendar_id: str,
        row_index: int
    ) -> Optional[Event]:
        """
        Convert one table row into an Event.

        Args:
            cells: Cell texts in column order
            headers: Header texts in column order
            mappings: Column mapping for each header
            source_url: Page the row was scraped from
            calendar_id: Owning calendar id
            row_index: Index of the row in the table

        Returns:
            Event, or None if the row lacks a title or a parseable date
        """
        fields = {
            'title': None,
            'date': None,
            'time': None,
            'status': None,
            'priority': None,
            'location': '',
            'description': '',
            'categories': (),
        }
        properties: Dict[str, str] = {}

        for header, value in zip(headers, cells):
            mapping = mappings.get(header)
            if mapping is None or not value:
                continue

            column_type = mapping.column_type
            if column_type == ColumnType.DATE:
                parsed = parse_date_text(value)
                if parsed:
                    fields['date'] = parsed.date
                    if parsed.time:
                        fields['time'] = parsed.time
            elif column_type == ColumnType.TITLE:
                fields['title'] = value
            elif column_type == ColumnType.STATUS:
                fields['status'] = value.lower()
            elif column_type == ColumnType.LOCATION:
                fields['location'] = value
            elif column_type == ColumnType.CATEGORY:
                fields['categories'] = tuple(
                    category.strip() for category in value.split(',') if category.strip()
                )
            elif column_type == ColumnType.DESCRIPTION:
                fields['description'] = value
            elif column_type == ColumnType.TIME:
                if not fields['time']:
                    fields['time'] = value
            elif column_type == ColumnType.PRIORITY:
                fields['priority'] = value.lower()
            else:
                properties[mapping.property_name] = value

            properties[header] = value

        if not fields['title'] or not fields['date']:
            logger.debug(f"Skipping row {row_index}: missing required title or date")
            return None

        title = fields['title'][:self.MAX_TITLE_LENGTH]
        time_text = fields['time'] or ALL_DAY
        return Event(
            event_id=self.generate_event_id(
                calendar_id, title, fields['date'].isoformat(), time_text, row_index
            ),
            title=title,
            date=fields['date'],
            calendar_id=calendar_id,
            source=SourceKind.SCRAPED,
            time=time_text,
            location=fields['location'],
            description=fields['description'][:self.MAX_DESCRIPTION_LENGTH],
            categories=fields['categories'],
            status=fields['status'],
            priority=fields['priority'],
            properties=properties,
            source_url=source_url,
            is_all_day=time_text == ALL_DAY,
        )

    def from_text(self, text: str, source_url: str, calendar_id: str) -> List[Event]:
        """
        Scan page text line by line for dated entries.

        Lower fidelity than table inference; used only when no table parses.

        Args:
            text: Visible page text
            source_url: Page the text came from
            calendar_id: Owning calendar id

        Returns:
            List of events, one per line containing a valid date
        """
        events = []
        lines = [line.strip() for line in text.splitlines()]

        for line_index, line in enumerate(lines):
            if not line or self._is_metadata_line(line):
                continue

            parsed = parse_date_text(line)
            if not parsed:
                continue

            title = self._strip_spans(line, [parsed.date_span, parsed.time_span])
            title = title.strip(TITLE_TRIM_CHARS) or DEFAULT_TEXT_TITLE
            title = title[:self.MAX_TITLE_LENGTH]
            time_text = parsed.time or ALL_DAY

            events.append(Event(
                event_id=self.generate_event_id(
                    calendar_id, title, parsed.date.isoformat(), time_text, line_index
                ),
                title=title,
                date=parsed.date,
                calendar_id=calendar_id,
                source=SourceKind.SCRAPED,
                time=time_text,
                source_url=source_url,
                properties={'line': line},
                is_all_day=time_text == ALL_DAY,
            ))

        logger.info(f"Text scan found {len(events)} dated lines out of {len(lines)}")
        return events

    def _is_metadata_line(self, line: str) -> bool:
        return any(pattern.search(line) for pattern in METADATA_LINE_PATTERNS)

    def _strip_spans(self, text: str, spans: List[Optional[Tuple[int, int]]]) -> str:
        for start, end in sorted((span for span in spans if span), reverse=True):
            text = f"{text[:start]} {text[end:]}"
        return ' '.join(text.split())

    def generate_event_id(self, calendar_id: str, title: str, date: str,
                          time: str, position: int) -> str:
        """
        Generate an identifier for a scraped event using a hash of its fields.

        Args:
            calendar_id: Owning calendar id
            title: Event title
            date: Event date (ISO 8601 format)
            time: Event time text
            position: Row or line index, keeps duplicate rows distinct

        Returns:
            Identifier of the form ``scraped_<16 hex chars>``
        """
        composite = f"{calendar_id}|{title}|{date}|{time}|{position}"
        hash_obj = hashlib.sha256(composite.encode('utf-8'))
        return f"scraped_{hash_obj.hexdigest()[:16]}"
