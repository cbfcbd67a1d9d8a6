"""Expansion of calendar-feed event definitions into dated occurrences."""
import hashlib
import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple, Union

from dateutil import tz
from dateutil.rrule import rrulestr
from icalendar import Calendar as ICalendar

from processor.errors import MalformedSourceError
from processor.models import ALL_DAY, Calendar, Event, SourceKind

logger = logging.getLogger(__name__)

DateOrDateTime = Union[date, datetime]

MAX_RECURRENCE_ITERATIONS = 366
MULTI_DAY_TIME = 'All day (Multi-day)'
RECURRING_SUFFIX = ' (Recurring)'
UNTITLED_EVENT = 'Untitled Event'

_UNTIL_PATTERN = re.compile(r'(UNTIL=)(\d{8}(?:T\d{6})?)(Z?)', re.IGNORECASE)


@dataclass(frozen=True)
class ExpansionWindow:
    """Inclusive range of calendar days occurrences must fall in."""
    start: date
    end: date

    @classmethod
    def for_year(cls, year: int) -> 'ExpansionWindow':
        return cls(start=date(year, 1, 1), end=date(year, 12, 31))

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class EventDefinition:
    """One VEVENT reduced to the fields expansion needs."""
    uid: Optional[str]
    summary: str
    start: DateOrDateTime
    end: Optional[DateOrDateTime] = None
    rrule: Optional[str] = None
    description: str = ''
    location: str = ''
    categories: Tuple[str, ...] = ()
    exdates: FrozenSet[date] = frozenset()
    recurrence_id: Optional[date] = None
    content_hash: str = ''

    @property
    def stable_key(self) -> str:
        return self.uid or self.summary or 'event'

    @property
    def is_timed(self) -> bool:
        return isinstance(self.start, datetime)

    @property
    def is_recurring(self) -> bool:
        return bool(self.rrule)

    @property
    def is_multi_day(self) -> bool:
        """True for all-day definitions spanning more than one day."""
        if self.end is None or self.is_timed or isinstance(self.end, datetime):
            return False
        return (self.end - self.start).days > 1

    @property
    def duration(self) -> timedelta:
        if self.end is None:
            return timedelta(0)
        return self.end - self.start

    @classmethod
    def from_component(cls, component) -> 'EventDefinition':
        """
        Build a definition from an icalendar VEVENT component.

        Args:
            component: icalendar Event component

        Returns:
            EventDefinition

        Raises:
            ValueError: If the component has no DTSTART
        """
        dtstart = component.get('DTSTART')
        if dtstart is None:
            raise ValueError('VEVENT has no DTSTART')
        start = dtstart.dt

        end = None
        if component.get('DTEND') is not None:
            end = component.get('DTEND').dt
        elif component.get('DURATION') is not None:
            end = start + component.get('DURATION').dt

        rrule = None
        if component.get('RRULE') is not None:
            rrule = component.get('RRULE').to_ical().decode('utf-8')

        recurrence_id = None
        if component.get('RECURRENCE-ID') is not None:
            recurrence_id = _to_day(component.get('RECURRENCE-ID').dt)

        uid = component.get('UID')
        return cls(
            uid=str(uid) if uid else None,
            summary=str(component.get('SUMMARY', '')).strip(),
            start=start,
            end=end,
            rrule=rrule,
            description=str(component.get('DESCRIPTION', '')),
            location=str(component.get('LOCATION', '')),
            categories=_categories(component),
            exdates=_exdates(component),
            recurrence_id=recurrence_id,
            content_hash=hashlib.sha256(component.to_ical()).hexdigest(),
        )


def _to_day(value: DateOrDateTime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _categories(component) -> Tuple[str, ...]:
    values = component.get('CATEGORIES')
    if values is None:
        return ()
    if not isinstance(values, list):
        values = [values]
    names = []
    for value in values:
        for category in getattr(value, 'cats', [value]):
            text = str(category).strip()
            if text:
                names.append(text)
    return tuple(names)


def _exdates(component) -> FrozenSet[date]:
    values = component.get('EXDATE')
    if values is None:
        return frozenset()
    if not isinstance(values, list):
        values = [values]
    return frozenset(_to_day(item.dt) for value in values for item in value.dts)


def occurrence_id(calendar_id: str, stable_key: str, day: date, is_multi_day: bool) -> str:
    """
    Derive a deterministic occurrence identifier.

    Args:
        calendar_id: Owning calendar id
        stable_key: Source item uid, falling back to its title
        day: Calendar day of the occurrence
        is_multi_day: Whether the occurrence is one day of a multi-day span

    Returns:
        Identifier of the form ``ical_<16 hex chars>``
    """
    composite = f"{calendar_id}|{stable_key}|{day.isoformat()}|{'MD' if is_multi_day else 'SD'}"
    return f"ical_{hashlib.sha256(composite.encode('utf-8')).hexdigest()[:16]}"


def has_occurrence_changed(old: Event, new: Event) -> bool:
    """Shallow comparison of the fields a feed edit usually touches."""
    return (
        old.description != new.description or
        old.location != new.location or
        old.time != new.time or
        old.organizer != new.organizer
    )


class Expansion:
    """Lazy, finite and restartable sequence of occurrences."""

    def __init__(self, expander: 'OccurrenceExpander', definition: EventDefinition,
                 calendar: Calendar, window: ExpansionWindow):
        self._expander = expander
        self.definition = definition
        self.calendar = calendar
        self.window = window

    def __iter__(self) -> Iterator[Event]:
        return self._expander._generate(self.definition, self.calendar, self.window)


class OccurrenceExpander:
    """Turns feed event definitions into single-day occurrences."""

    def __init__(self, viewer_tz=None):
        """
        Initialize the expander.

        Args:
            viewer_tz: tzinfo used to render times and pick calendar days
                (default: the local timezone)
        """
        self.viewer_tz = viewer_tz or tz.tzlocal()
        self._cache: Dict[tuple, Tuple[tuple, Tuple[Event, ...]]] = {}

    def expand(self, definition: EventDefinition, calendar: Calendar,
               window: ExpansionWindow) -> Expansion:
        return Expansion(self, definition, calendar, window)

    def expand_cached(self, definition: EventDefinition, calendar: Calendar,
                      window: ExpansionWindow) -> List[Event]:
        """
        Expand a definition, reusing the previous result while its content hash is unchanged.

        Args:
            definition: Event definition
            calendar: Owning calendar
            window: Target window

        Returns:
            List of occurrences
        """
        key = _cache_key(definition, calendar, window)
        signature = (definition.content_hash, definition.exdates,
                     calendar.name, calendar.color, calendar.url)
        cached = self._cache.get(key)
        if cached and cached[0] == signature:
            return list(cached[1])

        occurrences = tuple(self.expand(definition, calendar, window))
        self._cache[key] = (signature, occurrences)
        return list(occurrences)

    def parse_feed(self, feed_text: str, calendar: Calendar,
                   window: ExpansionWindow) -> List[Event]:
        """
        Parse an iCalendar document and expand every VEVENT in it.

        Args:
            feed_text: Raw iCalendar text
            calendar: Owning calendar
            window: Target window

        Returns:
            List of occurrences across all definitions

        Raises:
            MalformedSourceError: If the document cannot be parsed at all
        """
        try:
            document = ICalendar.from_ical(feed_text)
        except ValueError as e:
            raise MalformedSourceError(f"Invalid calendar format: {e}") from e

        definitions = []
        for component in document.walk('VEVENT'):
            try:
                definitions.append(EventDefinition.from_component(component))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(
                    f"Skipping unreadable VEVENT in calendar '{calendar.name}': {e}"
                )

        # Modified instances replace the master's occurrence on their original day
        overridden: Dict[str, set] = {}
        for definition in definitions:
            if definition.recurrence_id is not None:
                overridden.setdefault(definition.stable_key, set()).add(definition.recurrence_id)

        events: List[Event] = []
        touched = set()
        for definition in definitions:
            if definition.recurrence_id is None and definition.stable_key in overridden:
                definition = replace(
                    definition,
                    exdates=definition.exdates | frozenset(overridden[definition.stable_key]),
                )
            touched.add(_cache_key(definition, calendar, window))
            events.extend(self.expand_cached(definition, calendar, window))

        # Definitions gone from the feed, or expanded for an older window
        self._prune(calendar.id, keep=touched)

        logger.info(
            f"Expanded {len(definitions)} definitions into {len(events)} occurrences "
            f"for calendar '{calendar.name}'"
        )
        return events

    def forget(self, calendar_id: str) -> int:
        """Drop every cached expansion of one calendar."""
        return self._prune(calendar_id, keep=set())

    def _prune(self, calendar_id: str, keep: set) -> int:
        stale = [key for key in self._cache if key[0] == calendar_id and key not in keep]
        for key in stale:
            del self._cache[key]
        return len(stale)

    def _generate(self, definition: EventDefinition, calendar: Calendar,
                  window: ExpansionWindow) -> Iterator[Event]:
        seen = set()
        try:
            for occurrence in self._occurrences(definition, calendar, window):
                if occurrence.event_id in seen:
                    continue
                seen.add(occurrence.event_id)
                yield occurrence
        except Exception as e:
            logger.warning(
                f"Failed to expand event '{definition.summary}' in calendar "
                f"'{calendar.name}': {e}"
            )
            if not seen:
                fallback = self._fallback(definition, calendar, window)
                if fallback is not None:
                    yield fallback

    def _occurrences(self, definition: EventDefinition, calendar: Calendar,
                     window: ExpansionWindow) -> Iterator[Event]:
        if definition.is_recurring:
            yield from self._expand_recurring(definition, calendar, window)
        else:
            yield from self._expand_span(definition, calendar, window, definition.start, False)

    def _expand_span(self, definition: EventDefinition, calendar: Calendar,
                     window: ExpansionWindow, start: DateOrDateTime,
                     recurring: bool) -> Iterator[Event]:
        if not definition.is_multi_day:
            day = self._local_day(start)
            if window.contains(day):
                yield self._create(definition, calendar, day, start, recurring, False)
            return

        first_day = _to_day(start)
        # Half-open [start, end): the end boundary day is never emitted
        for offset in range(definition.duration.days):
            day = first_day + timedelta(days=offset)
            if day > window.end:
                break
            if day < window.start:
                continue
            yield self._create(definition, calendar, day, day, False, True)

    def _expand_recurring(self, definition: EventDefinition, calendar: Calendar,
                          window: ExpansionWindow) -> Iterator[Event]:
        rule = rrulestr(
            _normalize_until(definition.rrule, _as_datetime(definition.start)),
            dtstart=_as_datetime(definition.start),
        )

        for count, occurrence in enumerate(rule):
            if count >= MAX_RECURRENCE_ITERATIONS:
                break

            occurrence_start = occurrence if definition.is_timed else occurrence.date()
            day = self._local_day(occurrence_start)
            if day > window.end:
                break
            if day in definition.exdates:
                continue

            if definition.is_multi_day:
                yield from self._expand_span(definition, calendar, window, occurrence_start, True)
            elif window.contains(day):
                yield self._create(definition, calendar, day, occurrence_start, True, False)

    def _create(self, definition: EventDefinition, calendar: Calendar, day: date,
                occurrence_start: DateOrDateTime, recurring: bool,
                multi_day: bool) -> Event:
        time_text = ALL_DAY
        if definition.is_timed and isinstance(occurrence_start, datetime):
            occurrence_end = occurrence_start + definition.duration
            time_text = (
                f"{self._to_local(occurrence_start):%H:%M} - "
                f"{self._to_local(occurrence_end):%H:%M}"
            )
        elif multi_day:
            time_text = MULTI_DAY_TIME

        if recurring and RECURRING_SUFFIX.strip() not in time_text:
            time_text = f"{time_text}{RECURRING_SUFFIX}"

        return Event(
            event_id=occurrence_id(calendar.id, definition.stable_key, day, multi_day),
            title=definition.summary or UNTITLED_EVENT,
            date=day,
            calendar_id=calendar.id,
            source=SourceKind.FEED,
            time=time_text,
            location=definition.location,
            description=definition.description,
            categories=definition.categories,
            source_url=calendar.url,
            organizer=calendar.name,
            color=calendar.color,
            is_multi_day=multi_day,
            is_all_day=not definition.is_timed,
            is_recurring=recurring,
        )

    def _fallback(self, definition: EventDefinition, calendar: Calendar,
                  window: ExpansionWindow) -> Optional[Event]:
        try:
            day = self._local_day(definition.start)
            if not window.contains(day):
                return None
            return self._create(definition, calendar, day, definition.start, False, False)
        except Exception as e:
            logger.warning(f"Dropping event '{definition.summary}': {e}")
            return None

    def _to_local(self, value: datetime) -> datetime:
        # Floating times are already in the viewer's local time
        if value.tzinfo is None:
            return value
        return value.astimezone(self.viewer_tz)

    def _local_day(self, value: DateOrDateTime) -> date:
        if isinstance(value, datetime):
            return self._to_local(value).date()
        return value


def _cache_key(definition: EventDefinition, calendar: Calendar, window: ExpansionWindow) -> tuple:
    return (calendar.id, definition.stable_key, definition.recurrence_id, window)


def _as_datetime(value: DateOrDateTime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _normalize_until(rule: str, dtstart: datetime) -> str:
    """Align the UNTIL value's timezone awareness with DTSTART, as dateutil requires."""
    def _fix(match):
        value = match.group(2)
        if 'T' not in value.upper():
            value = f"{value}T235959"
        suffix = 'Z' if dtstart.tzinfo is not None else ''
        return f"{match.group(1)}{value}{suffix}"

    return _UNTIL_PATTERN.sub(_fix, rule)
