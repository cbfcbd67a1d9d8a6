"""Merging, filtering and ordering of events from every calendar."""
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from processor.models import ALL_DAY, DEFAULT_LOCAL_CALENDAR_ID, Calendar, Event, SourceKind

logger = logging.getLogger(__name__)

SELECTION_KEY = 'selectedCalendarIds'


class EventAggregator:
    """Combines per-source event lists into one deduplicated stream."""

    def aggregate(
        self,
        events_by_calendar: Mapping[str, Sequence[Event]],
        calendars: Sequence[Calendar]
    ) -> List[Event]:
        """
        Merge events from enabled calendars.

        Args:
            events_by_calendar: Calendar id to events
            calendars: Known calendars

        Returns:
            Deduplicated events sorted by date, all-day first, then time
        """
        calendars_by_id = {calendar.id: calendar for calendar in calendars}
        merged: List[Event] = []

        for calendar_id, events in events_by_calendar.items():
            if not self._is_included(calendar_id, calendars_by_id):
                logger.debug(f"Skipping {len(events)} events from disabled calendar {calendar_id}")
                continue
            merged.extend(events)

        unique = self._dedupe(merged)
        logger.info(f"Aggregated {len(unique)} events from {len(events_by_calendar)} calendars")
        return sort_events(unique)

    def visible_calendars(
        self,
        calendars: Sequence[Calendar],
        event_counts: Mapping[str, int]
    ) -> List[Calendar]:
        """
        Calendars to offer for selection, ranked for display.

        The default local calendar is hidden when it is empty and a feed
        calendar has already synced events.

        Args:
            calendars: Known calendars
            event_counts: Calendar id to number of events

        Returns:
            Ranked calendars
        """
        feeds_have_events = any(
            event_counts.get(calendar.id, 0) > 0
            for calendar in calendars
            if calendar.source_kind != SourceKind.LOCAL
        )

        visible = []
        for calendar in calendars:
            if (
                calendar.id == DEFAULT_LOCAL_CALENDAR_ID
                and feeds_have_events
                and event_counts.get(calendar.id, 0) == 0
            ):
                continue
            visible.append(calendar)

        return rank_calendars(visible, event_counts)

    def _is_included(self, calendar_id: str, calendars_by_id: Dict[str, Calendar]) -> bool:
        calendar = calendars_by_id.get(calendar_id)
        if calendar_id == DEFAULT_LOCAL_CALENDAR_ID:
            # No explicit flag means shown
            return calendar is None or calendar.enabled
        return calendar is not None and calendar.enabled

    def _dedupe(self, events: Iterable[Event]) -> List[Event]:
        by_id: 'OrderedDict[str, Event]' = OrderedDict()
        for event in events:
            by_id.setdefault(event.event_id, event)

        seen = set()
        unique = []
        for event in by_id.values():
            signature = (event.title.strip().lower(), event.date, event.time)
            if signature in seen:
                continue
            seen.add(signature)
            unique.append(event)
        return unique


def rank_calendars(calendars: Sequence[Calendar], event_counts: Mapping[str, int]) -> List[Calendar]:
    """Default local calendar first, then by descending event count, then by name."""
    return sorted(
        calendars,
        key=lambda calendar: (
            calendar.id != DEFAULT_LOCAL_CALENDAR_ID,
            -event_counts.get(calendar.id, 0),
            calendar.name.lower(),
            calendar.id,
        ),
    )


def sort_events(events: Iterable[Event]) -> List[Event]:
    return sorted(
        events,
        key=lambda event: (event.date, event.time != ALL_DAY, event.time, event.title),
    )


def events_by_date(events: Iterable[Event]) -> Dict[str, List[Event]]:
    """Group events by ISO calendar day."""
    grouped: Dict[str, List[Event]] = {}
    for event in sort_events(events):
        grouped.setdefault(event.date.isoformat(), []).append(event)
    return grouped


def events_by_source(events: Iterable[Event]) -> Dict[str, List[Event]]:
    grouped: Dict[str, List[Event]] = {}
    for event in events:
        grouped.setdefault(event.source.value, []).append(event)
    return grouped


def count_events(events: Iterable[Event]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for event in events:
        counts[event.calendar_id] = counts.get(event.calendar_id, 0) + 1
    return counts


class CalendarSelection:
    """User's calendar selection, persisted in the key-value store."""

    def __init__(self, kv_store):
        self.kv_store = kv_store

    def _load(self) -> Optional[List[str]]:
        stored = self.kv_store.get(SELECTION_KEY)
        return list(stored) if isinstance(stored, list) else None

    def _save(self, ids: Iterable[str]) -> None:
        self.kv_store.set(SELECTION_KEY, sorted(set(ids)))

    def selected_ids(self, calendars: Sequence[Calendar],
                     event_counts: Mapping[str, int]) -> Set[str]:
        """
        Currently selected calendar ids.

        Until the user has made a selection, every enabled calendar that has
        events is selected.

        Args:
            calendars: Known calendars
            event_counts: Calendar id to number of events

        Returns:
            Set of selected ids restricted to known calendars
        """
        known = {calendar.id for calendar in calendars}
        stored = self._load()
        if stored is None:
            return {
                calendar.id for calendar in calendars
                if calendar.enabled and event_counts.get(calendar.id, 0) > 0
            }
        return {calendar_id for calendar_id in stored if calendar_id in known}

    def toggle(self, calendar_id: str, calendars: Sequence[Calendar],
               event_counts: Mapping[str, int]) -> Set[str]:
        selected = self.selected_ids(calendars, event_counts)
        if calendar_id in selected:
            selected.discard(calendar_id)
        else:
            selected.add(calendar_id)
        self._save(selected)
        return selected

    def select_all(self, calendars: Sequence[Calendar]) -> Set[str]:
        selected = {calendar.id for calendar in calendars if calendar.enabled}
        self._save(selected)
        return selected

    def select_with_events(self, calendars: Sequence[Calendar],
                           event_counts: Mapping[str, int]) -> Set[str]:
        selected = {
            calendar.id for calendar in calendars
            if calendar.enabled and event_counts.get(calendar.id, 0) > 0
        }
        self._save(selected)
        return selected

    def clear(self) -> None:
        self._save([])

    def cleanup(self, calendar_id: str) -> None:
        """Drop a deleted calendar from the stored selection."""
        stored = self._load()
        if stored is not None and calendar_id in stored:
            self._save(item for item in stored if item != calendar_id)

    def filter(self, events: Iterable[Event], calendars: Sequence[Calendar]) -> List[Event]:
        events = list(events)
        selected = self.selected_ids(calendars, count_events(events))
        return [event for event in events if event.calendar_id in selected]
