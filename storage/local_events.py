"""User-created events of the default local calendar."""
import hashlib
import logging
from datetime import date
from typing import List, Optional

from processor.models import ALL_DAY, DEFAULT_LOCAL_CALENDAR_ID, Event, SourceKind, utc_now
from storage.kv_store import FileKeyValueStore

logger = logging.getLogger(__name__)

LOCAL_EVENTS_KEY = 'localEvents'


class LocalEventStore:
    """Keeps local events as a list of Event dicts in the key-value store."""

    def __init__(self, kv_store: FileKeyValueStore):
        self.kv_store = kv_store

    def list_events(self) -> List[Event]:
        events = []
        for item in self.kv_store.get(LOCAL_EVENTS_KEY, []) or []:
            try:
                events.append(Event.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable local event: {e}")
        return events

    def add_event(self, title: str, day: date, time: str = ALL_DAY, location: str = '',
                  description: str = '', color: Optional[str] = None) -> Event:
        """
        Create and store a local event.

        Raises:
            ValueError: If the title is empty
        """
        captured_at = utc_now()
        digest = hashlib.sha256(
            f"{title}|{day.isoformat()}|{time}|{captured_at.isoformat()}".encode('utf-8')
        ).hexdigest()
        event = Event(
            event_id=f"local_{digest[:16]}",
            title=title.strip() if title else title,
            date=day,
            calendar_id=DEFAULT_LOCAL_CALENDAR_ID,
            source=SourceKind.LOCAL,
            time=time or ALL_DAY,
            location=location,
            description=description,
            captured_at=captured_at,
            color=color,
            is_all_day=(time or ALL_DAY) == ALL_DAY,
        )
        events = self.list_events()
        events.append(event)
        self._save(events)
        logger.info(f"Added local event '{event.title}' on {day.isoformat()}")
        return event

    def remove_event(self, event_id: str) -> bool:
        events = self.list_events()
        remaining = [event for event in events if event.event_id != event_id]
        if len(remaining) == len(events):
            return False
        self._save(remaining)
        return True

    def _save(self, events: List[Event]) -> None:
        self.kv_store.set(LOCAL_EVENTS_KEY, [event.to_dict() for event in events])
