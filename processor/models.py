"""Data models for calendar aggregation."""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


DEFAULT_LOCAL_CALENDAR_ID = 'local_calendar'
ALL_DAY = 'All day'


class SourceKind(str, Enum):
    """Kind of source an event or calendar comes from."""
    FEED = 'ical'
    SCRAPED = 'notion-scraped'
    LOCAL = 'local'


class ColumnType(str, Enum):
    """Semantic type inferred for a scraped table column."""
    DATE = 'date'
    TITLE = 'title'
    STATUS = 'status'
    LOCATION = 'location'
    CATEGORY = 'category'
    DESCRIPTION = 'description'
    TIME = 'time'
    PRIORITY = 'priority'
    CUSTOM = 'custom'


class SyncState(str, Enum):
    """Per-calendar synchronization state."""
    IDLE = 'idle'
    SYNCING = 'syncing'
    SYNCED = 'synced'
    ERRORED = 'errored'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Event:
    """Normalized, immutable calendar event."""
    event_id: str
    title: str
    date: date
    calendar_id: str
    source: SourceKind
    time: str = ALL_DAY
    location: str = ''
    description: str = ''
    categories: Tuple[str, ...] = ()
    status: Optional[str] = None
    priority: Optional[str] = None
    properties: Dict[str, str] = field(default_factory=dict)
    source_url: Optional[str] = None
    captured_at: datetime = field(default_factory=utc_now)
    organizer: str = ''
    color: Optional[str] = None
    is_multi_day: bool = False
    is_all_day: bool = True
    is_recurring: bool = False

    def __post_init__(self):
        if not self.title or not self.title.strip():
            raise ValueError('Event title must not be empty')
        if not isinstance(self.date, date) or isinstance(self.date, datetime):
            raise ValueError(f"Event date must be a calendar day, got {self.date!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a portable dict (JSON and DynamoDB safe)."""
        item = {
            'id': self.event_id,
            'title': self.title,
            'date': self.date.isoformat(),
            'calendarId': self.calendar_id,
            'source': self.source.value,
            'time': self.time,
            'location': self.location,
            'description': self.description,
            'categories': list(self.categories),
            'properties': dict(self.properties),
            'capturedAt': self.captured_at.isoformat(),
            'organizer': self.organizer,
            'isMultiDay': self.is_multi_day,
            'isAllDay': self.is_all_day,
            'isRecurring': self.is_recurring,
        }
        if self.status is not None:
            item['status'] = self.status
        if self.priority is not None:
            item['priority'] = self.priority
        if self.source_url:
            item['sourceUrl'] = self.source_url
        if self.color:
            item['color'] = self.color
        return item

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Event':
        return cls(
            event_id=data['id'],
            title=data['title'],
            date=date.fromisoformat(data['date']),
            calendar_id=data['calendarId'],
            source=SourceKind(data['source']),
            time=data.get('time') or ALL_DAY,
            location=data.get('location', ''),
            description=data.get('description', ''),
            categories=tuple(data.get('categories') or ()),
            status=data.get('status'),
            priority=data.get('priority'),
            properties=dict(data.get('properties') or {}),
            source_url=data.get('sourceUrl'),
            captured_at=datetime.fromisoformat(data['capturedAt']),
            organizer=data.get('organizer', ''),
            color=data.get('color'),
            is_multi_day=bool(data.get('isMultiDay', False)),
            is_all_day=bool(data.get('isAllDay', True)),
            is_recurring=bool(data.get('isRecurring', False)),
        )


@dataclass
class Calendar:
    """Source descriptor for one feed or scraped page."""
    id: str
    name: str
    url: str
    color: str
    source_kind: SourceKind
    enabled: bool = True
    last_sync: Optional[str] = None
    event_count: int = 0
    sync_frequency_per_day: Optional[int] = None

    def to_record(self) -> Dict[str, Any]:
        record = {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'color': self.color,
            'type': self.source_kind.value,
            'enabled': self.enabled,
            'eventCount': self.event_count,
        }
        if self.last_sync:
            record['lastSync'] = self.last_sync
        if self.sync_frequency_per_day is not None:
            record['syncFrequencyPerDay'] = self.sync_frequency_per_day
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Calendar':
        frequency = record.get('syncFrequencyPerDay')
        return cls(
            id=record['id'],
            name=record['name'],
            url=record['url'],
            color=record.get('color', '#3b82f6'),
            source_kind=SourceKind(record.get('type', SourceKind.FEED.value)),
            enabled=bool(record.get('enabled', True)),
            last_sync=record.get('lastSync'),
            event_count=int(record.get('eventCount') or 0),
            sync_frequency_per_day=int(frequency) if frequency is not None else None,
        )


@dataclass(frozen=True)
class ColumnMapping:
    """Inferred semantic type and canonical property name of one column."""
    column_type: ColumnType
    property_name: str


@dataclass(frozen=True)
class CacheEntry:
    """Unit of tiered storage."""
    key: str
    payload: Any
    timestamp: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'payload': self.payload,
            'timestamp': self.timestamp,
            'expiresAt': self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheEntry':
        return cls(
            key=data['key'],
            payload=data['payload'],
            timestamp=float(data['timestamp']),
            expires_at=float(data['expiresAt']),
        )


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one orchestration pass."""
    timestamp: str
    synced_count: int
    error_count: int
    total_calendars: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'syncedCount': self.synced_count,
            'errorCount': self.error_count,
            'totalCalendars': self.total_calendars,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncResult':
        return cls(
            timestamp=data['timestamp'],
            synced_count=int(data['syncedCount']),
            error_count=int(data['errorCount']),
            total_calendars=int(data['totalCalendars']),
        )


@dataclass(frozen=True)
class HandoffRecord:
    """Raw payload captured by the background worker for the foreground."""
    calendar_id: str
    raw_payload: str
    sync_time: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'calendarId': self.calendar_id,
            'rawPayload': self.raw_payload,
            'syncTime': self.sync_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HandoffRecord':
        return cls(
            calendar_id=data['calendarId'],
            raw_payload=data['rawPayload'],
            sync_time=data['syncTime'],
        )


@dataclass
class EventSyncResult:
    """Result of diffing one calendar's events against the event store."""
    added: int
    updated: int
    deleted: int
    errors: List[str]
