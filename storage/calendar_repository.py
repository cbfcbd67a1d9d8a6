"""Persistence and validation of calendar source descriptors."""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.errors import CalendarValidationError
from processor.models import Calendar, SourceKind, utc_now
from storage.dynamodb_manager import DynamoDBManager
from storage.event_store import EventStore
from storage.obfuscation import deobfuscate, obfuscate
from storage.tiered_cache import TieredCache, calendar_cache_key

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_SECONDS = 15 * 60
DEFAULT_COLOR = '#3b82f6'
OBFUSCATED_URL_PREFIX = 'obf:'
ID_PREFIXES = {
    SourceKind.FEED: 'ical',
    SourceKind.SCRAPED: 'notion_scraped',
    SourceKind.LOCAL: 'local',
}
EDITABLE_FIELDS = (
    'name', 'url', 'color', 'enabled', 'last_sync', 'event_count', 'sync_frequency_per_day'
)


def validate_url(url: str) -> str:
    url = (url or '').strip()
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise CalendarValidationError(f"Invalid calendar URL: {url!r}")
    return url


def generate_calendar_id(source_kind: SourceKind) -> str:
    return f"{ID_PREFIXES[source_kind]}_{uuid.uuid4().hex[:12]}"


def is_sync_due(calendar: Calendar, now: Optional[datetime] = None,
                default_interval: float = DEFAULT_SYNC_INTERVAL_SECONDS) -> bool:
    """
    Whether a calendar should be synced again.

    Args:
        calendar: Calendar to check
        now: Current time (default: now, UTC)
        default_interval: Seconds between syncs without a frequency hint

    Returns:
        True if never synced or the interval has elapsed
    """
    if not calendar.last_sync:
        return True
    try:
        last_sync = datetime.fromisoformat(calendar.last_sync)
    except ValueError:
        return True

    now = now or utc_now()
    if calendar.sync_frequency_per_day:
        interval = timedelta(days=1) / calendar.sync_frequency_per_day
    else:
        interval = timedelta(seconds=default_interval)
    return now - last_sync >= interval


class CalendarRepository(DynamoDBManager):
    """Calendars table with obfuscated URLs and per-record conditional writes."""

    def __init__(
        self,
        table_name: str,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        event_store: Optional[EventStore] = None,
        cache: Optional[TieredCache] = None
    ):
        super().__init__(table_name, endpoint_url=endpoint_url, region_name=region_name)
        self.event_store = event_store
        self.cache = cache

    def list_calendars(self) -> List[Calendar]:
        calendars = []
        for item in self._scan():
            try:
                calendars.append(self._from_item(item))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable calendar record {item.get('id')}: {e}")
        return sorted(calendars, key=lambda calendar: (calendar.name.lower(), calendar.id))

    def get_calendar(self, calendar_id: str) -> Optional[Calendar]:
        item = self._get_item(calendar_id)
        return self._from_item(item) if item else None

    def add_calendar(
        self,
        name: str,
        url: str,
        color: str = DEFAULT_COLOR,
        source_kind: SourceKind = SourceKind.FEED,
        enabled: bool = True,
        sync_frequency_per_day: Optional[int] = None
    ) -> Calendar:
        """
        Validate and store a new calendar.

        Args:
            name: Display name
            url: Feed or page URL
            color: Display color
            source_kind: Feed or scraped page
            enabled: Whether its events are shown
            sync_frequency_per_day: Optional sync frequency hint

        Returns:
            The stored Calendar

        Raises:
            CalendarValidationError: On a missing name, invalid URL or duplicate
        """
        name = (name or '').strip()
        if not name:
            raise CalendarValidationError('Calendar name is required')
        url = validate_url(url)
        self._check_unique(name, url)

        calendar = Calendar(
            id=generate_calendar_id(source_kind),
            name=name,
            url=url,
            color=color or DEFAULT_COLOR,
            source_kind=source_kind,
            enabled=enabled,
            sync_frequency_per_day=sync_frequency_per_day,
        )
        try:
            self._put_item(self._to_item(calendar), condition=Attr('id').not_exists())
        except ClientError as e:
            raise CalendarValidationError(f"Calendar {calendar.id} already exists") from e

        logger.info(f"Added calendar '{name}' ({calendar.id})")
        return calendar

    def update_calendar(self, calendar_id: str, **changes: Any) -> Calendar:
        """
        Apply field changes to a stored calendar.

        Raises:
            CalendarValidationError: On an unknown id or field, or invalid values
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise CalendarValidationError(f"Cannot update fields: {sorted(unknown)}")

        calendar = self.get_calendar(calendar_id)
        if calendar is None:
            raise CalendarValidationError(f"Unknown calendar: {calendar_id}")

        if 'name' in changes:
            changes['name'] = (changes['name'] or '').strip()
            if not changes['name']:
                raise CalendarValidationError('Calendar name is required')
        if 'url' in changes:
            changes['url'] = validate_url(changes['url'])
        if 'name' in changes or 'url' in changes:
            self._check_unique(changes.get('name', calendar.name),
                               changes.get('url', calendar.url), exclude_id=calendar_id)

        for key, value in changes.items():
            setattr(calendar, key, value)

        try:
            self._put_item(self._to_item(calendar), condition=Attr('id').exists())
        except ClientError as e:
            raise CalendarValidationError(f"Calendar {calendar_id} was removed") from e
        return calendar

    def record_sync(self, calendar_id: str, event_count: int,
                    synced_at: Optional[datetime] = None) -> Calendar:
        synced_at = synced_at or utc_now()
        return self.update_calendar(
            calendar_id, last_sync=synced_at.isoformat(), event_count=event_count
        )

    def remove_calendar(self, calendar_id: str) -> bool:
        """
        Remove a calendar with its stored and cached events.

        Returns:
            False if the calendar did not exist
        """
        if self.get_calendar(calendar_id) is None:
            return False

        if self.event_store is not None:
            self.event_store.delete_calendar_events(calendar_id)
        if self.cache is not None:
            self.cache.delete(calendar_cache_key(calendar_id))
        self._delete_item(calendar_id)
        logger.info(f"Removed calendar {calendar_id}")
        return True

    def _check_unique(self, name: str, url: str, exclude_id: Optional[str] = None) -> None:
        for existing in self.list_calendars():
            if existing.id == exclude_id:
                continue
            if existing.name.lower() == name.lower():
                raise CalendarValidationError(f"A calendar named '{name}' already exists")
            if existing.url.lower() == url.lower():
                raise CalendarValidationError('A calendar with this URL already exists')

    def _to_item(self, calendar: Calendar) -> Dict[str, Any]:
        item = calendar.to_record()
        item['url'] = OBFUSCATED_URL_PREFIX + obfuscate(calendar.url)
        return item

    def _from_item(self, item: Dict[str, Any]) -> Calendar:
        record = dict(item)
        url = record.get('url', '')
        if url.startswith(OBFUSCATED_URL_PREFIX):
            record['url'] = deobfuscate(url[len(OBFUSCATED_URL_PREFIX):])
        return Calendar.from_record(record)
