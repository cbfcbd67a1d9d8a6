"""Drives calendar syncs, the tiered cache and the handoff queue."""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from processor.aggregator import EventAggregator
from processor.errors import CalendarSyncError, StorageUnavailableError
from processor.models import (
    DEFAULT_LOCAL_CALENDAR_ID, Calendar, Event, HandoffRecord, SourceKind, SyncResult,
    SyncState, utc_now,
)
from storage.calendar_repository import DEFAULT_SYNC_INTERVAL_SECONDS, is_sync_due
from storage.event_store import EventStore
from storage.handoff_queue import HandoffQueue
from storage.local_events import LocalEventStore
from storage.tiered_cache import TieredCache, calendar_cache_key
from sync.messages import (
    DEFAULT_SYNC_TAG, BackgroundSyncComplete, RegisterBackgroundSync, RegisterPeriodicSync,
    from_wire, to_wire,
)
from sync.rate_limiter import RateLimiter
from sync.scheduler import PERIODIC_SYNC_SECONDS, BackgroundSupport

logger = logging.getLogger(__name__)

CALENDAR_CATEGORY = 'calendars'
CLEANUP_CATEGORY = 'expired-cleanup'
EXPIRED_CLEANUP_INTERVAL_SECONDS = 60 * 60
BACKGROUND_RESULT_KEY = 'background_sync_result'


def format_sync_status(state: SyncState) -> str:
    return {
        SyncState.IDLE: 'Not synced',
        SyncState.SYNCING: 'Syncing...',
        SyncState.SYNCED: 'Synced',
        SyncState.ERRORED: 'Sync failed',
    }[state]


def format_last_sync(last_sync: Optional[str], now: Optional[datetime] = None) -> str:
    """
    Human readable age of a last-sync timestamp.

    Args:
        last_sync: ISO timestamp or None
        now: Current time (default: now, UTC)

    Returns:
        "Never synced", "Just now", "N minutes ago", "N hours ago" or "N days ago"
    """
    if not last_sync:
        return 'Never synced'
    try:
        then = datetime.fromisoformat(last_sync)
    except ValueError:
        return 'Never synced'
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)

    minutes = int(((now or utc_now()) - then).total_seconds() // 60)
    if minutes < 1:
        return 'Just now'
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


class SyncOrchestrator:
    """
    Per-calendar sync state machine shared by the foreground and the worker.

    States move idle/synced/errored -> syncing -> synced or errored. A failed
    sync keeps previously stored events.
    """

    def __init__(
        self,
        repository,
        event_store: Optional[EventStore],
        cache: TieredCache,
        handoff_queue: HandoffQueue,
        adapters: Mapping[SourceKind, Any],
        local_events: Optional[LocalEventStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cleanup_limiter: Optional[RateLimiter] = None,
        aggregator: Optional[EventAggregator] = None,
        sync_interval: float = DEFAULT_SYNC_INTERVAL_SECONDS,
        periodic_sync_seconds: int = PERIODIC_SYNC_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        self.repository = repository
        self.event_store = event_store
        self.cache = cache
        self.handoff_queue = handoff_queue
        self.adapters = dict(adapters)
        self.local_events = local_events
        self.rate_limiter = rate_limiter or RateLimiter(clock=clock)
        self.cleanup_limiter = cleanup_limiter or RateLimiter(
            EXPIRED_CLEANUP_INTERVAL_SECONDS, clock=clock
        )
        self.aggregator = aggregator or EventAggregator()
        self.sync_interval = sync_interval
        self.periodic_sync_seconds = periodic_sync_seconds
        self.clock = clock
        self._states: Dict[str, SyncState] = {}
        self._errors: Dict[str, str] = {}

    def state(self, calendar_id: str) -> SyncState:
        return self._states.get(calendar_id, SyncState.IDLE)

    def last_error(self, calendar_id: str) -> Optional[str]:
        return self._errors.get(calendar_id)

    def sync_calendar(self, calendar: Calendar) -> bool:
        """
        Sync one calendar.

        Args:
            calendar: Calendar to sync

        Returns:
            True if the calendar ended synced, False if errored
        """
        if self.state(calendar.id) == SyncState.SYNCING:
            logger.info(f"Calendar {calendar.id} is already syncing")
            return False

        adapter = self.adapters.get(calendar.source_kind)
        if adapter is None:
            logger.warning(f"No adapter for {calendar.source_kind.value} calendar {calendar.id}")
            self._fail(calendar, f"Unsupported source kind {calendar.source_kind.value}")
            return False

        self._states[calendar.id] = SyncState.SYNCING
        started = self.clock()
        logger.info(f"Syncing calendar '{calendar.name}' ({calendar.id})")

        try:
            result = adapter.fetch(calendar)
            self._store(calendar, result.events, result.raw_payload, started)
            self._record_sync(
                calendar, len(result.events),
                datetime.fromtimestamp(started, timezone.utc).isoformat(),
            )
        except CalendarSyncError as e:
            self._fail(calendar, str(e))
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error syncing calendar '{calendar.name}': {str(e)}",
                extra={'calendar_id': calendar.id, 'error_type': type(e).__name__},
                exc_info=True
            )
            self._fail(calendar, f"{type(e).__name__}: {e}")
            return False

        self._states[calendar.id] = SyncState.SYNCED
        self._errors.pop(calendar.id, None)
        logger.info(
            f"Calendar '{calendar.name}' synced with {len(result.events)} events",
            extra={'calendar_id': calendar.id, **result.metadata},
        )
        return True

    def sync_all(self, only_due: bool = False) -> SyncResult:
        """
        Sync every enabled calendar in order, continuing past failures.

        Args:
            only_due: Skip calendars whose sync interval has not elapsed

        Returns:
            SyncResult of the pass
        """
        calendars = [
            calendar for calendar in self.repository.list_calendars()
            if calendar.enabled and calendar.source_kind in self.adapters
        ]
        if only_due:
            now = self._now()
            calendars = [
                calendar for calendar in calendars
                if is_sync_due(calendar, now, self.sync_interval)
            ]

        synced = 0
        errored = 0
        for calendar in calendars:
            if self.sync_calendar(calendar):
                synced += 1
            else:
                errored += 1

        result = SyncResult(
            timestamp=self._now().isoformat(),
            synced_count=synced,
            error_count=errored,
            total_calendars=len(calendars),
        )
        logger.info(
            f"Sync pass complete: {synced}/{len(calendars)} synced, {errored} errors"
        )
        return result

    def refresh(self, force: bool = False) -> Optional[SyncResult]:
        """
        Foreground refresh, suppressed within the minimum interval unless forced.

        Returns:
            SyncResult, or None if the refresh was suppressed
        """
        if not self.rate_limiter.should_fetch(CALENDAR_CATEGORY, force=force):
            return None
        self.rate_limiter.record_fetch(CALENDAR_CATEGORY)
        self.cleanup_expired()
        return self.sync_all(only_due=not force)

    def cleanup_expired(self, force: bool = False) -> List[str]:
        if not self.cleanup_limiter.should_fetch(CLEANUP_CATEGORY, force=force):
            return []
        self.cleanup_limiter.record_fetch(CLEANUP_CATEGORY)
        removed = self.cache.purge_expired()
        if removed:
            logger.info(f"Removed {len(removed)} expired cache entries")
        return removed

    def drain_handoff(self) -> int:
        """
        Merge queued payloads into storage.

        Payloads older than the calendar's last sync are dropped. Payloads that
        cannot be stored yet go back on the queue.

        Returns:
            Number of records merged
        """
        try:
            records = self.handoff_queue.drain()
        except StorageUnavailableError as e:
            logger.warning(f"Handoff queue unavailable: {e}")
            return 0
        if not records:
            return 0

        merged = 0
        retained: List[HandoffRecord] = []
        for record in records:
            try:
                calendar = self.repository.get_calendar(record.calendar_id)
            except StorageUnavailableError as e:
                logger.warning(f"Calendar store unavailable, keeping queued payload of "
                               f"{record.calendar_id}: {e}")
                retained.append(record)
                continue
            if calendar is None:
                logger.warning(f"Dropping queued payload of unknown calendar {record.calendar_id}")
                continue
            adapter = self.adapters.get(calendar.source_kind)
            if adapter is None:
                continue

            captured_at = _epoch(record.sync_time, self.clock())
            last_sync = _epoch(calendar.last_sync, None)
            if last_sync is not None and captured_at < last_sync:
                logger.info(
                    f"Skipping queued payload of {calendar.id} captured at {record.sync_time}, "
                    f"calendar synced since at {calendar.last_sync}"
                )
                continue

            try:
                events = adapter.parse(record.raw_payload, calendar)
            except CalendarSyncError as e:
                logger.warning(f"Cannot parse queued payload of {calendar.id}: {e}")
                continue

            if not self._store(calendar, events, None, captured_at) and self.event_store is not None:
                retained.append(record)
                continue
            self._record_sync(calendar, len(events), record.sync_time)
            merged += 1

        if retained:
            self.handoff_queue.requeue(retained)
        logger.info(
            f"Merged {merged} of {len(records)} queued background results, "
            f"{len(retained)} kept for retry"
        )
        return merged

    def publish_result(self, result: SyncResult) -> None:
        """Leave a BACKGROUND_SYNC_COMPLETE message for the foreground."""
        self.cache.set(BACKGROUND_RESULT_KEY, to_wire(BackgroundSyncComplete(result)))

    def last_background_result(self) -> Optional[SyncResult]:
        data = self.cache.get(BACKGROUND_RESULT_KEY)
        if not data:
            return None
        try:
            message = from_wire(data)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable background result: {e}")
            return None
        return message.result if isinstance(message, BackgroundSyncComplete) else None

    def load_events(self, calendar_id: str) -> List[Event]:
        """Events of one calendar: cache first, then the event store."""
        cached = self.cache.get(calendar_cache_key(calendar_id))
        if isinstance(cached, list):
            return _events_from_dicts(cached)

        if self.event_store is None:
            return []
        try:
            return self.event_store.get_events(calendar_id)
        except StorageUnavailableError as e:
            logger.warning(f"Event store unavailable for {calendar_id}: {e}")
            return []

    def current_events(self) -> List[Event]:
        """Aggregated events of every enabled calendar plus local events."""
        calendars = self.repository.list_calendars()
        events_by_calendar = {calendar.id: self.load_events(calendar.id) for calendar in calendars}
        if self.local_events is not None:
            events_by_calendar.setdefault(DEFAULT_LOCAL_CALENDAR_ID, [])
            events_by_calendar[DEFAULT_LOCAL_CALENDAR_ID] = (
                list(events_by_calendar[DEFAULT_LOCAL_CALENDAR_ID])
                + self.local_events.list_events()
            )
        return self.aggregator.aggregate(events_by_calendar, calendars)

    def forget_calendar(self, calendar_id: str) -> None:
        """Drop sync state and adapter caches of a removed calendar."""
        self._states.pop(calendar_id, None)
        self._errors.pop(calendar_id, None)
        for adapter in self.adapters.values():
            forget = getattr(adapter, 'forget', None)
            if forget is not None:
                forget(calendar_id)

    def register_background_sync(self, channel, tag: str = DEFAULT_SYNC_TAG) -> BackgroundSupport:
        """
        Ask the worker to register background and periodic sync.

        Args:
            channel: Message channel to the worker, or None

        Returns:
            BackgroundSupport flags; both False means foreground-only
        """
        if channel is None:
            logger.info('No background worker channel, using foreground refresh only')
            return BackgroundSupport(background_sync=False, periodic_sync=False)

        background = channel.send(RegisterBackgroundSync(tag=tag))
        periodic = channel.send(
            RegisterPeriodicSync(tag=tag, min_interval_seconds=self.periodic_sync_seconds)
        )
        if not background.success:
            logger.info(f"Background sync unavailable: {background.error}")
        if not periodic.success:
            logger.info(f"Periodic sync unavailable: {periodic.error}")
        return BackgroundSupport(background_sync=background.success,
                                 periodic_sync=periodic.success)

    def _store(self, calendar: Calendar, events: List[Event],
               raw_payload: Optional[str], captured_at: float) -> bool:
        """
        Write events to the cache and the event store.

        Returns:
            True if the event store accepted the events
        """
        self.cache.set(
            calendar_cache_key(calendar.id),
            [event.to_dict() for event in events],
            captured_at=captured_at,
        )

        if self.event_store is None:
            stored = False
        else:
            try:
                self.event_store.sync_calendar_events(calendar.id, events)
                stored = True
            except StorageUnavailableError as e:
                logger.warning(f"Event store unavailable for {calendar.id}: {e}")
                stored = False

        if not stored and raw_payload is not None:
            try:
                self.handoff_queue.append(HandoffRecord(
                    calendar_id=calendar.id,
                    raw_payload=raw_payload,
                    sync_time=datetime.fromtimestamp(captured_at, timezone.utc).isoformat(),
                ))
            except StorageUnavailableError as e:
                logger.error(f"Cannot queue payload of {calendar.id} for the foreground: {e}")
        return stored

    def _record_sync(self, calendar: Calendar, event_count: int,
                     synced_at: Optional[str] = None) -> None:
        calendar.last_sync = synced_at or self._now().isoformat()
        calendar.event_count = event_count
        try:
            self.repository.update_calendar(
                calendar.id, last_sync=calendar.last_sync, event_count=event_count
            )
        except CalendarSyncError as e:
            logger.warning(f"Cannot record sync of {calendar.id}: {e}")

    def _fail(self, calendar: Calendar, error: str) -> None:
        self._states[calendar.id] = SyncState.ERRORED
        self._errors[calendar.id] = error
        logger.warning(f"Sync of calendar '{calendar.name}' failed: {error}")

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), timezone.utc)


def _events_from_dicts(items: List[Dict[str, Any]]) -> List[Event]:
    events = []
    for item in items:
        try:
            events.append(Event.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable cached event: {e}")
    return events


def _epoch(timestamp: Optional[str], default: Optional[float]) -> Optional[float]:
    try:
        value = datetime.fromisoformat(timestamp)
    except (TypeError, ValueError):
        return default
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()
