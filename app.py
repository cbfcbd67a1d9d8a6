"""Foreground application: wiring, activation and a small CLI."""
import argparse
import json
import logging
import sys
import time
from dataclasses import dataclass
from typing import List, Optional

from dateutil import tz

from config import AppConfig
from logging_config import setup_logging
from processor.aggregator import CalendarSelection, count_events
from processor.models import Calendar, Event, SyncResult
from storage.cache_table import CacheTable
from storage.calendar_repository import CalendarRepository
from storage.event_store import EventStore
from storage.handoff_queue import HandoffQueue
from storage.kv_store import FileKeyValueStore
from storage.local_events import LocalEventStore
from storage.tiered_cache import TieredCache
from sync.adapters import default_adapters
from sync.channels import LambdaChannel
from sync.orchestrator import SyncOrchestrator, format_last_sync, format_sync_status
from sync.rate_limiter import RateLimiter
from sync.scheduler import BackgroundSupport, EventBridgeScheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AppConfig
    kv_store: FileKeyValueStore
    cache: TieredCache
    event_store: EventStore
    repository: CalendarRepository
    handoff_queue: HandoffQueue
    local_events: LocalEventStore
    orchestrator: SyncOrchestrator
    scheduler: EventBridgeScheduler


def build_services(config: AppConfig) -> Services:
    """
    Construct every long-lived component once for this process.

    Args:
        config: Application configuration

    Returns:
        Services bundle shared by the foreground app and the worker
    """
    dynamodb_args = {'endpoint_url': config.dynamodb_endpoint_url, 'region_name': config.region}

    kv_store = FileKeyValueStore(config.kv_store_path, obfuscate_file=config.obfuscate_kv_store)
    cache_table = CacheTable(config.cache_table, **dynamodb_args) if config.cache_table else None
    cache = TieredCache(kv_store, table=cache_table, default_ttl=config.cache_ttl_seconds)
    event_store = EventStore(config.events_table, **dynamodb_args)
    repository = CalendarRepository(
        config.calendars_table, event_store=event_store, cache=cache, **dynamodb_args
    )
    handoff_queue = HandoffQueue(kv_store)
    local_events = LocalEventStore(kv_store)

    viewer_tz = tz.gettz(config.viewer_timezone) if config.viewer_timezone else None
    adapters = default_adapters(timeout=config.timeout_seconds, viewer_tz=viewer_tz)

    orchestrator = SyncOrchestrator(
        repository=repository,
        event_store=event_store,
        cache=cache,
        handoff_queue=handoff_queue,
        adapters=adapters,
        local_events=local_events,
        rate_limiter=RateLimiter(config.refresh_min_interval_seconds),
        cleanup_limiter=RateLimiter(config.expired_cleanup_interval_seconds),
        sync_interval=config.calendar_sync_interval_seconds,
        periodic_sync_seconds=config.periodic_sync_seconds,
    )
    scheduler = EventBridgeScheduler(
        target_arn=config.worker_target_arn,
        event_bus_name=config.event_bus_name,
        timeout=config.registration_timeout_seconds,
        region_name=config.region,
    )

    return Services(
        config=config,
        kv_store=kv_store,
        cache=cache,
        event_store=event_store,
        repository=repository,
        handoff_queue=handoff_queue,
        local_events=local_events,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )


class CalendarApp:
    """Foreground view of the aggregated calendars."""

    def __init__(self, services: Services, channel=None):
        self.services = services
        self.orchestrator = services.orchestrator
        self.selection = CalendarSelection(services.kv_store)
        self.channel = channel
        self.background_support = BackgroundSupport(background_sync=False, periodic_sync=False)
        self.last_result: Optional[SyncResult] = None

    def activate(self) -> int:
        """
        Bring the foreground up to date with work done while it was away.

        Returns:
            Number of queued worker results merged
        """
        merged = self.orchestrator.drain_handoff()
        background = self.orchestrator.last_background_result()
        if background is not None:
            self.last_result = background
            logger.info(
                f"Background sync at {background.timestamp}: "
                f"{background.synced_count}/{background.total_calendars} synced"
            )
        return merged

    def start(self) -> BackgroundSupport:
        self.activate()
        self.background_support = self.orchestrator.register_background_sync(self.channel)
        return self.background_support

    def refresh(self, force: bool = False) -> Optional[SyncResult]:
        result = self.orchestrator.refresh(force=force)
        if result is not None:
            self.last_result = result
        return result

    def run_timer(self, interval: float, iterations: Optional[int] = None,
                  sleep=time.sleep) -> None:
        """Refresh on a fixed interval; used when no background capability exists."""
        count = 0
        while iterations is None or count < iterations:
            self.refresh()
            count += 1
            if iterations is None or count < iterations:
                sleep(interval)

    def remove_calendar(self, calendar_id: str) -> bool:
        """
        Remove a calendar with its events, selection entry and sync state.

        Returns:
            False if the calendar did not exist
        """
        if not self.services.repository.remove_calendar(calendar_id):
            return False
        self.selection.cleanup(calendar_id)
        self.orchestrator.forget_calendar(calendar_id)
        return True

    def calendars(self) -> List[Calendar]:
        events = self.orchestrator.current_events()
        return self.orchestrator.aggregator.visible_calendars(
            self.services.repository.list_calendars(), count_events(events)
        )

    def events(self, selected_only: bool = True) -> List[Event]:
        events = self.orchestrator.current_events()
        if not selected_only:
            return events
        return self.selection.filter(events, self.services.repository.list_calendars())


def _print_events(events: List[Event]) -> None:
    for event in events:
        location = f" @ {event.location}" if event.location else ''
        print(f"{event.date.isoformat()}  {event.time:<24}  {event.title}{location}")


def _print_calendars(app: CalendarApp) -> None:
    for calendar in app.calendars():
        state = format_sync_status(app.orchestrator.state(calendar.id))
        print(
            f"{calendar.id:<32}  {calendar.name:<24}  {calendar.event_count:>5} events  "
            f"{state}, {format_last_sync(calendar.last_sync)}"
        )


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Family calendar sync')
    subparsers = parser.add_subparsers(dest='command', required=True)

    refresh_parser = subparsers.add_parser('refresh', help='Sync calendars now')
    refresh_parser.add_argument('--force', action='store_true', help='Ignore the refresh interval')
    events_parser = subparsers.add_parser('events', help='List aggregated events')
    events_parser.add_argument('--all', action='store_true', help='Ignore calendar selection')
    subparsers.add_parser('calendars', help='List calendars')
    remove_parser = subparsers.add_parser('remove', help='Remove a calendar and its events')
    remove_parser.add_argument('calendar_id')

    args = parser.parse_args(argv)

    config = AppConfig.from_env()
    setup_logging(config.log_level)
    services = build_services(config)
    channel = LambdaChannel(
        config.worker_function_name,
        timeout=config.registration_timeout_seconds,
        region_name=config.region,
    ) if config.worker_function_name else None
    app = CalendarApp(services, channel=channel)
    app.activate()

    if args.command == 'refresh':
        result = app.refresh(force=args.force)
        if result is None:
            print('Refresh skipped, calendars were fetched recently (use --force)')
        else:
            print(json.dumps(result.to_dict(), indent=2))
        return 1 if result is not None and result.error_count else 0

    if args.command == 'remove':
        if not app.remove_calendar(args.calendar_id):
            print(f"No calendar {args.calendar_id}")
            return 1
        print(f"Removed {args.calendar_id}")
        return 0

    if args.command == 'events':
        _print_events(app.events(selected_only=not args.all))
        return 0

    _print_calendars(app)
    return 0


if __name__ == '__main__':
    sys.exit(main())
