"""Environment-driven configuration."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional


# Lambda only allows writes under /tmp
LAMBDA_KV_STORE_PATH = '/tmp/family-calendar/store.json'


def _optional(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name, '').strip()
    return value or None


@dataclass(frozen=True)
class AppConfig:
    calendars_table: str = 'family-calendars'
    events_table: str = 'family-calendar-events'
    cache_table: Optional[str] = 'family-calendar-cache'
    region: Optional[str] = None
    dynamodb_endpoint_url: Optional[str] = None
    kv_store_path: str = os.path.join(os.path.expanduser('~'), '.family-calendar', 'store.json')
    obfuscate_kv_store: bool = False
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    cache_ttl_hours: float = 6
    refresh_min_interval_seconds: int = 5 * 60
    periodic_sync_hours: float = 12
    expired_cleanup_interval_seconds: int = 60 * 60
    calendar_sync_interval_seconds: int = 15 * 60
    registration_timeout_seconds: float = 5
    worker_function_name: Optional[str] = None
    worker_target_arn: Optional[str] = None
    event_bus_name: str = 'default'
    viewer_timezone: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """
        Build configuration from environment variables.

        Args:
            env: Mapping to read (default: os.environ)

        Returns:
            AppConfig with defaults for unset variables
        """
        env = os.environ if env is None else env
        defaults = cls()
        kv_default = (LAMBDA_KV_STORE_PATH if env.get('AWS_LAMBDA_FUNCTION_NAME')
                      else defaults.kv_store_path)
        return cls(
            calendars_table=env.get('CALENDARS_TABLE', defaults.calendars_table),
            events_table=env.get('EVENTS_TABLE', defaults.events_table),
            cache_table=_optional(env, 'CACHE_TABLE') if 'CACHE_TABLE' in env else defaults.cache_table,
            region=_optional(env, 'AWS_REGION'),
            dynamodb_endpoint_url=_optional(env, 'DYNAMODB_ENDPOINT_URL'),
            kv_store_path=env.get('KV_STORE_PATH', kv_default),
            obfuscate_kv_store=env.get('OBFUSCATE_KV_STORE', 'false').lower() in ('1', 'true', 'yes'),
            log_level=env.get('LOG_LEVEL', defaults.log_level),
            timeout_seconds=int(env.get('TIMEOUT_SECONDS', defaults.timeout_seconds)),
            cache_ttl_hours=float(env.get('CACHE_TTL_HOURS', defaults.cache_ttl_hours)),
            refresh_min_interval_seconds=int(
                env.get('REFRESH_MIN_INTERVAL_SECONDS', defaults.refresh_min_interval_seconds)
            ),
            periodic_sync_hours=float(env.get('PERIODIC_SYNC_HOURS', defaults.periodic_sync_hours)),
            expired_cleanup_interval_seconds=int(
                env.get('EXPIRED_CLEANUP_INTERVAL_SECONDS', defaults.expired_cleanup_interval_seconds)
            ),
            calendar_sync_interval_seconds=int(
                env.get('CALENDAR_SYNC_INTERVAL_SECONDS', defaults.calendar_sync_interval_seconds)
            ),
            registration_timeout_seconds=float(
                env.get('REGISTRATION_TIMEOUT_SECONDS', defaults.registration_timeout_seconds)
            ),
            worker_function_name=_optional(env, 'WORKER_FUNCTION_NAME'),
            worker_target_arn=_optional(env, 'WORKER_TARGET_ARN'),
            event_bus_name=env.get('EVENT_BUS_NAME', defaults.event_bus_name),
            viewer_timezone=_optional(env, 'VIEWER_TIMEZONE'),
        )

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_hours * 60 * 60

    @property
    def periodic_sync_seconds(self) -> int:
        return int(self.periodic_sync_hours * 60 * 60)
