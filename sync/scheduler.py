"""Background-sync capability backed by EventBridge rules targeting the worker."""
import json
import logging
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

SYNC_EVENT_SOURCE = 'family-calendar.sync'
REGISTRATION_TIMEOUT_SECONDS = 5
PERIODIC_SYNC_SECONDS = 12 * 60 * 60


@dataclass(frozen=True)
class BackgroundSupport:
    """Which background capabilities were registered."""
    background_sync: bool
    periodic_sync: bool

    @property
    def foreground_only(self) -> bool:
        return not (self.background_sync or self.periodic_sync)


def rate_expression(seconds: int) -> str:
    """EventBridge rate() expression, rounded up to whole minutes."""
    minutes = max(1, -(-int(seconds) // 60))
    if minutes % 1440 == 0:
        days = minutes // 1440
        return f"rate({days} day{'s' if days > 1 else ''})"
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"rate({hours} hour{'s' if hours > 1 else ''})"
    return f"rate({minutes} minute{'s' if minutes > 1 else ''})"


class EventBridgeScheduler:
    """Registers one-off and periodic sync triggers for the worker function."""

    def __init__(
        self,
        target_arn: Optional[str],
        event_bus_name: str = 'default',
        timeout: float = REGISTRATION_TIMEOUT_SECONDS,
        region_name: Optional[str] = None,
        client=None
    ):
        """
        Initialize the scheduler.

        Args:
            target_arn: ARN of the worker function; None disables the capability
            event_bus_name: Event bus for one-off triggers
            timeout: Connect and read timeout for each registration call
            region_name: Optional AWS region
            client: Optional pre-built ``events`` client
        """
        self.target_arn = target_arn
        self.event_bus_name = event_bus_name
        if client is None and target_arn:
            client = boto3.client(
                'events',
                region_name=region_name,
                config=Config(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={'max_attempts': 1},
                ),
            )
        self.client = client

    @property
    def available(self) -> bool:
        return bool(self.target_arn and self.client)

    def register_background_sync(self, tag: str) -> bool:
        """
        Register a trigger rule and fire it once.

        Args:
            tag: Sync tag, used as the rule name and detail type

        Returns:
            True on success, False if unavailable or any call failed
        """
        if not self.available:
            logger.info('Background sync capability not available')
            return False

        rule_name = f"{tag}-trigger"
        try:
            self.client.put_rule(
                Name=rule_name,
                EventPattern=json.dumps({
                    'source': [SYNC_EVENT_SOURCE],
                    'detail-type': [tag],
                }),
                EventBusName=self.event_bus_name,
                State='ENABLED',
            )
            self.client.put_targets(
                Rule=rule_name,
                EventBusName=self.event_bus_name,
                Targets=[{'Id': 'calendar-sync-worker', 'Arn': self.target_arn}],
            )
            response = self.client.put_events(Entries=[{
                'Source': SYNC_EVENT_SOURCE,
                'DetailType': tag,
                'Detail': json.dumps({'tag': tag}),
                'EventBusName': self.event_bus_name,
            }])
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Background sync registration failed: {e}")
            return False

        if response.get('FailedEntryCount', 0):
            logger.warning(f"Background sync trigger was rejected: {response.get('Entries')}")
            return False

        logger.info(f"Background sync '{tag}' registered")
        return True

    def register_periodic_sync(self, tag: str,
                               min_interval_seconds: int = PERIODIC_SYNC_SECONDS) -> bool:
        """
        Register a scheduled rule invoking the worker periodically.

        Args:
            tag: Sync tag, used as the rule name
            min_interval_seconds: Minimum interval between runs

        Returns:
            True on success, False if unavailable or any call failed
        """
        if not self.available:
            logger.info('Periodic sync capability not available')
            return False

        rule_name = f"{tag}-periodic"
        try:
            self.client.put_rule(
                Name=rule_name,
                ScheduleExpression=rate_expression(min_interval_seconds),
                State='ENABLED',
            )
            self.client.put_targets(
                Rule=rule_name,
                Targets=[{'Id': 'calendar-sync-worker', 'Arn': self.target_arn}],
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Periodic sync registration failed: {e}")
            return False

        logger.info(f"Periodic sync '{tag}' registered every {min_interval_seconds}s")
        return True
