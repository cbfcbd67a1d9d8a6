"""Background worker: answers foreground messages and runs sync passes."""
import logging
from typing import Any, Dict

from processor.models import SyncResult
from sync.messages import (
    Ack, BackgroundSyncComplete, RegisterBackgroundSync, RegisterPeriodicSync, SkipWaiting,
    from_wire,
)
from sync.orchestrator import SyncOrchestrator
from sync.scheduler import EventBridgeScheduler

logger = logging.getLogger(__name__)


class BackgroundSyncWorker:
    """Runs independently of the foreground; talks to it only through messages and the cache."""

    def __init__(self, orchestrator: SyncOrchestrator, scheduler: EventBridgeScheduler):
        self.orchestrator = orchestrator
        self.scheduler = scheduler

    def handle_message(self, data: Dict[str, Any]) -> Ack:
        """
        Handle one ``{type, payload}`` message from the foreground.

        Args:
            data: Serialized message

        Returns:
            Ack with success flag and optional error
        """
        try:
            message = from_wire(data)
        except ValueError as e:
            logger.warning(f"Rejected message: {e}")
            return Ack(success=False, error=str(e))

        if isinstance(message, SkipWaiting):
            logger.info('Activating latest worker immediately')
            return Ack(success=True)

        if isinstance(message, RegisterBackgroundSync):
            if self.scheduler.register_background_sync(message.tag):
                return Ack(success=True)
            return Ack(success=False, error='Background sync not supported')

        if isinstance(message, RegisterPeriodicSync):
            if self.scheduler.register_periodic_sync(message.tag, message.min_interval_seconds):
                return Ack(success=True)
            return Ack(success=False, error='Periodic sync not supported')

        if isinstance(message, BackgroundSyncComplete):
            return Ack(success=False, error='BACKGROUND_SYNC_COMPLETE is sent by the worker')

        return Ack(success=False, error=f"Unhandled message {type(message).__name__}")

    def run_sync(self) -> SyncResult:
        """
        Sync every enabled calendar and leave the result for the foreground.

        Payloads queued by an earlier run while the event store was down are
        merged first, when this run can reach the same key-value file.
        """
        self.orchestrator.drain_handoff()
        result = self.orchestrator.sync_all()
        self.orchestrator.publish_result(result)
        return result
