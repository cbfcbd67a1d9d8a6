"""AWS Lambda handler for the background calendar sync worker."""
import json
import logging
import time
from typing import Any, Dict

from app import build_services
from config import AppConfig
from logging_config import setup_logging
from sync.background import BackgroundSyncWorker
from sync.messages import is_message


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the background worker.

    Foreground messages (``{type, payload}``) are answered with an
    acknowledgement. Any other event, such as an EventBridge schedule or
    trigger, runs a sync pass over every enabled calendar.

    Args:
        event: Message or EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body
    """
    config = AppConfig.from_env()

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        services = build_services(config)
        worker = BackgroundSyncWorker(services.orchestrator, services.scheduler)

        if is_message(event):
            logger.info(f"Handling {event['type']} message")
            ack = worker.handle_message(event)
            return {
                'statusCode': 200 if ack.success else 400,
                'body': json.dumps(ack.to_dict())
            }

        logger.info(
            "Background sync started",
            extra={
                'calendars_table': config.calendars_table,
                'events_table': config.events_table,
                'trigger': event.get('detail-type', 'direct') if isinstance(event, dict) else 'direct'
            }
        )
        result = worker.run_sync()
        duration = time.time() - start_time

        logger.info(
            "Background sync completed",
            extra={
                'duration_seconds': round(duration, 2),
                'synced_count': result.synced_count,
                'error_count': result.error_count,
                'total_calendars': result.total_calendars,
                'pending_handoff': len(services.handoff_queue)
            }
        )

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': 'Sync completed',
                'type': 'BACKGROUND_SYNC_COMPLETE',
                'result': result.to_dict(),
                'duration_seconds': round(duration, 2)
            })
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Background sync failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Sync failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }
