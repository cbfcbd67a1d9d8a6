"""DynamoDB storage of normalized events with per-calendar change detection."""
import logging
from typing import Dict, List, Optional

from processor.models import Event, EventSyncResult
from processor.occurrence_expander import has_occurrence_changed
from storage.dynamodb_manager import DynamoDBManager, attribute_equals

logger = logging.getLogger(__name__)


class EventStore(DynamoDBManager):
    """Events table; each item is Event.to_dict() keyed by ``id``."""

    def get_events(self, calendar_id: Optional[str] = None) -> List[Event]:
        """
        Read stored events.

        Args:
            calendar_id: Restrict to one calendar (default: all)

        Returns:
            List of Event objects

        Raises:
            StorageUnavailableError: If the table cannot be read
        """
        condition = attribute_equals('calendarId', calendar_id) if calendar_id else None
        events = []
        for item in self._scan(condition):
            try:
                events.append(Event.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable event item {item.get('id')}: {e}")
        return events

    def get_events_by_id(self, calendar_id: str) -> Dict[str, Event]:
        return {event.event_id: event for event in self.get_events(calendar_id)}

    def sync_calendar_events(self, calendar_id: str, new_events: List[Event]) -> EventSyncResult:
        """
        Make the stored events of one calendar match new_events.

        Ids missing from storage are added, ids whose description, location,
        time or organizer changed are rewritten, and stored ids absent from
        new_events are deleted.

        Args:
            calendar_id: Calendar being synced
            new_events: Current events of that calendar

        Returns:
            EventSyncResult with counts and batch errors

        Raises:
            StorageUnavailableError: If the existing events cannot be read
        """
        logger.info(f"Starting sync of calendar {calendar_id} with {len(new_events)} events")
        errors = []

        existing_events = self.get_events_by_id(calendar_id)
        new_events_dict = {
            event.event_id: event for event in new_events
            if event.calendar_id == calendar_id
        }

        events_to_add = [
            event for event_id, event in new_events_dict.items()
            if event_id not in existing_events
        ]
        events_to_update = [
            event for event_id, event in new_events_dict.items()
            if event_id in existing_events
            and has_occurrence_changed(existing_events[event_id], event)
        ]
        event_ids_to_delete = [
            event_id for event_id in existing_events
            if event_id not in new_events_dict
        ]

        logger.info(
            f"Sync plan for {calendar_id}: {len(events_to_add)} to add, "
            f"{len(events_to_update)} to update, "
            f"{len(event_ids_to_delete)} to delete"
        )

        added_count = 0
        updated_count = 0
        deleted_count = 0

        to_write = events_to_add + events_to_update
        if to_write:
            write_count = self.batch_write([event.to_dict() for event in to_write])
            added_count = min(write_count, len(events_to_add))
            updated_count = write_count - added_count
            if write_count < len(to_write):
                errors.append(f"{len(to_write) - write_count} events could not be written")

        if event_ids_to_delete:
            deleted_count = self.batch_delete(event_ids_to_delete)
            if deleted_count < len(event_ids_to_delete):
                errors.append(
                    f"{len(event_ids_to_delete) - deleted_count} events could not be deleted"
                )

        logger.info(
            f"Sync of {calendar_id} complete: {added_count} added, "
            f"{updated_count} updated, {deleted_count} deleted"
        )
        return EventSyncResult(
            added=added_count, updated=updated_count, deleted=deleted_count, errors=errors
        )

    def delete_calendar_events(self, calendar_id: str) -> int:
        """
        Delete every event of a calendar.

        Returns:
            Number of deleted events
        """
        ids = [event.event_id for event in self.get_events(calendar_id)]
        deleted = self.batch_delete(ids)
        logger.info(f"Deleted {deleted} events of calendar {calendar_id}")
        return deleted
