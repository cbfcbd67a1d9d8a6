"""Key-value backed queue passing worker results to the foreground."""
import logging
from typing import List

from processor.models import HandoffRecord
from storage.kv_store import FileKeyValueStore

logger = logging.getLogger(__name__)

QUEUE_KEY = 'calendar_sync_queue'


class HandoffQueue:
    """Portable list of HandoffRecord dicts under a single key."""

    def __init__(self, kv_store: FileKeyValueStore, key: str = QUEUE_KEY):
        self.kv_store = kv_store
        self.key = key

    def append(self, record: HandoffRecord) -> int:
        """
        Append a record.

        Returns:
            Queue length after the append
        """
        queue = self._load()
        queue.append(record.to_dict())
        self.kv_store.set(self.key, queue)
        logger.info(f"Queued payload of calendar {record.calendar_id} for foreground ({len(queue)} pending)")
        return len(queue)

    def pending(self) -> List[HandoffRecord]:
        records = []
        for item in self._load():
            try:
                records.append(HandoffRecord.from_dict(item))
            except (KeyError, TypeError) as e:
                logger.warning(f"Dropping unreadable handoff record: {e}")
        return records

    def drain(self) -> List[HandoffRecord]:
        """Return every pending record and clear the queue."""
        records = self.pending()
        if records or self.kv_store.get(self.key) is not None:
            self.kv_store.remove(self.key)
        return records

    def requeue(self, records: List[HandoffRecord]) -> int:
        """
        Put records back at the front of the queue, ahead of anything appended since.

        Returns:
            Queue length after the requeue
        """
        queue = [record.to_dict() for record in records] + self._load()
        self.kv_store.set(self.key, queue)
        logger.info(f"Requeued {len(records)} payloads ({len(queue)} pending)")
        return len(queue)

    def __len__(self) -> int:
        return len(self._load())

    def _load(self) -> list:
        queue = self.kv_store.get(self.key, [])
        return list(queue) if isinstance(queue, list) else []
