"""Structured-database tier of the cache, one DynamoDB item per entry."""
import json
import logging
from typing import Optional

from processor.models import CacheEntry
from storage.dynamodb_manager import DynamoDBManager

logger = logging.getLogger(__name__)


class CacheTable(DynamoDBManager):
    """Stores CacheEntry items keyed by logical name."""

    KEY_NAME = 'key'

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        item = self._get_item(key)
        if item is None:
            return None
        try:
            return CacheEntry(
                key=item['key'],
                payload=json.loads(item['payload']),
                timestamp=float(item['timestamp']),
                expires_at=float(item['expiresAt']),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache item '{key}': {e}")
            return None

    def put_entry(self, entry: CacheEntry) -> None:
        self._put_item({
            'key': entry.key,
            'payload': json.dumps(entry.payload),
            'timestamp': entry.timestamp,
            'expiresAt': entry.expires_at,
        })

    def delete_entry(self, key: str) -> None:
        self._delete_item(key)

    def clear(self) -> int:
        return self._clear()
