"""Read-through cache over memory, the key-value file and the structured database."""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from processor.errors import StorageUnavailableError
from processor.models import CacheEntry
from storage.cache_table import CacheTable
from storage.kv_store import FileKeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 6 * 60 * 60
KV_PREFIX = 'cache:'


class TieredCache:
    """
    Cache service checked memory first, then key-value, then database.

    A hit in a slower tier is written back to the faster ones. Entries past
    their expiry are treated as absent by every tier.
    """

    def __init__(
        self,
        kv_store: FileKeyValueStore,
        table: Optional[CacheTable] = None,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the cache.

        Args:
            kv_store: Durable key-value tier
            table: Optional structured database tier
            default_ttl: Freshness window in seconds (default: 6 hours)
            clock: Returns epoch seconds
        """
        self.kv_store = kv_store
        self.table = table
        self.default_ttl = default_ttl
        self.clock = clock
        self._memory: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.payload if entry else None

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Look up an entry through every tier.

        Args:
            key: Logical name, e.g. ``current`` or ``2024-03-01``

        Returns:
            Fresh CacheEntry, or None when absent or expired everywhere
        """
        now = self.clock()

        entry = self._memory.get(key)
        if entry and not entry.is_expired(now):
            return entry
        self._memory.pop(key, None)

        entry = self._kv_get(key)
        if entry and not entry.is_expired(now):
            self._memory[key] = entry
            return entry

        entry = self._table_get(key)
        if entry and not entry.is_expired(now):
            logger.debug(f"Cache '{key}' served from database tier")
            self._memory[key] = entry
            self._kv_put(entry)
            return entry

        return None

    def set(
        self,
        key: str,
        payload: Any,
        ttl: Optional[float] = None,
        captured_at: Optional[float] = None
    ) -> bool:
        """
        Write an entry to every tier.

        A write carrying older data than a still-fresh entry is dropped.

        Args:
            key: Logical name
            payload: JSON-serializable value
            ttl: Freshness window in seconds (default: the cache default)
            captured_at: When the payload was captured (default: now)

        Returns:
            True if written, False if a fresher entry was kept
        """
        now = self.clock()
        timestamp = now if captured_at is None else captured_at

        current = self.get_entry(key)
        if current and current.timestamp > timestamp:
            logger.info(f"Keeping fresher cache entry '{key}' over older data")
            return False

        entry = CacheEntry(
            key=key,
            payload=payload,
            timestamp=timestamp,
            expires_at=timestamp + (self.default_ttl if ttl is None else ttl),
        )
        self._memory[key] = entry
        self._kv_put(entry)
        self._table_put(entry)
        return True

    def delete(self, key: str) -> None:
        self._memory.pop(key, None)
        try:
            self.kv_store.remove(KV_PREFIX + key)
        except StorageUnavailableError as e:
            logger.warning(f"Cannot remove '{key}' from key-value tier: {e}")
        if self.table is not None:
            try:
                self.table.delete_entry(key)
            except StorageUnavailableError as e:
                logger.warning(f"Cannot remove '{key}' from database tier: {e}")

    def clear_memory(self) -> None:
        self._memory.clear()

    def purge_expired(self) -> List[str]:
        """Drop expired entries from memory and the key-value tier."""
        now = self.clock()
        expired = [key for key, entry in self._memory.items() if entry.is_expired(now)]
        for key in expired:
            del self._memory[key]

        try:
            for kv_key in self.kv_store.keys():
                if not kv_key.startswith(KV_PREFIX):
                    continue
                entry = self._kv_get(kv_key[len(KV_PREFIX):])
                if entry and entry.is_expired(now):
                    self.kv_store.remove(kv_key)
                    expired.append(entry.key)
        except StorageUnavailableError as e:
            logger.warning(f"Cannot purge key-value tier: {e}")

        return sorted(set(expired))

    def _kv_get(self, key: str) -> Optional[CacheEntry]:
        try:
            data = self.kv_store.get(KV_PREFIX + key)
        except StorageUnavailableError as e:
            logger.warning(f"Key-value tier unavailable for '{key}': {e}")
            return None
        if not isinstance(data, dict):
            return None
        try:
            return CacheEntry.from_dict(data)
        except (KeyError, TypeError, ValueError):
            return None

    def _kv_put(self, entry: CacheEntry) -> None:
        try:
            self.kv_store.set(KV_PREFIX + entry.key, entry.to_dict())
        except StorageUnavailableError as e:
            logger.warning(f"Key-value tier unavailable for '{entry.key}': {e}")

    def _table_get(self, key: str) -> Optional[CacheEntry]:
        if self.table is None:
            return None
        try:
            return self.table.get_entry(key)
        except StorageUnavailableError as e:
            logger.warning(f"Database tier unavailable for '{key}': {e}")
            return None

    def _table_put(self, entry: CacheEntry) -> None:
        if self.table is None:
            return
        try:
            self.table.put_entry(entry)
        except StorageUnavailableError as e:
            # The key-value copy still serves reads
            logger.warning(f"Database tier unavailable for '{entry.key}': {e}")


def calendar_cache_key(calendar_id: str) -> str:
    return f"calendar:{calendar_id}"
