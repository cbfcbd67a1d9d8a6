"""Durable key-value store backed by a single JSON file."""
import json
import logging
import os
import tempfile
import time
from typing import Any, Dict, List, Optional

from processor.errors import StorageUnavailableError
from storage.obfuscation import deobfuscate, obfuscate

logger = logging.getLogger(__name__)

OBFUSCATED_PREFIX = 'obf:'


class FileKeyValueStore:
    """
    Small portable key-value store shared by the foreground and the worker.

    Every write rewrites the whole file through an atomic rename, so readers
    never observe a partial document. Last write wins.
    """

    def __init__(self, path: str, obfuscate_file: bool = False):
        """
        Initialize the store.

        Args:
            path: JSON file location (created on first write)
            obfuscate_file: Keep the whole document obfuscated on disk
        """
        self.path = path
        self.obfuscate_file = obfuscate_file

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.error(f"Cannot read key-value store {self.path}: {e}")
            raise StorageUnavailableError(f"Cannot read {self.path}: {e}") from e

        if not raw.strip():
            return {}

        try:
            if raw.startswith(OBFUSCATED_PREFIX):
                raw = deobfuscate(raw[len(OBFUSCATED_PREFIX):])
            data = json.loads(raw)
        except ValueError as e:
            logger.error(f"Key-value store {self.path} is corrupt: {e}")
            raise StorageUnavailableError(f"Corrupt key-value store {self.path}: {e}") from e

        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        document = json.dumps(data, sort_keys=True)
        if self.obfuscate_file:
            document = OBFUSCATED_PREFIX + obfuscate(document)

        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(document)
            os.replace(temp_path, self.path)
        except OSError as e:
            logger.error(f"Cannot write key-value store {self.path}: {e}")
            raise StorageUnavailableError(f"Cannot write {self.path}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> bool:
        data = self._read()
        if key not in data:
            return False
        del data[key]
        self._write(data)
        return True

    def keys(self) -> List[str]:
        return sorted(self._read().keys())

    def set_secure(self, key: str, value: str) -> None:
        """Store a string value obfuscated."""
        self.set(key, OBFUSCATED_PREFIX + obfuscate(value))

    def get_secure(self, key: str) -> Optional[str]:
        """
        Read a value written by set_secure.

        Plain values written before obfuscation was enabled are returned as-is.
        """
        value = self.get(key)
        if not isinstance(value, str):
            return None
        if value.startswith(OBFUSCATED_PREFIX):
            try:
                return deobfuscate(value[len(OBFUSCATED_PREFIX):])
            except ValueError as e:
                logger.warning(f"Cannot decode secure value '{key}': {e}")
                return None
        return value

    def purge_expired(self, now: Optional[float] = None) -> int:
        """
        Remove entries whose ``expiresAt`` has passed.

        Args:
            now: Epoch seconds (default: current time)

        Returns:
            Number of entries removed
        """
        now = time.time() if now is None else now
        data = self._read()
        expired = [
            key for key, value in data.items()
            if isinstance(value, dict)
            and isinstance(value.get('expiresAt'), (int, float))
            and now > value['expiresAt']
        ]
        if not expired:
            return 0

        for key in expired:
            del data[key]
        self._write(data)
        logger.info(f"Purged {len(expired)} expired key-value entries")
        return len(expired)
