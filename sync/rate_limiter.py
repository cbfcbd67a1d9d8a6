"""Minimum-interval gate for refreshes of one data category."""
import logging
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

REFRESH_MIN_INTERVAL_SECONDS = 5 * 60


class RateLimiter:
    """Allows one fetch per category per interval unless forced."""

    def __init__(self, min_interval: float = REFRESH_MIN_INTERVAL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.min_interval = min_interval
        self.clock = clock
        self._last_fetch: Dict[str, float] = {}

    def should_fetch(self, category: str, force: bool = False) -> bool:
        if force:
            return True
        last = self._last_fetch.get(category)
        if last is None:
            return True
        elapsed = self.clock() - last
        if elapsed < self.min_interval:
            logger.info(
                f"Skipping '{category}' refresh, last fetch {int(elapsed)}s ago "
                f"(minimum {int(self.min_interval)}s)"
            )
            return False
        return True

    def record_fetch(self, category: str, at: Optional[float] = None) -> None:
        self._last_fetch[category] = self.clock() if at is None else at

    def last_fetch(self, category: str) -> Optional[float]:
        return self._last_fetch.get(category)

    def reset(self, category: Optional[str] = None) -> None:
        if category is None:
            self._last_fetch.clear()
        else:
            self._last_fetch.pop(category, None)
