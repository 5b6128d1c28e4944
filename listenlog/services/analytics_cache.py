"""In-memory TTL cache for per-user analytics results."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
import threading
import time
from typing import Any, TypeVar

from listenlog.logging import get_logger
from listenlog.logging_events import log_event

logger = get_logger(__name__)

T = TypeVar("T")
TimeProvider = Callable[[], float]
CacheKey = tuple[int, str, Hashable]


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class AnalyticsCache:
    """LRU cache keyed by ``(user_id, operation, params)`` with a shared TTL.

    A TTL of zero disables caching entirely.
    """

    def __init__(
        self,
        *,
        max_items: int,
        ttl: float,
        time_func: TimeProvider | None = None,
    ) -> None:
        if max_items <= 0:
            raise ValueError("max_items must be positive")
        if ttl < 0:
            raise ValueError("ttl must be non-negative")
        self._max_items = max_items
        self._ttl = ttl
        self._now: TimeProvider = time_func or time.monotonic
        self._entries: "OrderedDict[CacheKey, _Entry]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def get_or_compute(
        self, user_id: int, operation: str, params: Hashable, compute: Callable[[], T]
    ) -> T:
        if not self.enabled:
            return compute()
        key: CacheKey = (user_id, operation, params)
        now = self._now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at > now:
                self._entries.move_to_end(key)
                return entry.value
            if entry is not None:
                self._entries.pop(key, None)

        value = compute()

        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._now() + self._ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_items:
                self._entries.popitem(last=False)
        return value

    def invalidate_user(self, user_id: int) -> int:
        with self._lock:
            keys = [key for key in self._entries if key[0] == user_id]
            for key in keys:
                del self._entries[key]
        if keys:
            log_event(
                logger,
                "service.cache",
                component="service.analytics_cache",
                operation="invalidate",
                status="ok",
                entity_id=str(user_id),
                evicted=len(keys),
            )
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["AnalyticsCache"]
