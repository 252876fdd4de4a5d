"""
Stale-while-revalidate cache for connectors backed by rate-limited APIs.

Within the fresh window a cached value is returned as-is. Within the stale
window the cached value is returned and one background refresh is started
for that key; concurrent callers never start a second refresh while one is in
flight. Past the stale window the caller blocks on a reload.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable

from ..metrics import record_cache_refresh

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    stored_at: float


class StaleWhileRevalidateCache:
    def __init__(
        self,
        *,
        fresh_seconds: float,
        stale_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        spawn: Callable[[Callable[[], None]], Any] | None = None,
    ) -> None:
        if stale_seconds < fresh_seconds:
            raise ValueError("stale_seconds must be greater than or equal to fresh_seconds")
        self.fresh_seconds = fresh_seconds
        self.stale_seconds = stale_seconds
        self._clock = clock
        self._spawn = spawn or self._spawn_thread
        self._entries: Dict[Hashable, _Entry] = {}
        self._refreshing: set[Hashable] = set()
        self._lock = threading.Lock()

    @staticmethod
    def _spawn_thread(target: Callable[[], None]) -> threading.Thread:
        thread = threading.Thread(target=target, name="connector-cache-refresh", daemon=True)
        thread.start()
        return thread

    def get(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            age = now - entry.stored_at if entry is not None else None
            if entry is not None and age <= self.fresh_seconds:
                return entry.value
            if entry is not None and age <= self.stale_seconds:
                if key not in self._refreshing:
                    self._refreshing.add(key)
                    self._spawn(lambda: self._refresh(key, loader))
                return entry.value

        value = loader()
        self.set(key, value)
        return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, stored_at=self._clock())

    def invalidate(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def is_refreshing(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._refreshing

    def _refresh(self, key: Hashable, loader: Callable[[], Any]) -> None:
        try:
            value = loader()
        except Exception as exc:
            logger.warning("Background refresh for cache key %r failed: %s", key, exc, exc_info=True)
            record_cache_refresh("failure")
        else:
            self.set(key, value)
            record_cache_refresh("success")
        finally:
            with self._lock:
                self._refreshing.discard(key)
