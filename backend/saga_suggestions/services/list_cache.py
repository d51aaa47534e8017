"""Short-lived per-saga cache for suggestion list pages."""

from __future__ import annotations

import hashlib
import threading
import time
from typing import Any

from saga_suggestions.config import get_settings


class SagaListCache:
    """Thread-safe TTL cache keyed by (saga_id, query digest)."""

    def __init__(self, ttl_seconds: float = 30.0) -> None:
        self._store: dict[tuple[str, str], tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def digest(query: str) -> str:
        return hashlib.sha256(query.encode("utf-8")).hexdigest()

    def get(self, saga_id: str, query: str) -> Any | None:
        key = (saga_id, self.digest(query))
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at > time.monotonic():
                return value
            del self._store[key]
            return None

    def set(self, saga_id: str, query: str, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._store[(saga_id, self.digest(query))] = (time.monotonic() + self.ttl_seconds, value)

    def invalidate(self, saga_id: str | None = None) -> None:
        with self._lock:
            if saga_id is None:
                self._store.clear()
                return
            for key in [key for key in self._store if key[0] == saga_id]:
                del self._store[key]


suggestion_list_cache = SagaListCache(ttl_seconds=get_settings().list_cache_ttl_seconds)
