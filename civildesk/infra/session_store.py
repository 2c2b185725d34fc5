from __future__ import annotations

import time
from threading import RLock
from typing import Any, Callable, Protocol


class KeyValueStore(Protocol):
    def put(self, key: str, value: Any) -> None:
        ...

    def get(self, key: str) -> Any | None:
        ...

    def delete(self, key: str) -> bool:
        ...


class InMemoryKeyValueStore:
    """Process-local store keyed by opaque id.

    ``ttl_seconds=None`` keeps entries until they are deleted or the process
    exits. With a TTL, expired entries read as absent and are dropped lazily.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = RLock()
        self._items: dict[str, tuple[float, Any]] = {}
        self.ttl_seconds = ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        self._clock = clock

    def _expired(self, stored_at: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - stored_at >= self.ttl_seconds

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._items[key] = (self._clock(), value)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            if self._expired(entry[0]):
                del self._items[key]
                return None
            return entry[1]

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for stored_at, _ in self._items.values() if not self._expired(stored_at))
