"""Process-lifetime TTL cache.

One instance is created at application startup and handed to the pipeline;
nothing in the pipeline keeps module-level cached state of its own.
"""

import time
from collections.abc import Callable
from typing import Any, Dict, Tuple

_MISSING = object()


class TTLCache:
    """Small key/value cache with a per-entry expiry.

    Uses in-memory storage, scoped to a single process.
    """

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # Storage: key -> (expires_at, value)
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return default
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        lifetime = self.ttl_seconds if ttl is None else ttl
        self._entries[key] = (self._clock() + lifetime, value)

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: float | None = None) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = factory()
            self.set(key, value, ttl)
        return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
