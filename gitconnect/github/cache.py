"""
In-process response cache for the GitHub gateway.

Entries expire lazily on read; there is no background sweep and no
cross-process coherency. Reads and writes happen on the event loop thread,
so no locking is needed; two concurrent misses for one key both go
upstream and the last writer wins.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

DEFAULT_TTL_MS = 60_000
USER_PROFILE_TTL_MS = 30_000


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class ResponseCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._store: Dict[str, CacheEntry] = {}
        self._clock = clock

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def set(self, key: str, value: Any, ttl_ms: int = DEFAULT_TTL_MS) -> None:
        self._store[key] = CacheEntry(value=value, expires_at=self._now_ms() + ttl_ms)

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._now_ms():
            del self._store[key]
            return None
        return entry.value

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


def build_cache_key(parts: Iterable[Any]) -> str:
    """Join key parts with ``::``; missing parts become ``_``."""
    return "::".join("_" if part is None else str(part) for part in parts)


def serialize_query(query: Mapping[str, Any]) -> str:
    """Canonical JSON of the non-empty query items, sorted by name."""
    canonical = {
        key: query[key]
        for key in sorted(query)
        if query[key] is not None and query[key] != ""
    }
    return json.dumps(canonical, separators=(",", ":"), sort_keys=True)
