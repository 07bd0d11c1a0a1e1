"""Process-local TTL cache shared by the classifier and the semantic searcher.

Entries expire lazily on read and through ``cleanup_expired()``, which the
CacheSweeper calls periodically. Expiry is monotonic, so a sweep racing a
read on the same key is harmless. Concurrent misses on one key each compute
the value once (stampedes are tolerated).
"""

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


def cache_key(*parts: object) -> str:
    """SHA-256 hex digest of ``parts`` joined with ':'."""
    raw = ":".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float  # monotonic milliseconds


class TTLCache(Generic[T]):
    """Key → value map whose entries expire after a per-call TTL."""

    def __init__(
        self,
        default_ttl_ms: int,
        *,
        name: str = "cache",
        clock: Callable[[], float] | None = None,
    ):
        self._default_ttl_ms = default_ttl_ms
        self._entries: dict[str, CacheEntry[T]] = {}
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self.name = name

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: T, ttl_ms: int | None = None) -> None:
        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in list(self._entries.items()) if now > e.expires_at]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
