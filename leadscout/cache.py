"""TTL-bounded result cache keyed by normalized subject identity.

Entries expire passively: a stale entry reads as a miss and is overwritten by
the next ``set`` for the same key. There is no background sweep.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

log = logging.getLogger(__name__)

STAGE_REPOSITORY = "repository"
STAGE_TECHNOLOGY = "technology"
STAGE_CONTACT = "contact"
STAGE_COMPANY = "company"
STAGE_PROFILE = "profile"


def cache_key(identity: str, stage: str) -> str:
    """Join a normalized subject identity with a stage discriminator."""
    return f"{identity}:{stage}"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    inserted_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class ResultCache:
    """Concurrent map with atomic get/set per key."""

    def __init__(self, default_ttl: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._default_ttl = default_ttl
        self._clock = clock

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expired(self._clock()):
                return default
            log.debug("Cache hit for %s", key)
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key, value=value, inserted_at=self._clock(),
                ttl=self._default_ttl if ttl is None else ttl,
            )

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISS) is not _MISS

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_MISS = object()
