"""Pluggable eviction policies for the content store."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import AbstractSet, List, Optional, Sequence

from ..constants import Constants
from .store import CacheEntry


class EvictionPolicy(ABC):
    """Chooses which unpinned entries to remove."""

    @abstractmethod
    def select(self, entries: Sequence[CacheEntry], pinned: AbstractSet[str]) -> List[str]:
        """Return digests to evict. Pinned digests must never be returned."""


class LRUPolicy(EvictionPolicy):
    """Evict least-recently-used entries until the store fits max_bytes."""

    def __init__(self, max_bytes: int):
        if max_bytes < 0:
            raise ValueError("max_bytes must be non-negative")
        self.max_bytes = max_bytes

    @classmethod
    def from_constants(cls) -> "LRUPolicy":
        return cls(int(Constants.CACHE_MAX_BYTES))

    def select(self, entries: Sequence[CacheEntry], pinned: AbstractSet[str]) -> List[str]:
        total = sum(e.size for e in entries)
        if total <= self.max_bytes:
            return []
        victims = []
        # Oldest access first; digest breaks ties so runs are repeatable
        for entry in sorted(entries, key=lambda e: (e.last_access, e.digest)):
            if total <= self.max_bytes:
                break
            if entry.digest in pinned:
                continue
            victims.append(entry.digest)
            total -= entry.size
        return victims


class MaxAgePolicy(EvictionPolicy):
    """Evict entries not accessed within max_age_seconds."""

    def __init__(self, max_age_seconds: float, now: Optional[float] = None):
        self.max_age_seconds = max_age_seconds
        self._now = now

    @classmethod
    def from_constants(cls) -> "MaxAgePolicy":
        return cls(float(Constants.CACHE_MAX_AGE_SEC))

    def select(self, entries: Sequence[CacheEntry], pinned: AbstractSet[str]) -> List[str]:
        cutoff = (self._now if self._now is not None else time.time()) - self.max_age_seconds
        return sorted(e.digest for e in entries if e.last_access < cutoff and e.digest not in pinned)
