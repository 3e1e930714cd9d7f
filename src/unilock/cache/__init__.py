"""Content-addressed cache for metadata blobs and artifacts."""

from .digest import canonical_json, compute_digest
from .eviction import EvictionPolicy, LRUPolicy, MaxAgePolicy
from .store import CacheEntry, ContentStore, FileContentStore, MemoryContentStore

__all__ = [
    "CacheEntry",
    "ContentStore",
    "EvictionPolicy",
    "FileContentStore",
    "LRUPolicy",
    "MaxAgePolicy",
    "MemoryContentStore",
    "canonical_json",
    "compute_digest",
]
