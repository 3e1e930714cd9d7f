"""Content-addressed storage for metadata blobs and artifacts.

Entries are keyed by ``sha256:<hex>`` of their own bytes. Content is
re-hashed on every write and every read, so a corrupt entry is never
served. Writers of the same digest are serialized by one of a fixed set of
striped locks; readers never take a lock.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
import urllib.parse
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional

from ..common.logging_utils import extra_context, is_debug_enabled, short_digest
from ..constants import Constants
from ..errors import IntegrityError
from .digest import check_digest, compute_digest, is_valid_digest

if TYPE_CHECKING:
    from .eviction import EvictionPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Bookkeeping for one stored object."""
    digest: str
    size: int
    last_access: float


class ContentStore(ABC):
    """Shared get/put/evict logic; subclasses provide raw storage."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._stripes = tuple(threading.Lock() for _ in range(Constants.CACHE_LOCK_STRIPES))
        self._pin_guard = threading.Lock()
        self._pins: Dict[str, int] = {}

    # raw storage -----------------------------------------------------------

    @abstractmethod
    def _read(self, digest: str) -> Optional[bytes]:
        """Return stored bytes or None."""

    @abstractmethod
    def _write(self, digest: str, data: bytes) -> None:
        """Persist data so that it becomes visible atomically."""

    @abstractmethod
    def _remove(self, digest: str) -> None:
        """Remove an entry if present."""

    @abstractmethod
    def _touch(self, digest: str) -> None:
        """Record an access for LRU bookkeeping."""

    @abstractmethod
    def entries(self) -> List[CacheEntry]:
        """Snapshot of all stored entries."""

    @abstractmethod
    def _read_ref(self, name: str) -> Optional[str]:
        """Return the digest a named reference points to."""

    @abstractmethod
    def _write_ref(self, name: str, digest: str) -> None:
        """Point a named reference at a digest."""

    # public API ------------------------------------------------------------

    def _lock_for(self, digest: str) -> threading.Lock:
        return self._stripes[hash(digest) % len(self._stripes)]

    def contains(self, digest: str) -> bool:
        return self._read(digest) is not None

    def get(self, digest: str) -> Optional[bytes]:
        """Return verified content for digest, or None when absent.

        Raises:
            IntegrityError: Stored bytes no longer hash to digest. The entry
                is discarded before raising so a retry can re-fetch it.
        """
        data = self._read(digest)
        if data is None:
            return None
        actual = compute_digest(data)
        if actual != digest:
            logger.warning("Discarding corrupt cache entry %s", short_digest(digest))
            with self._lock_for(digest):
                self._remove(digest)
            raise IntegrityError(digest, actual)
        self._touch(digest)
        if is_debug_enabled(logger):
            logger.debug(
                "Cache hit",
                extra=extra_context(event="cache_hit", component="store", digest=short_digest(digest)),
            )
        return data

    def put(self, digest: str, data: bytes) -> str:
        """Store data under its declared digest.

        An existing entry whose bytes no longer hash to digest is corrupt and
        is replaced by the verified data.

        Returns:
            The digest, once the content is durably visible.

        Raises:
            IntegrityError: data does not hash to digest, or different bytes
                that also hash to digest are already stored.
        """
        actual = compute_digest(data)
        if actual != digest:
            raise IntegrityError(digest, actual, reason=f"declared digest does not match content ({actual})")
        with self._lock_for(digest):
            existing = self._read(digest)
            if existing is not None:
                if existing == data:
                    self._touch(digest)
                    return digest
                stored = compute_digest(existing)
                if stored == digest:
                    raise IntegrityError(
                        digest, stored, reason="different content already stored under the same digest"
                    )
                logger.warning("Replacing corrupt cache entry %s", short_digest(digest))
                self._remove(digest)
            self._write(digest, data)
        if is_debug_enabled(logger):
            logger.debug(
                "Cache write",
                extra=extra_context(
                    event="cache_put", component="store", digest=short_digest(digest), size=len(data)
                ),
            )
        return digest

    def add(self, data: bytes) -> str:
        """Store data under its computed digest."""
        return self.put(compute_digest(data), data)

    def delete(self, digest: str) -> bool:
        """Remove an unpinned entry. Returns False when pinned or absent."""
        with self._lock_for(digest):
            if digest in self.pinned():
                return False
            present = self._read(digest) is not None
            self._remove(digest)
        return present

    def set_ref(self, name: str, digest: str) -> None:
        """Point a mutable name (e.g. a package's version list) at a digest."""
        check_digest(digest)
        self._write_ref(name, digest)

    def get_ref(self, name: str) -> Optional[str]:
        return self._read_ref(name)

    def total_bytes(self) -> int:
        return sum(e.size for e in self.entries())

    # pinning & eviction ------------------------------------------------------

    def _share_pin(self, digest: str) -> None:
        """Make a pin visible to other stores over the same storage."""

    def _unshare_pin(self, digest: str) -> None:
        """Withdraw a pin published by _share_pin."""

    def _shared_pins(self) -> FrozenSet[str]:
        """Digests pinned through other stores over the same storage."""
        return frozenset()

    @contextmanager
    def pin(self, digests: Iterable[str]) -> Iterator[None]:
        """Protect digests from eviction for the duration of the block.

        Pin counts change under the digest's write lock, the same lock
        ``evict`` and ``delete`` hold while re-checking pins before removal.
        """
        held = [d for d in digests if d]
        for d in held:
            with self._lock_for(d):
                with self._pin_guard:
                    count = self._pins.get(d, 0)
                    self._pins[d] = count + 1
                if count == 0:
                    self._share_pin(d)
        try:
            yield
        finally:
            for d in held:
                with self._lock_for(d):
                    with self._pin_guard:
                        count = self._pins.get(d, 0) - 1
                        if count <= 0:
                            self._pins.pop(d, None)
                        else:
                            self._pins[d] = count
                    if count <= 0:
                        self._unshare_pin(d)

    def pinned(self) -> FrozenSet[str]:
        with self._pin_guard:
            local = frozenset(self._pins)
        return local | self._shared_pins()

    def evict(self, policy: "EvictionPolicy") -> List[str]:
        """Apply policy and remove the entries it selects; pinned entries survive."""
        victims = policy.select(self.entries(), self.pinned())
        evicted = []
        for digest in victims:
            with self._lock_for(digest):
                if digest in self.pinned():
                    continue
                self._remove(digest)
            evicted.append(digest)
        if evicted:
            logger.info("Evicted %d cache entries", len(evicted))
        return evicted


class MemoryContentStore(ContentStore):
    """In-process store, used for tests and single-run resolution."""

    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self._objects: Dict[str, bytes] = {}
        self._access: Dict[str, float] = {}
        self._refs: Dict[str, str] = {}

    def _read(self, digest: str) -> Optional[bytes]:
        return self._objects.get(digest)

    def _write(self, digest: str, data: bytes) -> None:
        self._objects[digest] = bytes(data)
        self._access[digest] = self._clock()

    def _remove(self, digest: str) -> None:
        self._objects.pop(digest, None)
        self._access.pop(digest, None)

    def _touch(self, digest: str) -> None:
        if digest in self._objects:
            self._access[digest] = self._clock()

    def entries(self) -> List[CacheEntry]:
        return [
            CacheEntry(digest=d, size=len(data), last_access=self._access.get(d, 0.0))
            for d, data in list(self._objects.items())
        ]

    def _read_ref(self, name: str) -> Optional[str]:
        return self._refs.get(name)

    def _write_ref(self, name: str, digest: str) -> None:
        self._refs[name] = digest


class FileContentStore(ContentStore):
    """On-disk store shared by concurrent processes.

    Layout under root::

        objects/<first two hex chars>/<remaining hex>
        refs/<quoted ref name>
        pins/<hex>.<pid>-<store token>
        tmp/

    Last access is the object's mtime, so every process sees the same LRU order.
    Each pinned digest has a pin file for as long as any block in this store
    holds it, and ``evict`` in every process skips digests with a pin file.
    A process that dies mid-block leaves its pin files behind; deleting
    ``pins/`` while no resolution is running clears them.
    """

    def __init__(self, root: Optional[str] = None, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.root = root or Constants.CACHE_DIR
        self._objects_dir = os.path.join(self.root, Constants.CACHE_OBJECTS_DIR)
        self._refs_dir = os.path.join(self.root, Constants.CACHE_REFS_DIR)
        self._pins_dir = os.path.join(self.root, Constants.CACHE_PINS_DIR)
        self._tmp_dir = os.path.join(self.root, Constants.CACHE_TMP_DIR)
        for path in (self._objects_dir, self._refs_dir, self._pins_dir, self._tmp_dir):
            os.makedirs(path, exist_ok=True)
        self._pin_token = f"{os.getpid()}-{uuid.uuid4().hex[:12]}"

    def _path(self, digest: str) -> str:
        _, _, hexpart = digest.partition(":")
        return os.path.join(self._objects_dir, hexpart[:2], hexpart[2:])

    def _atomic_write(self, path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._tmp_dir)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _read(self, digest: str) -> Optional[bytes]:
        if ":" not in digest:
            return None
        try:
            with open(self._path(digest), "rb") as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def _write(self, digest: str, data: bytes) -> None:
        self._atomic_write(self._path(digest), data)
        self._touch(digest)

    def _remove(self, digest: str) -> None:
        try:
            os.remove(self._path(digest))
        except FileNotFoundError:
            pass

    def _touch(self, digest: str) -> None:
        now = self._clock()
        try:
            os.utime(self._path(digest), (now, now))
        except FileNotFoundError:
            # evicted by another process between read and touch
            pass

    def entries(self) -> List[CacheEntry]:
        found = []
        for prefix in sorted(os.listdir(self._objects_dir)):
            subdir = os.path.join(self._objects_dir, prefix)
            if not os.path.isdir(subdir):
                continue
            for rest in sorted(os.listdir(subdir)):
                try:
                    st = os.stat(os.path.join(subdir, rest))
                except FileNotFoundError:
                    continue
                found.append(CacheEntry(digest=f"sha256:{prefix}{rest}", size=st.st_size, last_access=st.st_mtime))
        return found

    def _ref_path(self, name: str) -> str:
        return os.path.join(self._refs_dir, urllib.parse.quote(name, safe=""))

    def _read_ref(self, name: str) -> Optional[str]:
        try:
            with open(self._ref_path(name), "r", encoding="utf-8") as fh:
                return fh.read().strip() or None
        except FileNotFoundError:
            return None

    def _write_ref(self, name: str, digest: str) -> None:
        self._atomic_write(self._ref_path(name), digest.encode("utf-8"))

    def _pin_path(self, digest: str) -> str:
        _, _, hexpart = digest.partition(":")
        return os.path.join(self._pins_dir, f"{hexpart}.{self._pin_token}")

    def _share_pin(self, digest: str) -> None:
        if not is_valid_digest(digest):
            return
        with open(self._pin_path(digest), "w", encoding="utf-8") as fh:
            fh.write(digest)

    def _unshare_pin(self, digest: str) -> None:
        if not is_valid_digest(digest):
            return
        try:
            os.remove(self._pin_path(digest))
        except FileNotFoundError:
            pass

    def _shared_pins(self) -> FrozenSet[str]:
        try:
            names = os.listdir(self._pins_dir)
        except FileNotFoundError:
            return frozenset()
        return frozenset(f"sha256:{name.partition('.')[0]}" for name in names if not name.startswith("."))
