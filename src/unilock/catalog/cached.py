"""Catalog read path through the content-addressed cache."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Dict, Optional, Sequence, Tuple

from ..cache.digest import canonical_json
from ..cache.store import ContentStore
from ..common.logging_utils import Timer, extra_context, is_debug_enabled, short_digest
from ..constants import Constants
from ..errors import CatalogLookupError, IntegrityError
from ..versioning.models import PackageVersion
from ..versioning.parser import package_version_record, parse_package_version
from .base import CatalogClient

logger = logging.getLogger(__name__)


def _ref_name(name: str) -> str:
    return f"versions/{name}"


class CachedCatalog(CatalogClient):
    """Wraps a CatalogClient so metadata and artifacts flow through a ContentStore.

    Version lists are stored as canonical JSON blobs with a named ref per
    package. Concurrent lookups of one name share a single upstream call.
    """

    def __init__(
        self,
        upstream: CatalogClient,
        store: ContentStore,
        refresh: bool = False,
        max_concurrency: Optional[int] = None,
    ):
        self.upstream = upstream
        self.store = store
        self.refresh = refresh
        self._memo: Dict[str, Tuple[PackageVersion, ...]] = {}
        self._inflight: Dict[str, "asyncio.Task[Tuple[PackageVersion, ...]]"] = {}
        self._max_concurrency = max_concurrency or Constants.CATALOG_MAX_CONCURRENCY
        self._semaphore: Optional[asyncio.Semaphore] = None

    def _sem(self) -> asyncio.Semaphore:
        # created lazily so it binds to the running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)
        return self._semaphore

    async def list_versions(self, name: str) -> Sequence[PackageVersion]:
        if name in self._memo:
            return self._memo[name]
        task = self._inflight.get(name)
        if task is None:
            task = asyncio.ensure_future(self._load_versions(name))
            self._inflight[name] = task
        try:
            versions = await task
        finally:
            self._inflight.pop(name, None)
        self._memo[name] = versions
        return versions

    def _from_cache(self, name: str) -> Optional[Tuple[PackageVersion, ...]]:
        if self.refresh:
            return None
        ref = self.store.get_ref(_ref_name(name))
        if ref is None:
            return None
        try:
            blob = self.store.get(ref)
        except IntegrityError as e:
            logger.warning("Cached metadata for %s failed verification, re-fetching: %s", name, e)
            return None
        if blob is None:
            return None
        data = json.loads(blob.decode("utf-8"))
        return tuple(parse_package_version(name, record) for record in data.get("versions", []))

    async def _load_versions(self, name: str) -> Tuple[PackageVersion, ...]:
        cached = self._from_cache(name)
        if cached is not None:
            return cached

        with Timer() as t:
            async with self._sem():
                try:
                    fetched = await self.upstream.list_versions(name)
                except CatalogLookupError:
                    raise
                except Exception as e:  # any upstream failure is a hard error for this name
                    logger.error("Catalog lookup for %s failed: %s", name, e)
                    raise CatalogLookupError(name, e) from e

        versions = tuple(sorted(fetched, key=lambda pv: pv.version))
        blob = canonical_json({"name": name, "versions": [package_version_record(pv) for pv in versions]})
        digest = self.store.add(blob)
        self.store.set_ref(_ref_name(name), digest)
        if is_debug_enabled(logger):
            logger.debug(
                "Catalog metadata cached",
                extra=extra_context(
                    event="catalog_lookup",
                    component="cached_catalog",
                    package=name,
                    versions=len(versions),
                    digest=short_digest(digest),
                    duration_ms=t.duration_ms(),
                ),
            )
        return versions

    async def fetch_artifact(self, package: PackageVersion) -> bytes:
        """Return artifact bytes, from cache when present and verified.

        Raises:
            IntegrityError: the upstream returned bytes that do not match
                package.digest. Nothing is cached in that case.
        """
        if package.digest:
            try:
                cached = self.store.get(package.digest)
            except IntegrityError as e:
                logger.warning("Cached artifact for %s failed verification, re-fetching: %s", package, e)
                cached = None
            if cached is not None:
                return cached

        async with self._sem():
            try:
                data = await self.upstream.fetch_artifact(package)
            except Exception as e:  # same contract as list_versions
                logger.error("Artifact fetch for %s failed: %s", package, e)
                raise CatalogLookupError(package.name, e) from e

        if package.digest:
            self.store.put(package.digest, data)
        else:
            self.store.add(data)
        return data
