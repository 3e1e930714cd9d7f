"""Resolve-or-reuse orchestration over resolver, cache and lock compiler."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Optional, Union

from .cache.store import ContentStore
from .catalog.base import CatalogClient
from .catalog.cached import CachedCatalog
from .errors import ConfigurationError
from .lock.compiler import compile_lock, fingerprint, validate
from .lock.document import LockDocument
from .resolver.engine import Resolver
from .resolver.graph import ResolutionGraph
from .versioning.models import Environment, Requirement, ResolverOptions
from .versioning.parser import parse_requirement

logger = logging.getLogger(__name__)


@dataclass
class LockResult:
    """Outcome of lock_requirements."""
    lock: LockDocument
    reused: bool
    graph: Optional[ResolutionGraph] = None


async def lock_requirements(
    requirements: Iterable[Union[Requirement, str]],
    environments: Iterable[Environment],
    catalog: CatalogClient,
    store: ContentStore,
    existing: Optional[LockDocument] = None,
    options: Optional[ResolverOptions] = None,
    cancel: Optional[threading.Event] = None,
) -> LockResult:
    """Return a lock for the requirements, reusing existing when still valid.

    Digests referenced by the existing lock stay pinned in the store for the
    whole call, so a concurrent eviction cannot drop them mid-resolution.
    """
    opts = options or ResolverOptions.from_constants()
    roots = [r if isinstance(r, Requirement) else parse_requirement(r) for r in requirements]
    envs = sorted(set(environments), key=Environment.sort_key)
    current = fingerprint(roots, envs, options=opts)

    pinned = existing.digests() if existing is not None else []
    with store.pin(pinned):
        if existing is not None:
            if validate(existing, current):
                logger.info("Lock is up to date; skipping resolution")
                return LockResult(lock=existing, reused=True)
            logger.info("Lock is stale (requirements, targets or options changed); re-resolving")

        resolver = Resolver(catalog, store=store, options=opts)
        graph = await resolver.resolve(roots, envs, cancel=cancel)
        return LockResult(lock=compile_lock(graph, current), reused=False, graph=graph)


async def fetch_locked_artifacts(
    lock: LockDocument,
    environment: Environment,
    catalog: CatalogClient,
    store: ContentStore,
) -> Dict[str, bytes]:
    """Fetch, verify and cache every artifact the lock names for environment.

    Raises:
        ConfigurationError: the lock does not cover environment.
        IntegrityError: a fetched artifact does not match its locked digest.
        CatalogLookupError: the catalog cannot supply a locked version.
    """
    entries = lock.for_environment(environment)
    if not entries:
        raise ConfigurationError(f"Lock does not cover environment {environment.descriptor}")
    cached = catalog if isinstance(catalog, CachedCatalog) else CachedCatalog(catalog, store)

    async def _one(name: str):
        entry = entries[name]
        versions = await cached.list_versions(name)
        match = next((pv for pv in versions if str(pv.version) == entry.version), None)
        if match is None:
            raise ConfigurationError(f"{name}=={entry.version} from the lock is not in the catalog")
        if match.digest != entry.digest:
            logger.warning(
                "Catalog digest for %s==%s differs from the lock; verifying against the locked digest",
                name, entry.version,
            )
            match = replace(match, digest=entry.digest)
        return name, await cached.fetch_artifact(match)

    with store.pin(lock.digests()):
        outcomes = await asyncio.gather(*(_one(n) for n in sorted(entries)), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
    logger.info("Fetched %d artifact(s) for %s", len(outcomes), environment.descriptor)
    return dict(outcomes)
