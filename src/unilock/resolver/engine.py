"""Dependency resolution across one or more target environments.

The search assigns one version per name, choosing the name with the fewest
remaining candidates next. On a dead end the minimal conflicting set of
requirements is extracted and the search jumps back to the most recent
decision that contributed to it (conflict-directed backjumping).

Universal resolution first searches all environments jointly so every
environment shares one version per package. Only when that is impossible
are environments resolved separately and then regrouped greedily.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from ..cache.store import ContentStore
from ..catalog.base import CatalogClient
from ..catalog.cached import CachedCatalog
from ..common.logging_utils import Timer, extra_context, is_debug_enabled
from ..errors import CatalogLookupError, ConfigurationError, ResolutionCancelled, UnsatisfiableError
from ..versioning.models import (
    Environment,
    PackageVersion,
    Requirement,
    ResolutionMode,
    ResolverOptions,
)
from ..versioning.parser import parse_requirement
from .conflicts import Cause, Conflict, implicated_names, minimize
from .graph import ResolutionGraph
from .state import Decision, Derivation, derive

logger = logging.getLogger(__name__)

Assignment = Dict[str, PackageVersion]


class _Search:
    """Backjumping search for one group of environments sharing an assignment.

    Holds all mutable search state; instances are never shared between tasks.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        roots: Sequence[Requirement],
        environments: Sequence[Environment],
        options: ResolverOptions,
        cancel: Optional[threading.Event],
    ):
        self.catalog = catalog
        self.roots = roots
        self.environments = list(environments)
        self.options = options
        self.cancel = cancel
        self._pools: Dict[str, List[PackageVersion]] = {}
        self.rounds = 0
        self.backtracks = 0

    # candidate pool ----------------------------------------------------------

    def _admissible(self, pv: PackageVersion) -> bool:
        bound = self.options.exclude_newer
        if bound is not None and (pv.published is None or pv.published > bound):
            return False
        return True

    def _order(self, versions: Iterable[PackageVersion]) -> List[PackageVersion]:
        descending = self.options.mode is ResolutionMode.HIGHEST
        return sorted(versions, key=lambda pv: (pv.version, pv.name), reverse=descending)

    async def _prefetch(self, names: Sequence[str]) -> None:
        """Look up every unseen frontier name concurrently, then join."""
        missing = [n for n in names if n not in self._pools]
        if not missing:
            return
        results = await asyncio.gather(
            *(self.catalog.list_versions(n) for n in missing), return_exceptions=True
        )
        for name, result in zip(missing, results):
            if isinstance(result, CatalogLookupError):
                raise result
            if isinstance(result, Exception):
                raise CatalogLookupError(name, result) from result
            if isinstance(result, BaseException):
                raise result
            self._pools[name] = self._order(pv for pv in result if self._admissible(pv))

    def candidates(self, name: str, causes: Sequence[Cause], environments: Iterable[Environment]) -> List[PackageVersion]:
        """Pool versions that meet every cause and support every environment, in preference order."""
        envs = list(environments)
        pool = self._pools.get(name, [])
        allow_yanked = self.options.allow_yanked or any(c.requirement.is_pin() for c in causes)
        allow_pre = self.options.allow_prereleases or any(c.requirement.mentions_prerelease() for c in causes)

        def _matches(pv: PackageVersion) -> bool:
            if pv.yanked and not allow_yanked:
                return False
            if not all(pv.supports(e) for e in envs):
                return False
            return all(c.requirement.allows(pv.version, prereleases=True) for c in causes)

        matching = [pv for pv in pool if _matches(pv)]
        if allow_pre:
            return matching
        finals = [pv for pv in matching if not pv.version.is_prerelease]
        # Only pre-releases satisfy the constraints: accept them, as PEP 440 does
        return finals or matching

    def _is_unsatisfiable(self, name: str, causes: Sequence[Cause]) -> bool:
        envs: Set[Environment] = set()
        for c in causes:
            envs.update(c.environments)
        return not self.candidates(name, causes, envs)

    # conflicts ---------------------------------------------------------------

    def _chain(self, decisions: Sequence[Decision]) -> List[Tuple[str, str]]:
        return [(d.name, str(d.current.version)) for d in decisions]

    def _empty_conflict(self, name: str, deriv: Derivation, decisions: Sequence[Decision]) -> Conflict:
        causes = deriv.causes_for(name)
        core = minimize(causes, lambda subset: self._is_unsatisfiable(name, subset))
        implicated = implicated_names(core if core else causes)
        return Conflict(
            package=name,
            causes=core,
            implicated=implicated,
            chain=self._chain(decisions),
            available=[str(pv.version) for pv in sorted(self._pools.get(name, []), key=lambda pv: pv.version)],
            environments=sorted(deriv.needed_in(name), key=Environment.sort_key),
        )

    def _find_violation(self, deriv: Derivation, decisions: Sequence[Decision]) -> Optional[Conflict]:
        """Check new constraints against names that are already settled."""
        for d in decisions:
            pv = d.current
            causes = deriv.causes_for(d.name)
            unsupported = {e for e in deriv.needed_in(d.name) if not pv.supports(e)}
            bad = [
                c for c in causes
                if not c.requirement.allows(pv.version, prereleases=True) or (c.environments & unsupported)
            ]
            if not bad:
                continue
            if self._is_unsatisfiable(d.name, causes):
                return self._empty_conflict(d.name, deriv, decisions)
            return Conflict(
                package=d.name,
                causes=bad,
                implicated=implicated_names(bad) | {d.name},
                chain=self._chain(decisions),
                selected=str(pv.version),
            )
        return None

    def _backjump(self, decisions: List[Decision], conflict: Conflict) -> None:
        """Unwind to the latest implicated decision with an untried alternative.

        Raises:
            UnsatisfiableError: no decision is implicated, so the conflict
                follows from the root requirements alone.
        """
        implicated = set(conflict.implicated)
        while True:
            positions = [i for i, d in enumerate(decisions) if d.name in implicated]
            if not positions:
                raise conflict.to_error()
            idx = positions[-1]
            del decisions[idx + 1:]
            d = decisions[idx]
            d.blame |= implicated - {d.name}
            d.index += 1
            self.backtracks += 1
            if not d.exhausted():
                if is_debug_enabled(logger):
                    logger.debug(
                        "Backjump",
                        extra=extra_context(
                            event="backjump",
                            component="resolver",
                            package=d.name,
                            version=str(d.current.version),
                            conflict=conflict.package,
                        ),
                    )
                return
            implicated = d.blame | d.origins
            decisions.pop()

    # main loop ---------------------------------------------------------------

    def _check_cancel(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise ResolutionCancelled("Resolution cancelled")

    async def run(self) -> Tuple[Assignment, Derivation]:
        decisions: List[Decision] = []
        while True:
            self._check_cancel()
            self.rounds += 1
            if self.rounds > self.options.max_rounds:
                raise UnsatisfiableError(
                    "",
                    (),
                    self._chain(decisions),
                    f"Resolution gave up after {self.options.max_rounds} rounds",
                )

            assignment = {d.name: d.current for d in decisions}
            deriv = derive(self.roots, assignment, self.environments)
            conflict = self._find_violation(deriv, decisions)
            if conflict is not None:
                self._backjump(decisions, conflict)
                continue

            pending = sorted(n for n in deriv.needed if n not in assignment)
            if not pending:
                return assignment, deriv
            await self._prefetch(pending)
            self._check_cancel()

            best: Optional[Tuple[str, List[PackageVersion]]] = None
            for name in pending:
                found = self.candidates(name, deriv.causes_for(name), deriv.needed_in(name))
                if not found:
                    conflict = self._empty_conflict(name, deriv, decisions)
                    break
                if best is None or len(found) < len(best[1]):
                    best = (name, found)
            if conflict is not None:
                self._backjump(decisions, conflict)
                continue

            assert best is not None
            name, found = best
            decisions.append(Decision(name=name, candidates=found, origins=implicated_names(deriv.causes_for(name))))
            if is_debug_enabled(logger):
                logger.debug(
                    "Decision",
                    extra=extra_context(
                        event="decision",
                        component="resolver",
                        package=name,
                        version=str(found[0].version),
                        candidates=len(found),
                        depth=len(decisions),
                    ),
                )


class Resolver:
    """Resolve root requirements for a set of environments.

    Args:
        catalog: Source of versions. Wrapped in a CachedCatalog when a store
            is given so metadata reads go through the content-addressed cache.
        store: Optional content store.
        options: Default options; resolve() may override per call.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        store: Optional[ContentStore] = None,
        options: Optional[ResolverOptions] = None,
    ):
        if store is not None and not isinstance(catalog, CachedCatalog):
            catalog = CachedCatalog(catalog, store)
        self.catalog = catalog
        self.options = options or ResolverOptions()

    def _search(self, roots, environments, options, cancel) -> _Search:
        return _Search(self.catalog, roots, environments, options, cancel)

    async def resolve(
        self,
        requirements: Iterable[Union[Requirement, str]],
        environments: Iterable[Environment],
        options: Optional[ResolverOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ResolutionGraph:
        """Compute one consistent version per package per environment.

        Raises:
            ConfigurationError: malformed requirement text or no environments.
            UnsatisfiableError: no solution exists for some environment.
            CatalogLookupError: the catalog failed for a needed package.
            ResolutionCancelled: cancel was set.
        """
        opts = options or self.options
        roots = sorted(
            (r if isinstance(r, Requirement) else parse_requirement(r) for r in requirements),
            key=lambda r: (r.name, str(r)),
        )
        envs = sorted(set(environments), key=Environment.sort_key)
        if not envs:
            raise ConfigurationError("At least one target environment is required")

        logger.info(
            "Resolving %d root requirement(s) for %d environment(s) (%s mode)",
            len(roots), len(envs), opts.mode.value,
        )
        with Timer() as t:
            try:
                assignment, _ = await self._search(roots, envs, opts, cancel).run()
                groups = [(envs, assignment)]
            except UnsatisfiableError:
                if len(envs) == 1:
                    raise
                logger.info("No single version set fits every environment; resolving per environment")
                groups = await self._split(roots, envs, opts, cancel)

        graph = self._build_graph(roots, envs, groups)
        logger.info(
            "Resolved %d package variant(s) across %d environment(s) in %.1f ms",
            len(graph.variants()), len(envs), t.duration_ms(),
        )
        return graph

    async def _split(
        self,
        roots: Sequence[Requirement],
        envs: Sequence[Environment],
        opts: ResolverOptions,
        cancel: Optional[threading.Event],
    ) -> List[Tuple[List[Environment], Assignment]]:
        """Resolve each environment on its own, then merge environments greedily."""
        results = await asyncio.gather(
            *(self._search(roots, [env], opts, cancel).run() for env in envs),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        groups: List[Tuple[List[Environment], Assignment]] = []
        for env, (solo, _) in zip(envs, results):
            for i, (group_envs, _) in enumerate(groups):
                try:
                    merged, _ = await self._search(roots, group_envs + [env], opts, cancel).run()
                except UnsatisfiableError:
                    continue
                groups[i] = (group_envs + [env], merged)
                break
            else:
                groups.append(([env], solo))
        logger.info("Environments grouped into %d compatible set(s)", len(groups))
        return groups

    @staticmethod
    def _build_graph(
        roots: Sequence[Requirement],
        envs: Sequence[Environment],
        groups: Sequence[Tuple[Sequence[Environment], Assignment]],
    ) -> ResolutionGraph:
        graph = ResolutionGraph(environments=tuple(envs))
        for group_envs, assignment in groups:
            deriv = derive(roots, assignment, group_envs)
            for env in group_envs:
                graph.packages[env] = {
                    name: assignment[name]
                    for name in sorted(deriv.needed)
                    if env in deriv.needed[name]
                }
                graph.edges[env] = deriv.edges(env)
        return graph


async def resolve(
    catalog: CatalogClient,
    requirements: Iterable[Union[Requirement, str]],
    environments: Iterable[Environment],
    options: Optional[ResolverOptions] = None,
    store: Optional[ContentStore] = None,
    cancel: Optional[threading.Event] = None,
) -> ResolutionGraph:
    """Convenience wrapper around Resolver(catalog, store).resolve(...)."""
    return await Resolver(catalog, store=store, options=options).resolve(
        requirements, environments, cancel=cancel
    )
