"""Search state derived from a stack of decisions.

Everything the engine needs to know about active constraints is recomputed
from the current assignment with a worklist, never carried incrementally.
Backtracking therefore only has to pop decisions; extras and extra-only
edges that no remaining decision activates simply disappear.
"""

from __future__ import annotations

from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, FrozenSet, List, Mapping, Optional, Sequence, Set, Tuple

from ..versioning.models import Environment, PackageVersion, Requirement
from .conflicts import Cause


@dataclass
class Decision:
    """A version chosen for one name, with the alternatives still untried."""
    name: str
    candidates: List[PackageVersion]
    origins: Set[str]
    index: int = 0
    blame: Set[str] = field(default_factory=set)

    @property
    def current(self) -> PackageVersion:
        return self.candidates[self.index]

    def exhausted(self) -> bool:
        return self.index >= len(self.candidates)


@dataclass
class Derivation:
    """Active constraints and reachability for one assignment."""
    causes: Dict[str, List[Cause]] = field(default_factory=dict)
    needed: Dict[str, Set[Environment]] = field(default_factory=dict)

    def causes_for(self, name: str) -> List[Cause]:
        return self.causes.get(name, [])

    def needed_in(self, name: str) -> FrozenSet[Environment]:
        return frozenset(self.needed.get(name, ()))

    def edges(self, env: Environment) -> Dict[str, Tuple[str, ...]]:
        """Dependency edges active in env, as name -> sorted dependency names."""
        out: Dict[str, Set[str]] = {}
        for name, causes in self.causes.items():
            for cause in causes:
                if cause.origin is not None and env in cause.environments:
                    out.setdefault(cause.origin[0], set()).add(name)
        return {k: tuple(sorted(v)) for k, v in sorted(out.items())}


def derive(
    roots: Sequence[Requirement],
    assignment: Mapping[str, PackageVersion],
    environments: Sequence[Environment],
) -> Derivation:
    """Compute active causes for every reachable name.

    A requirement applies in the environments where its requiring path is
    active and its marker holds; extra-only edges of a package are followed
    for the extras requested of it. Each (name, environment, extra) triple
    is expanded at most once, so cyclic declarations terminate.
    """
    # (name, requirement, origin) -> environments, in discovery order
    merged: "OrderedDict[Tuple[str, Requirement, Optional[Tuple[str, str]]], Set[Environment]]" = OrderedDict()
    needed: Dict[str, Set[Environment]] = {}
    expanded: Dict[str, Set[Tuple[Environment, str]]] = {}
    queue: Deque[Tuple[Requirement, Optional[PackageVersion], FrozenSet[Environment]]] = deque()

    for req in roots:
        envs = frozenset(e for e in environments if req.applies_in(e))
        if envs:
            queue.append((req, None, envs))

    while queue:
        req, origin, envs = queue.popleft()
        name = req.name
        key = (name, req, origin.key if origin is not None else None)
        merged.setdefault(key, set()).update(envs)
        needed.setdefault(name, set()).update(envs)

        pv = assignment.get(name)
        if pv is None:
            continue
        done = expanded.setdefault(name, set())
        fresh = []
        for env in sorted(envs, key=Environment.sort_key):
            for extra in ("",) + req.extras:
                if (env, extra) not in done:
                    done.add((env, extra))
                    fresh.append((env, extra))
        if not fresh:
            continue
        for dep in pv.requires:
            dep_envs = frozenset(env for env, extra in fresh if dep.applies_in(env, extra))
            if dep_envs:
                queue.append((dep, pv, dep_envs))

    causes: Dict[str, List[Cause]] = {}
    for (name, req, origin), envs in merged.items():
        causes.setdefault(name, []).append(Cause(requirement=req, origin=origin, environments=frozenset(envs)))
    return Derivation(causes=causes, needed=needed)
