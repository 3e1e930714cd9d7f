"""Conflict records, minimization and human-readable explanations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Sequence, Set, Tuple

from ..errors import UnsatisfiableError
from ..versioning.models import Environment, Requirement


@dataclass(frozen=True)
class Cause:
    """One requirement edge: who asked for what, and where it applies.

    ``origin`` is ``(name, version)`` of the requiring package, or None for
    a root requirement.
    """
    requirement: Requirement
    origin: Optional[Tuple[str, str]] = None
    environments: FrozenSet[Environment] = field(default=frozenset(), compare=False)

    @property
    def origin_name(self) -> Optional[str]:
        return self.origin[0] if self.origin else None

    def __str__(self) -> str:
        who = "root" if self.origin is None else f"{self.origin[0]}=={self.origin[1]}"
        return f"{who} requires {self.requirement}"


@dataclass
class Conflict:
    """A dead end found during search.

    Attributes:
        package: Name whose constraints failed.
        causes: Minimal set of causes that cannot hold together.
        implicated: Decided names whose choices produced the causes.
        chain: Decisions in force when the conflict was found.
        selected: Version already assigned to package, when the conflict is
            with an existing assignment rather than an empty candidate set.
        available: Versions present in the candidate pool, for the message.
    """
    package: str
    causes: List[Cause]
    implicated: Set[str]
    chain: List[Tuple[str, str]]
    selected: Optional[str] = None
    available: List[str] = field(default_factory=list)
    environments: List[Environment] = field(default_factory=list)

    def explain(self) -> str:
        if self.selected is not None:
            reasons = " and ".join(str(c) for c in self.causes)
            return f"{self.package}=={self.selected} was selected, but {reasons}"
        if not self.causes:
            envs = ", ".join(e.descriptor for e in self.environments) or "any environment"
            return f"No versions of {self.package} are available for {envs}"
        reasons = " and ".join(str(c) for c in self.causes)
        if len(self.causes) == 1:
            tail = f"no available version of {self.package} satisfies it"
        else:
            tail = f"no version of {self.package} satisfies all of them"
        if self.environments:
            tail += " on " + ", ".join(e.descriptor for e in self.environments)
        if self.available:
            tail += f" (available: {', '.join(self.available)})"
        return f"Because {reasons}, {tail}"

    def to_error(self) -> UnsatisfiableError:
        message = self.explain()
        if self.chain:
            message += ". Decisions: " + ", ".join(f"{n}=={v}" for n, v in self.chain)
        return UnsatisfiableError(self.package, self.causes, self.chain, message)


def minimize(causes: Sequence[Cause], is_conflict: Callable[[Sequence[Cause]], bool]) -> List[Cause]:
    """Deletion-based reduction to an irreducible conflicting subset.

    Each cause is dropped in turn; it stays out when the remainder still
    conflicts. The result conflicts and removing any single member of it
    resolves the conflict.
    """
    core = list(causes)
    i = 0
    while i < len(core):
        trial = core[:i] + core[i + 1:]
        if is_conflict(trial):
            core = trial
        else:
            i += 1
    return core


def implicated_names(causes: Sequence[Cause]) -> Set[str]:
    """Decided packages whose requirements appear in causes."""
    return {c.origin_name for c in causes if c.origin_name is not None}
