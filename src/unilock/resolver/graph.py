"""Resolution result: one version per package per environment."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Tuple

from ..versioning.models import Environment, PackageVersion

# descriptor -> name -> (version, digest)
PinView = Dict[str, Dict[str, Tuple[str, str]]]


@dataclass
class ResolutionGraph:
    """Chosen versions and dependency edges for every target environment."""
    environments: Tuple[Environment, ...]
    packages: Dict[Environment, Dict[str, PackageVersion]] = field(default_factory=dict)
    edges: Dict[Environment, Dict[str, Tuple[str, ...]]] = field(default_factory=dict)

    def for_environment(self, env: Environment) -> Mapping[str, PackageVersion]:
        return self.packages.get(env, {})

    def dependencies(self, env: Environment, name: str) -> Tuple[str, ...]:
        return self.edges.get(env, {}).get(name, ())

    def __iter__(self) -> Iterator[Tuple[Environment, PackageVersion]]:
        for env in self.environments:
            for name in sorted(self.packages.get(env, {})):
                yield env, self.packages[env][name]

    def variants(self) -> Dict[Tuple[str, str], Tuple[PackageVersion, Tuple[Environment, ...]]]:
        """Group environments by the (name, version) they share."""
        grouped: Dict[Tuple[str, str], Tuple[PackageVersion, List[Environment]]] = {}
        for env, pv in self:
            grouped.setdefault(pv.key, (pv, []))[1].append(env)
        return {
            key: (pv, tuple(sorted(envs, key=Environment.sort_key)))
            for key, (pv, envs) in grouped.items()
        }

    def pins(self) -> PinView:
        """Flat comparable view used by the lock round-trip."""
        return {
            env.descriptor: {
                name: (str(pv.version), pv.digest)
                for name, pv in sorted(self.packages.get(env, {}).items())
            }
            for env in self.environments
        }
