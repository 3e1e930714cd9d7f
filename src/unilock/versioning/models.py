"""Data models for requirements, package versions and target environments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Dict, Optional, Tuple

from packaging.markers import Marker
from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from ..constants import Constants
from ..errors import ConfigurationError


@lru_cache(maxsize=1024)
def parse_marker(text: str) -> Marker:
    """Parse and memoize a marker expression."""
    return Marker(text)


class ResolutionMode(Enum):
    """Candidate ordering used by the resolver."""
    HIGHEST = "highest"
    LOWEST = "lowest"


@dataclass(frozen=True)
class Requirement:
    """A named constraint on acceptable versions, gated by an optional marker.

    Equality and hashing use the normalized text fields; the parsed
    ``packaging`` objects ride along for evaluation.
    """
    name: str
    specifier: str
    marker: Optional[str]
    extras: Tuple[str, ...]
    raw: str = field(compare=False)
    specifier_set: SpecifierSet = field(compare=False, repr=False)
    marker_obj: Optional[Marker] = field(compare=False, repr=False)

    def allows(self, version: Version, prereleases: Optional[bool] = None) -> bool:
        """Return True when version satisfies the specifier."""
        return self.specifier_set.contains(version, prereleases=prereleases)

    def is_pin(self) -> bool:
        """True when the requirement names an exact version."""
        specs = list(self.specifier_set)
        return len(specs) == 1 and specs[0].operator in ("==", "===") and "*" not in specs[0].version

    def mentions_prerelease(self) -> bool:
        return bool(self.specifier_set.prereleases)

    def applies_in(self, env: "Environment", extra: str = "") -> bool:
        """Evaluate the marker for env, with the given extra active."""
        if self.marker_obj is None:
            return True
        return self.marker_obj.evaluate(env.marker_environment(extra))

    def __str__(self) -> str:
        text = self.name
        if self.extras:
            text += "[" + ",".join(self.extras) + "]"
        text += self.specifier
        if self.marker:
            text += f"; {self.marker}"
        return text


@dataclass(frozen=True)
class PackageVersion:
    """One release of a package as reported by the catalog."""
    name: str
    version: Version
    requires: Tuple[Requirement, ...] = ()
    markers: Tuple[str, ...] = ()
    digest: str = ""
    published: Optional[datetime] = field(default=None, compare=False)
    yanked: bool = field(default=False, compare=False)

    @property
    def key(self) -> Tuple[str, str]:
        return self.name, str(self.version)

    def supports(self, env: "Environment") -> bool:
        """True when this version can be installed into env."""
        if not self.markers:
            return True
        marker_env = env.marker_environment()
        return any(parse_marker(m).evaluate(marker_env) for m in self.markers)

    def __str__(self) -> str:
        return f"{self.name}=={self.version}"


@dataclass(frozen=True)
class Environment:
    """A concrete (python version, os, arch) target.

    OS and architecture aliases are folded to their canonical spelling on
    construction, so ``descriptor`` always parses back to an equal value.
    """
    python_version: str
    os: str
    arch: str = Constants.DEFAULT_ARCH

    def __post_init__(self) -> None:
        python_version = str(self.python_version).strip()
        try:
            Version(python_version)
        except InvalidVersion as e:
            raise ConfigurationError(f"Invalid python version '{self.python_version}'") from e
        if "-" in python_version:
            raise ConfigurationError(f"Invalid python version '{self.python_version}'")
        os_name = Constants.OS_ALIASES.get(str(self.os).strip().lower())
        if os_name is None:
            raise ConfigurationError(f"Unknown operating system '{self.os}'")
        arch = str(self.arch).strip().lower()
        if not arch or "-" in arch:
            raise ConfigurationError(f"Invalid architecture '{self.arch}'")
        object.__setattr__(self, "python_version", python_version)
        object.__setattr__(self, "os", os_name)
        object.__setattr__(self, "arch", Constants.ARCH_ALIASES.get(arch, arch))

    @property
    def descriptor(self) -> str:
        return f"py{self.python_version}-{self.os}-{self.arch}"

    def sort_key(self) -> Tuple[Version, str, str]:
        return Version(self.python_version), self.os, self.arch

    def marker_environment(self, extra: str = "") -> Dict[str, str]:
        """PEP 508 marker variables describing this environment."""
        full_version = self.python_version
        if full_version.count(".") < 2:
            full_version = f"{full_version}.0"
        return {
            "implementation_name": "cpython",
            "implementation_version": full_version,
            "os_name": "nt" if self.os == "windows" else "posix",
            "platform_machine": self.arch,
            "platform_python_implementation": "CPython",
            "platform_release": "",
            "platform_system": Constants.MARKER_PLATFORM_SYSTEM.get(self.os, self.os),
            "platform_version": "",
            "python_full_version": full_version,
            "python_version": ".".join(self.python_version.split(".")[:2]),
            "sys_platform": Constants.MARKER_SYS_PLATFORM.get(self.os, self.os),
            "extra": extra,
        }

    def __str__(self) -> str:
        return self.descriptor


@dataclass
class ResolverOptions:
    """Parameters that shape the candidate pool fed to the search."""
    mode: ResolutionMode = ResolutionMode.HIGHEST
    exclude_newer: Optional[datetime] = None
    allow_prereleases: bool = False
    allow_yanked: bool = False
    max_rounds: int = Constants.MAX_RESOLUTION_ROUNDS

    def __post_init__(self) -> None:
        # naive bounds are UTC, like naive publish timestamps
        if self.exclude_newer is not None and self.exclude_newer.tzinfo is None:
            self.exclude_newer = self.exclude_newer.replace(tzinfo=timezone.utc)

    @classmethod
    def from_constants(cls) -> "ResolverOptions":
        """Build options from the configured defaults."""
        return cls(
            mode=ResolutionMode(Constants.RESOLUTION_MODE),
            allow_prereleases=bool(Constants.ALLOW_PRERELEASES),
            allow_yanked=bool(Constants.ALLOW_YANKED),
            max_rounds=int(Constants.MAX_RESOLUTION_ROUNDS),
        )
