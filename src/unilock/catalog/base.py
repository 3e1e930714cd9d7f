"""Catalog client interface consumed by the resolver."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from ..versioning.models import PackageVersion


class CatalogClient(ABC):
    """Async lookup capability for available versions and their artifacts.

    Implementations may return versions in any order; callers sort.
    Unknown packages yield an empty sequence. Any raised exception is a
    lookup failure for that name.
    """

    @abstractmethod
    async def list_versions(self, name: str) -> Sequence[PackageVersion]:
        """Return every published version of name with its metadata."""

    @abstractmethod
    async def fetch_artifact(self, package: PackageVersion) -> bytes:
        """Return the artifact bytes for one package version."""
