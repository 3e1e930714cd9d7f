"""Snapshot catalog held in memory, loadable from YAML or JSON."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import yaml

from ..cache.digest import compute_digest
from ..errors import ConfigurationError
from ..versioning.models import PackageVersion
from ..versioning.parser import normalize_name, parse_package_version, parse_version
from .base import CatalogClient

logger = logging.getLogger(__name__)


class InMemoryCatalog(CatalogClient):
    """Catalog over a fixed snapshot of packages and artifacts.

    Artifacts default to a small deterministic payload so every version
    has a real digest even when the snapshot carries no artifact content.
    """

    def __init__(self, latency: float = 0.0):
        self._packages: Dict[str, List[PackageVersion]] = {}
        self._artifacts: Dict[Tuple[str, str], bytes] = {}
        self.latency = latency
        self.lookups: List[str] = []
        self.fetches: List[Tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def add(
        self,
        name: str,
        version: str,
        requires: Iterable[str] = (),
        markers: Iterable[str] = (),
        artifact: Optional[bytes] = None,
        published: Optional[Any] = None,
        yanked: bool = False,
        digest: Optional[str] = None,
    ) -> PackageVersion:
        """Register one version and return its PackageVersion."""
        canonical = normalize_name(name)
        payload = artifact if artifact is not None else f"{canonical}-{parse_version(version)}".encode("utf-8")
        record = {
            "version": version,
            "requires": list(requires),
            "markers": list(markers),
            "digest": digest or compute_digest(payload),
            "published": published.isoformat() if isinstance(published, datetime) else published,
            "yanked": yanked,
        }
        pv = parse_package_version(canonical, record)
        if any(existing.version == pv.version for existing in self._packages.get(canonical, [])):
            raise ConfigurationError(f"Duplicate catalog entry for {pv}")
        self._packages.setdefault(canonical, []).append(pv)
        self._artifacts[pv.key] = payload
        return pv

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "InMemoryCatalog":
        """Build a catalog from ``{"packages": {name: [record, ...]}}``."""
        packages = data.get("packages")
        if not isinstance(packages, dict):
            raise ConfigurationError("Catalog snapshot must contain a 'packages' mapping")
        catalog = cls()
        for name in sorted(packages):
            records = packages[name] or []
            if not isinstance(records, list):
                raise ConfigurationError(f"Catalog entry for {name} must be a list of versions")
            for record in records:
                if not isinstance(record, dict):
                    raise ConfigurationError(f"Catalog version record for {name} must be a mapping")
                artifact = record.get("artifact")
                catalog.add(
                    name,
                    str(record.get("version", "")),
                    requires=record.get("requires") or (),
                    markers=record.get("markers") or (),
                    artifact=artifact.encode("utf-8") if isinstance(artifact, str) else artifact,
                    published=record.get("published"),
                    yanked=bool(record.get("yanked", False)),
                    digest=record.get("digest"),
                )
        return catalog

    @classmethod
    def from_file(cls, path: str) -> "InMemoryCatalog":
        """Load a snapshot from a .json, .yml or .yaml file."""
        try:
            with open(path, "r", encoding="utf-8") as fh:
                if path.lower().endswith(".json"):
                    data = json.load(fh)
                else:
                    data = yaml.safe_load(fh)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Catalog snapshot not found: {path}") from e
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Invalid catalog snapshot {path}: {e}") from e
        logger.info("Loaded catalog snapshot from %s", path)
        return cls.from_mapping(data or {})

    async def list_versions(self, name: str) -> Sequence[PackageVersion]:
        self.lookups.append(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
        finally:
            self.in_flight -= 1
        return list(self._packages.get(normalize_name(name), []))

    async def fetch_artifact(self, package: PackageVersion) -> bytes:
        self.fetches.append(package.key)
        if self.latency:
            await asyncio.sleep(self.latency)
        try:
            return self._artifacts[package.key]
        except KeyError as e:
            raise LookupError(f"No artifact for {package}") from e
