"""Parsing utilities for requirements, versions, environments and catalog records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

import requirements
from packaging.markers import InvalidMarker
from packaging.requirements import InvalidRequirement
from packaging.requirements import Requirement as _PkgRequirement
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from ..constants import Constants
from ..errors import ConfigurationError
from .models import Environment, PackageVersion, Requirement, parse_marker


def normalize_name(name: str) -> str:
    """Apply PEP 503 name normalization."""
    if not name or not name.strip():
        raise ConfigurationError("Package name must not be empty")
    return canonicalize_name(name.strip())


def parse_version(text: str) -> Version:
    """Parse a version string, raising ConfigurationError when malformed."""
    try:
        return Version(str(text).strip())
    except InvalidVersion as e:
        raise ConfigurationError(f"Invalid version '{text}'") from e


def parse_requirement(text: str) -> Requirement:
    """Parse one requirement line such as ``requests[socks]>=2.0; python_version<'3.12'``.

    Comments after ``#`` are stripped. URL requirements are rejected since
    the catalog only serves named releases.
    """
    raw = str(text).split("#", 1)[0].strip()
    if not raw:
        raise ConfigurationError(f"Empty requirement: {text!r}")
    try:
        parsed = _PkgRequirement(raw)
    except InvalidRequirement as e:
        raise ConfigurationError(f"Invalid requirement '{raw}': {e}") from e
    if parsed.url:
        raise ConfigurationError(f"URL requirements are not supported: '{raw}'")

    marker = str(parsed.marker) if parsed.marker is not None else None
    return Requirement(
        name=normalize_name(parsed.name),
        specifier=str(parsed.specifier),
        marker=marker,
        extras=tuple(sorted(canonicalize_name(e) for e in parsed.extras)),
        raw=raw,
        specifier_set=parsed.specifier,
        marker_obj=parse_marker(marker) if marker else None,
    )


def parse_requirements(lines: Iterable[str]) -> List[Requirement]:
    """Parse requirement lines, skipping blanks and comment-only lines."""
    reqs = []
    for line in lines:
        stripped = str(line).split("#", 1)[0].strip()
        if stripped:
            reqs.append(parse_requirement(stripped))
    return reqs


def read_requirements_file(path: str) -> List[Requirement]:
    """Read a requirements.txt style file.

    Editable, URL and local-path entries are rejected like any other
    non-registry requirement.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            entries = list(requirements.parse(fh))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Requirements file not found: {path}") from e
    reqs = []
    for entry in entries:
        if entry.editable or entry.local_file or entry.uri or not entry.name:
            raise ConfigurationError(f"Unsupported requirement in {path}: '{entry.line}'")
        reqs.append(parse_requirement(entry.line))
    return reqs


def parse_environment(text: str) -> Environment:
    """Parse an environment descriptor like ``py3.11-linux-x86_64`` or ``3.13-macos``.

    The architecture defaults to x86_64 when omitted.
    """
    token = str(text).strip()
    parts = token.split("-")
    if len(parts) not in (2, 3):
        raise ConfigurationError(f"Invalid environment descriptor '{text}'")
    py = parts[0]
    if py.lower().startswith("py"):
        py = py[2:]
    arch = parts[2] if len(parts) == 3 else Constants.DEFAULT_ARCH
    try:
        return Environment(python_version=py, os=parts[1], arch=arch)
    except ConfigurationError as e:
        raise ConfigurationError(f"{e} in environment '{text}'") from e



def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            ts = datetime.fromisoformat(text)
        except ValueError as e:
            raise ConfigurationError(f"Invalid timestamp '{value}'") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def parse_package_version(name: str, record: Mapping[str, Any], digest: Optional[str] = None) -> PackageVersion:
    """Build a PackageVersion from a catalog metadata record.

    Args:
        name: Package name (normalized here).
        record: Mapping with ``version`` and optional ``requires``, ``markers``,
            ``digest``, ``published`` and ``yanked`` fields.
        digest: Digest to use when the record does not carry one.
    """
    if "version" not in record:
        raise ConfigurationError(f"Catalog record for {name} is missing 'version'")
    requires = record.get("requires") or []
    markers = record.get("markers") or []
    if isinstance(requires, str) or isinstance(markers, str):
        raise ConfigurationError(f"'requires' and 'markers' for {name} must be lists")
    for m in markers:
        try:
            parse_marker(str(m))
        except InvalidMarker as e:
            raise ConfigurationError(f"Invalid marker '{m}' for {name}: {e}") from e
    return PackageVersion(
        name=normalize_name(name),
        version=parse_version(record["version"]),
        requires=tuple(parse_requirement(r) for r in requires),
        markers=tuple(str(m) for m in markers),
        digest=str(record.get("digest") or digest or ""),
        published=parse_timestamp(record.get("published")),
        yanked=bool(record.get("yanked", False)),
    )


def package_version_record(pv: PackageVersion) -> Dict[str, Any]:
    """Inverse of parse_package_version, used for canonical metadata blobs."""
    record: Dict[str, Any] = {
        "version": str(pv.version),
        "requires": [r.raw for r in pv.requires],
        "markers": list(pv.markers),
        "digest": pv.digest,
    }
    if pv.published is not None:
        record["published"] = pv.published.isoformat()
    if pv.yanked:
        record["yanked"] = True
    return record
