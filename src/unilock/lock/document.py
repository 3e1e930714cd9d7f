"""Lock document model and its JSON text format.

Example::

    {
      "fingerprint": "sha256:...",
      "package": [
        {
          "digest": "sha256:...",
          "environments": ["py3.11-linux-x86_64", "py3.13-macos-arm64"],
          "name": "c",
          "version": "2.0"
        }
      ],
      "version": 1
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Set, Tuple

from ..cache.digest import is_valid_digest
from ..constants import Constants
from ..errors import ConfigurationError, LockFormatError
from ..versioning.models import Environment
from ..versioning.parser import normalize_name, parse_environment, parse_version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockEntry:
    """One package version and the environments it is locked for."""
    name: str
    version: str
    environments: Tuple[Environment, ...]
    digest: str

    def sort_key(self) -> Tuple[Any, ...]:
        return (
            self.name,
            parse_version(self.version),
            tuple(e.sort_key() for e in self.environments),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "environments": [e.descriptor for e in self.environments],
            "digest": self.digest,
        }


@dataclass(frozen=True)
class LockDocument:
    """Universal lock: ordered entries plus the fingerprint of the roots."""
    fingerprint: str
    entries: Tuple[LockEntry, ...]
    version: int = Constants.LOCK_FORMAT_VERSION

    @classmethod
    def create(cls, fingerprint: str, entries: Iterable[LockEntry]) -> "LockDocument":
        """Build a document with entries in canonical order."""
        normalized = [
            LockEntry(e.name, e.version, tuple(sorted(set(e.environments), key=Environment.sort_key)), e.digest)
            for e in entries
        ]
        seen: Set[Tuple[str, Environment]] = set()
        for entry in normalized:
            for env in entry.environments:
                if (entry.name, env) in seen:
                    raise LockFormatError(f"{entry.name} is locked twice for {env.descriptor}")
                seen.add((entry.name, env))
        return cls(fingerprint=fingerprint, entries=tuple(sorted(normalized, key=LockEntry.sort_key)))

    def environments(self) -> Tuple[Environment, ...]:
        envs = {env for entry in self.entries for env in entry.environments}
        return tuple(sorted(envs, key=Environment.sort_key))

    def for_environment(self, env: Environment) -> Dict[str, LockEntry]:
        return {e.name: e for e in self.entries if env in e.environments}

    def digests(self) -> List[str]:
        return sorted({e.digest for e in self.entries if e.digest})

    def pins(self) -> Dict[str, Dict[str, Tuple[str, str]]]:
        """Same shape as ResolutionGraph.pins()."""
        view: Dict[str, Dict[str, Tuple[str, str]]] = {}
        for env in self.environments():
            view[env.descriptor] = {
                name: (entry.version, entry.digest)
                for name, entry in sorted(self.for_environment(env).items())
            }
        return view


def dumps(lock: LockDocument) -> str:
    """Serialize deterministically: sorted keys, two-space indent, trailing newline."""
    data = {
        "version": lock.version,
        "fingerprint": lock.fingerprint,
        "package": [entry.to_dict() for entry in lock.entries],
    }
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def _require(record: Dict[str, Any], key: str, kind: type, where: str) -> Any:
    value = record.get(key)
    if not isinstance(value, kind):
        raise LockFormatError(f"{where}: field '{key}' must be {kind.__name__}")
    return value


def loads(text: str) -> LockDocument:
    """Parse lock text produced by dumps().

    Raises:
        LockFormatError: malformed JSON, unknown format version or bad fields.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LockFormatError(f"Lock file is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise LockFormatError("Lock file root must be an object")
    version = data.get("version")
    if version != Constants.LOCK_FORMAT_VERSION:
        raise LockFormatError(f"Unsupported lock format version: {version!r}")
    fingerprint = _require(data, "fingerprint", str, "lock")
    records = _require(data, "package", list, "lock")

    entries = []
    for i, record in enumerate(records):
        where = f"package[{i}]"
        if not isinstance(record, dict):
            raise LockFormatError(f"{where}: must be an object")
        digest = _require(record, "digest", str, where)
        if digest and not is_valid_digest(digest):
            raise LockFormatError(f"{where}: malformed digest '{digest}'")
        descriptors = _require(record, "environments", list, where)
        try:
            name = normalize_name(_require(record, "name", str, where))
            version_text = str(parse_version(_require(record, "version", str, where)))
            envs = tuple(parse_environment(d) for d in descriptors)
        except LockFormatError:
            raise
        except ConfigurationError as e:
            raise LockFormatError(f"{where}: {e}") from e
        if not envs:
            raise LockFormatError(f"{where}: no environments listed")
        entries.append(LockEntry(name=name, version=version_text, environments=envs, digest=digest))
    return LockDocument.create(fingerprint, entries)
