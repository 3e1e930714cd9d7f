"""Compile resolution graphs into lock documents and check their freshness."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import timezone
from typing import Iterable, Optional, Union

from ..cache.digest import canonical_json, compute_digest
from ..constants import Constants
from ..errors import LockFormatError, StaleLockError
from ..versioning.models import Environment, Requirement, ResolutionMode, ResolverOptions
from ..resolver.graph import ResolutionGraph
from .document import LockDocument, LockEntry, dumps, loads

logger = logging.getLogger(__name__)


def fingerprint(
    requirements: Iterable[Union[Requirement, str]],
    environments: Optional[Iterable[Environment]] = None,
    mode: Optional[ResolutionMode] = None,
    options: Optional[ResolverOptions] = None,
) -> str:
    """Deterministic hash of the root requirement texts.

    Requirement order and surrounding whitespace do not matter; any other
    change to a requirement's text changes the fingerprint. Environments and
    mode are folded in when given, so changing targets also invalidates.
    ``options`` folds in the mode plus every setting that shapes the
    candidate pool (date bound, prerelease and yanked admission).
    """
    texts = sorted((r.raw if isinstance(r, Requirement) else str(r)).strip() for r in requirements)
    payload = {"requirements": texts}
    if environments is not None:
        payload["environments"] = sorted({e.descriptor for e in environments})
    if options is not None:
        mode = mode or options.mode
        bound = options.exclude_newer
        payload["exclude_newer"] = bound.astimezone(timezone.utc).isoformat() if bound is not None else None
        payload["allow_prereleases"] = bool(options.allow_prereleases)
        payload["allow_yanked"] = bool(options.allow_yanked)
    if mode is not None:
        payload["mode"] = mode.value
    return compute_digest(canonical_json(payload))



def compile_lock(graph: ResolutionGraph, root_fingerprint: str) -> LockDocument:
    """Pack a resolution into one entry per (name, version) with its environments."""
    entries = [
        LockEntry(name=pv.name, version=str(pv.version), environments=envs, digest=pv.digest)
        for (pv, envs) in graph.variants().values()
    ]
    lock = LockDocument.create(root_fingerprint, entries)
    logger.info(
        "Compiled lock with %d entr%s for %d environment(s)",
        len(lock.entries), "y" if len(lock.entries) == 1 else "ies", len(graph.environments),
    )
    return lock


def validate(lock: LockDocument, root_fingerprint: str) -> bool:
    """True when the lock was produced from the same root requirements."""
    return lock.fingerprint == root_fingerprint


def ensure_fresh(lock: LockDocument, root_fingerprint: str) -> LockDocument:
    """Return lock unchanged, or raise StaleLockError when it is out of date."""
    if not validate(lock, root_fingerprint):
        raise StaleLockError(expected=root_fingerprint, found=lock.fingerprint)
    return lock


def write_lock(lock: LockDocument, path: Optional[str] = None) -> str:
    """Write lock text atomically; returns the path written."""
    target = path or Constants.LOCK_FILE_NAME
    directory = os.path.dirname(os.path.abspath(target))
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".unilock-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(dumps(lock))
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logger.info("Lock file written to %s", target)
    return target



def read_lock(path: Optional[str] = None) -> Optional[LockDocument]:
    """Read a lock file; None when it does not exist."""
    target = path or Constants.LOCK_FILE_NAME
    try:
        with open(target, "r", encoding="utf-8") as fh:
            text = fh.read()
    except FileNotFoundError:
        return None
    try:
        return loads(text)
    except LockFormatError as e:
        logger.error("Lock file %s is malformed: %s", target, e)
        raise
