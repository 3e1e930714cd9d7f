"""Digest helpers for content-addressed storage."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

from ..constants import DigestAlgorithm
from ..errors import ConfigurationError

_DIGEST_RE = re.compile(r"^sha256:[0-9a-f]{64}$")


def compute_digest(data: bytes) -> str:
    """Return ``sha256:<hex>`` for data."""
    return f"{DigestAlgorithm.SHA256.value}:{hashlib.sha256(data).hexdigest()}"


def canonical_json(obj: Any) -> bytes:
    """Serialize obj to canonical JSON bytes: sorted keys, no whitespace, UTF-8."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def is_valid_digest(digest: str) -> bool:
    return bool(_DIGEST_RE.match(digest or ""))


def check_digest(digest: str) -> str:
    """Validate digest syntax, returning it unchanged."""
    if not is_valid_digest(digest):
        raise ConfigurationError(f"Malformed digest '{digest}'; expected sha256:<64 hex>")
    return digest
