"""Universal lock compilation, serialization and freshness checks."""

from .compiler import compile_lock, ensure_fresh, fingerprint, read_lock, validate, write_lock
from .document import LockDocument, LockEntry, dumps, loads

__all__ = [
    "LockDocument",
    "LockEntry",
    "compile_lock",
    "dumps",
    "ensure_fresh",
    "fingerprint",
    "loads",
    "read_lock",
    "validate",
    "write_lock",
]
