"""Exception taxonomy for resolution, caching and locking."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from .resolver.conflicts import Cause


class UnilockError(Exception):
    """Base exception for all unilock errors."""


class ConfigurationError(UnilockError):
    """Malformed requirement, version, environment or configuration input."""


class LockFormatError(ConfigurationError):
    """Lock document text that cannot be parsed."""


class UnsatisfiableError(UnilockError):
    """Valid input for which no consistent set of versions exists.

    Attributes:
        package: Name whose constraints could not be met.
        conflict: Minimal set of causes that are jointly unsatisfiable.
        chain: Decisions, in order, that were active when the conflict was found.
    """

    def __init__(
        self,
        package: str,
        conflict: Sequence["Cause"],
        chain: Sequence[Tuple[str, str]] = (),
        message: Optional[str] = None,
    ):
        self.package = package
        self.conflict = tuple(conflict)
        self.chain = tuple(chain)
        super().__init__(message or f"No solution found for {package}")


class IntegrityError(UnilockError):
    """Cached or fetched content does not hash to its declared digest."""

    def __init__(self, digest: str, actual: Optional[str] = None, reason: Optional[str] = None):
        self.digest = digest
        self.actual = actual
        detail = reason or f"content hashes to {actual}"
        super().__init__(f"Integrity check failed for {digest}: {detail}")


class StaleLockError(UnilockError):
    """Lock fingerprint no longer matches the root requirements."""

    def __init__(self, expected: str, found: str):
        self.expected = expected
        self.found = found
        super().__init__(
            f"Lock fingerprint {found} does not match requirements fingerprint {expected}; re-resolve"
        )


class CatalogLookupError(UnilockError):
    """The catalog failed to answer a lookup for a package."""

    def __init__(self, package: str, cause: Optional[BaseException] = None):
        self.package = package
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Catalog lookup failed for {package}{detail}")


class ResolutionCancelled(UnilockError):
    """Resolution stopped because cancellation was requested."""
