"""unilock - universal dependency resolver, content-addressed cache and lock compiler."""

from .errors import (
    CatalogLookupError,
    ConfigurationError,
    IntegrityError,
    LockFormatError,
    ResolutionCancelled,
    StaleLockError,
    UnilockError,
    UnsatisfiableError,
)

__version__ = "0.1.0"

__all__ = [
    "CatalogLookupError",
    "ConfigurationError",
    "IntegrityError",
    "LockFormatError",
    "ResolutionCancelled",
    "StaleLockError",
    "UnilockError",
    "UnsatisfiableError",
    "__version__",
]
