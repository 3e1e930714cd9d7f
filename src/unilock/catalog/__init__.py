"""Catalog interface and implementations."""

from .base import CatalogClient
from .cached import CachedCatalog
from .memory import InMemoryCatalog

__all__ = ["CachedCatalog", "CatalogClient", "InMemoryCatalog"]
