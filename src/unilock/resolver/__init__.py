"""Dependency resolution engine."""

from .conflicts import Cause, Conflict
from .engine import Resolver, resolve
from .graph import ResolutionGraph

__all__ = ["Cause", "Conflict", "ResolutionGraph", "Resolver", "resolve"]
