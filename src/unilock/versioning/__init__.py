"""Requirement, version and environment models and their parsers."""

from .models import Environment, PackageVersion, Requirement, ResolutionMode, ResolverOptions
from .parser import (
    normalize_name,
    parse_environment,
    parse_package_version,
    parse_requirement,
    parse_requirements,
    parse_version,
    read_requirements_file,
)

__all__ = [
    "Environment",
    "PackageVersion",
    "Requirement",
    "ResolutionMode",
    "ResolverOptions",
    "normalize_name",
    "parse_environment",
    "parse_package_version",
    "parse_requirement",
    "parse_requirements",
    "parse_version",
    "read_requirements_file",
]
