"""YAML configuration loading for runtime tunables.

Precedence, highest first: environment variables, explicit config path,
UNILOCK_CONFIG, ./unilock.yml, ~/.config/unilock/unilock.yml, built-in
defaults on Constants.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, Optional

import yaml

from .constants import Constants
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# config key -> (Constants attribute, expected type)
_KEYS = {
    "cache_dir": ("CACHE_DIR", str),
    "cache_max_bytes": ("CACHE_MAX_BYTES", int),
    "cache_max_age_sec": ("CACHE_MAX_AGE_SEC", int),
    "lock_file": ("LOCK_FILE_NAME", str),
    "resolution_mode": ("RESOLUTION_MODE", str),
    "allow_prereleases": ("ALLOW_PRERELEASES", bool),
    "allow_yanked": ("ALLOW_YANKED", bool),
    "max_resolution_rounds": ("MAX_RESOLUTION_ROUNDS", int),
    "catalog_max_concurrency": ("CATALOG_MAX_CONCURRENCY", int),
}


def _candidate_paths(explicit: Optional[str]) -> Iterable[str]:
    if explicit:
        yield explicit
        return
    env_path = os.environ.get(Constants.ENV_CONFIG)
    if env_path:
        yield env_path
        return
    for name in Constants.CONFIG_FILE_NAMES:
        yield os.path.join(os.getcwd(), name)
    for name in Constants.CONFIG_FILE_NAMES:
        yield os.path.join(Constants.USER_CONFIG_DIR, name)


def load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the first available YAML config file.

    Args:
        path: Explicit config path. When given, the file must exist.

    Returns:
        The parsed mapping, or an empty dict when no file is found.
    """
    for candidate in _candidate_paths(path):
        if not os.path.isfile(candidate):
            if path:
                raise ConfigurationError(f"Config file not found: {candidate}")
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {candidate}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root in {candidate} must be a mapping")
        logger.debug("Loaded configuration from %s", candidate)
        return data
    return {}


def _coerce(key: str, value: Any, expected: type) -> Any:
    if expected is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0", "yes", "no"):
            return value.strip().lower() in ("true", "1", "yes")
        raise ConfigurationError(f"Config key '{key}' must be a boolean, got {value!r}")
    if expected is int:
        if isinstance(value, bool):
            raise ConfigurationError(f"Config key '{key}' must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Config key '{key}' must be an integer, got {value!r}") from e
    if not isinstance(value, str):
        raise ConfigurationError(f"Config key '{key}' must be a string, got {value!r}")
    return value


def apply_config(cfg: Dict[str, Any]) -> None:
    """Apply recognised keys onto Constants; unknown keys are logged and skipped."""
    section = cfg.get("unilock", cfg)
    if not isinstance(section, dict):
        raise ConfigurationError("'unilock' config section must be a mapping")
    for key, value in section.items():
        if key not in _KEYS:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        attr, expected = _KEYS[key]
        setattr(Constants, attr, _coerce(key, value, expected))

    mode = str(Constants.RESOLUTION_MODE).strip().lower()
    if mode not in ("highest", "lowest"):
        raise ConfigurationError(f"resolution_mode must be 'highest' or 'lowest', got {mode!r}")
    Constants.RESOLUTION_MODE = mode


def apply_env_overrides() -> None:
    """Environment variables win over file configuration."""
    cache_dir = os.environ.get(Constants.ENV_CACHE_DIR)
    if cache_dir:
        Constants.CACHE_DIR = cache_dir
    max_bytes = os.environ.get(Constants.ENV_CACHE_MAX_BYTES)
    if max_bytes:
        Constants.CACHE_MAX_BYTES = _coerce(Constants.ENV_CACHE_MAX_BYTES, max_bytes, int)


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load, apply and return the effective configuration."""
    cfg = load_yaml_config(path)
    apply_config(cfg)
    apply_env_overrides()
    return cfg
