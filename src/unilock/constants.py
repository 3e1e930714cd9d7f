"""Constants used in the project."""

import os
from enum import Enum


class DigestAlgorithm(Enum):
    """Hash algorithms accepted for content digests.

    Args:
        Enum (string): Prefix written in front of the hex digest.
    """

    SHA256 = "sha256"


class OperatingSystem(Enum):
    """Operating systems an Environment can target.

    Args:
        Enum (string): Short name used in environment descriptors.
    """

    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ENV_LOG_LEVEL = "UNILOCK_LOG_LEVEL"
    ENV_CONFIG = "UNILOCK_CONFIG"
    ENV_CACHE_DIR = "UNILOCK_CACHE_DIR"
    ENV_CACHE_MAX_BYTES = "UNILOCK_CACHE_MAX_BYTES"

    CONFIG_FILE_NAMES = ["unilock.yml", "unilock.yaml"]
    USER_CONFIG_DIR = os.path.join(os.path.expanduser("~"), ".config", "unilock")

    CACHE_DIR = os.path.join(os.path.expanduser("~"), ".cache", "unilock")
    CACHE_MAX_BYTES = 2 * 1024 * 1024 * 1024  # 2GB
    CACHE_MAX_AGE_SEC = 30 * 24 * 3600
    CACHE_OBJECTS_DIR = "objects"
    CACHE_REFS_DIR = "refs"
    CACHE_TMP_DIR = "tmp"
    CACHE_PINS_DIR = "pins"
    CACHE_LOCK_STRIPES = 64

    LOCK_FILE_NAME = "unilock.lock"
    LOCK_FORMAT_VERSION = 1

    RESOLUTION_MODE = "highest"
    ALLOW_PRERELEASES = False
    ALLOW_YANKED = False
    MAX_RESOLUTION_ROUNDS = 100000
    CATALOG_MAX_CONCURRENCY = 16

    DEFAULT_ARCH = "x86_64"
    MARKER_SYS_PLATFORM = {
        OperatingSystem.LINUX.value: "linux",
        OperatingSystem.MACOS.value: "darwin",
        OperatingSystem.WINDOWS.value: "win32",
    }
    MARKER_PLATFORM_SYSTEM = {
        OperatingSystem.LINUX.value: "Linux",
        OperatingSystem.MACOS.value: "Darwin",
        OperatingSystem.WINDOWS.value: "Windows",
    }
    OS_ALIASES = {
        "linux": OperatingSystem.LINUX.value,
        "macos": OperatingSystem.MACOS.value,
        "darwin": OperatingSystem.MACOS.value,
        "osx": OperatingSystem.MACOS.value,
        "windows": OperatingSystem.WINDOWS.value,
        "win32": OperatingSystem.WINDOWS.value,
        "win": OperatingSystem.WINDOWS.value,
    }
    ARCH_ALIASES = {
        "amd64": "x86_64",
        "x64": "x86_64",
        "arm64": "arm64",
        "aarch64": "aarch64",
    }
