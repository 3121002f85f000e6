"""Desired-state manifest model and wire-format parsing."""

from .models import (
    KNOWN_PLATFORMS,
    PLATFORM_LINUX,
    PLATFORM_MACOS,
    PLATFORM_WINDOWS,
    ConfSpec,
    ManifestEntry,
    ManifestError,
    ReleaseDescriptor,
)
from .parsing import parse_manifest, parse_manifest_entry, parse_manifest_text

__all__ = [
    "ConfSpec",
    "KNOWN_PLATFORMS",
    "ManifestEntry",
    "ManifestError",
    "PLATFORM_LINUX",
    "PLATFORM_MACOS",
    "PLATFORM_WINDOWS",
    "ReleaseDescriptor",
    "parse_manifest",
    "parse_manifest_entry",
    "parse_manifest_text",
]
