"""
This package contains the core logic for building, verifying and loading
sealed bundles: signed, compressed archives of a directory tree with one
designated entry point.
"""

from .exceptions import (
    ArtghosError,
    FileSystemError,
    FormatError,
    IntegrityError,
    ModuleResolutionError,
    RiskRejectedError,
)
from .loader import AsynchronousLoad, LoaderContext, SynchronousLoad, load, load_async, require
from .models import BUNDLE_FORMAT_VERSION, ArchiveMetadata, ArchiveTree, ScanResult
from .packaging import BundleReader, pack, pack_bytes, unpack, unpack_bytes
from .scanner import scan

__all__ = [
    "BUNDLE_FORMAT_VERSION",
    "ArchiveMetadata",
    "ArchiveTree",
    "ArtghosError",
    "AsynchronousLoad",
    "BundleReader",
    "FileSystemError",
    "FormatError",
    "IntegrityError",
    "LoaderContext",
    "ModuleResolutionError",
    "RiskRejectedError",
    "ScanResult",
    "SynchronousLoad",
    "load",
    "load_async",
    "pack",
    "pack_bytes",
    "require",
    "scan",
    "unpack",
    "unpack_bytes",
]
