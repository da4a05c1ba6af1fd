"""
The `packaging` sub-package contains modules related to the construction and
verification of sealed bundles.

This includes:
- The codec that serializes a file tree into the signed, compressed wire format.
- Building bundles from a source directory behind the content-risk gate.
- Verifying and extracting bundles, re-scanning scripts before they are written.
- Reading bundle metadata without extracting it.
"""

from .builder import BundleBuilder, pack, pack_bytes
from .extractor import BundleExtractor, unpack, unpack_bytes
from .reader import BundleReader

__all__ = [
    "BundleBuilder",
    "BundleExtractor",
    "BundleReader",
    "pack",
    "pack_bytes",
    "unpack",
    "unpack_bytes",
]
