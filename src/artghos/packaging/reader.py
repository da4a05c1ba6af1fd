"""Python-based reader for bundle envelopes and metadata."""

from pathlib import Path

from ..crypto import SigningKey, resolve_signing_key, verify_payload
from ..models import ArchiveTree, Envelope, SignedEnvelope
from .codec import decompress, deserialize_tree, parse_envelope


class BundleReader:
    """Reads and interprets a bundle without extracting or gating it."""

    def __init__(self, bundle_path: Path) -> None:
        if not bundle_path.is_file():
            raise FileNotFoundError(f"Bundle not found at: {bundle_path}")
        self.bundle_path = bundle_path
        self.compressed_size = bundle_path.stat().st_size
        self.envelope: Envelope = parse_envelope(decompress(bundle_path.read_bytes()))
        self._tree: ArchiveTree | None = None

    @property
    def is_signed(self) -> bool:
        return isinstance(self.envelope, SignedEnvelope) and bool(self.envelope.signature)

    @property
    def serialized_tree(self) -> str:
        if isinstance(self.envelope, SignedEnvelope):
            return self.envelope.data
        return self.envelope.serialized_tree

    @property
    def tree(self) -> ArchiveTree:
        if self._tree is None:
            self._tree = deserialize_tree(self.serialized_tree)
        return self._tree

    def verify(self, key: SigningKey | bytes | str | None = None, key_file: Path | None = None) -> bool:
        """True only for a signed bundle whose signature matches the key."""
        if not self.is_signed:
            return False
        signing_key = key if key is not None else resolve_signing_key(key_file)
        return verify_payload(self.envelope.data, self.envelope.signature, signing_key)

    def get_info(self) -> str:
        """Returns a human-readable string of the bundle information."""
        metadata = self.tree.metadata
        if isinstance(self.envelope, SignedEnvelope):
            format_line = f"  Format Version: {self.envelope.version}"
            signature_line = f"  Signature: {self.envelope.signature or '(missing)'}"
        else:
            format_line = "  Format Version: legacy (unsigned)"
            signature_line = "  Signature: (none)"
        return (
            f"Bundle Information (parsed by Python):\n"
            f"{format_line}\n"
            f"  Package Name: {metadata.package_name or '(unknown)'}\n"
            f"  Created: {metadata.created or '(unknown)'}\n"
            f"  File Count: {metadata.file_count}\n"
            f"  Compressed Size: {self.compressed_size} bytes\n"
            f"{signature_line}"
        )
