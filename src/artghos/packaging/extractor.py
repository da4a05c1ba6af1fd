"""Core logic for verifying and extracting sealed bundles."""

from collections.abc import Iterable
from pathlib import Path

from ..crypto import SigningKey, open_envelope
from ..exceptions import FileSystemError, RiskRejectedError
from ..models import ArchiveMetadata, ArchiveTree, BundleManifest, ScanOptions, ScanResult
from ..scanner import scan_files
from ..telemetry import logger
from .builder import log_scan_results, manifest_for_scan
from .codec import decompress, deserialize_tree, parse_envelope, write_tree

VENDOR_DIRECTORIES: tuple[str, ...] = ("vendor", "node_modules")


def is_exempt(path: str, manifest: BundleManifest | None, trusted_packages: frozenset[str]) -> bool:
    """
    A rejected file is exempt when the bundle's package is trusted and the file
    belongs either to the package itself or to one of its declared dependencies.
    """
    if manifest is None or manifest.name not in trusted_packages:
        return False
    parts = path.split("/")
    for index, part in enumerate(parts[:-1]):
        if part in VENDOR_DIRECTORIES:
            if index + 1 >= len(parts) - 1:
                return False
            dependency = parts[index + 1]
            # Scoped names span two directory levels: vendor/@scope/name/...
            if dependency.startswith("@") and index + 2 < len(parts) - 1:
                dependency = f"{dependency}/{parts[index + 2]}"
            if dependency not in manifest.dependencies:
                return False
    return True


class BundleExtractor:
    def __init__(
        self,
        *,
        trusted_packages: Iterable[str] = (),
        force_unpack: bool = False,
        accept_invalid_signature: bool = False,
        reject_threshold: int | None = None,
        key_file: Path | None = None,
        signing_key: SigningKey | bytes | str | None = None,
    ) -> None:
        self.trusted_packages = frozenset(trusted_packages)
        self.force_unpack = force_unpack
        self.accept_invalid_signature = accept_invalid_signature
        self.reject_threshold = reject_threshold
        self.key_file = key_file
        self.signing_key = signing_key

    def open_bytes(self, blob: bytes) -> ArchiveTree:
        """Decompresses, verifies and decodes a bundle without touching disk."""
        envelope = parse_envelope(decompress(blob))
        serialized = open_envelope(
            envelope,
            self.signing_key,
            accept_legacy=self.force_unpack,
            accept_invalid_signature=self.accept_invalid_signature,
            key_file=self.key_file,
        )
        return deserialize_tree(serialized)

    def gate(self, tree: ArchiveTree) -> dict[str, ScanResult]:
        """
        Re-scans script entries before anything is written. Any rejected file
        that is neither exempt nor overridden aborts the whole extraction.
        """
        manifest = manifest_for_scan(tree)
        options = ScanOptions(
            package_name=manifest.name if manifest else None,
            trusted_packages=self.trusted_packages,
            reject_threshold=self.reject_threshold,
        )
        results = scan_files(tree.files, options, scripts_only=True)
        log_scan_results(results, phase="unpack")

        blocked: list[str] = []
        for path in sorted(p for p, r in results.items() if r.is_rejected):
            if is_exempt(path, manifest, self.trusted_packages):
                logger.warning("⚠️  Exempt: rejected file belongs to a trusted package", path=path)
            elif self.force_unpack:
                logger.warning("⚠️  Override: force-unpack set, writing rejected file", path=path)
            else:
                blocked.append(path)

        if blocked:
            raise RiskRejectedError(
                f"Unpacking aborted: {len(blocked)} file(s) rejected by the content "
                f"scanner: {', '.join(blocked)}. Use force-unpack to override.",
                results={p: results[p] for p in blocked},
            )
        return results

    def extract_bytes(self, blob: bytes, dest: Path) -> ArchiveMetadata:
        tree = self.open_bytes(blob)
        self.gate(tree)
        write_tree(tree, Path(dest))
        logger.info("Bundle extracted", dest=str(dest), file_count=len(tree.files))
        return tree.metadata

    def extract(self, bundle_path: Path, dest: Path) -> ArchiveMetadata:
        bundle_path = Path(bundle_path)
        if not bundle_path.is_file():
            raise FileSystemError("Bundle not found", bundle_path)
        logger.info("Unpacking bundle", path=str(bundle_path))
        return self.extract_bytes(bundle_path.read_bytes(), dest)


def unpack_bytes(blob: bytes, **options) -> ArchiveTree:
    """Verifies, decodes and gates a bundle held in memory."""
    extractor = BundleExtractor(**options)
    tree = extractor.open_bytes(blob)
    extractor.gate(tree)
    return tree


def unpack(bundle_path: Path, dest: Path, **options) -> ArchiveMetadata:
    """Extracts a bundle file into `dest`, replacing anything already there."""
    return BundleExtractor(**options).extract(bundle_path, dest)
