"""Core logic for building sealed bundles from a source directory."""

from collections.abc import Iterable
from pathlib import Path

from ..crypto import SigningKey, resolve_signing_key, seal
from ..exceptions import FormatError, RiskRejectedError
from ..models import (
    BUNDLE_SUFFIX,
    ArchiveTree,
    BundleManifest,
    Classification,
    ScanOptions,
    ScanResult,
)
from ..scanner import scan_files
from ..telemetry import logger
from .codec import compress, encode_envelope, read_manifest, read_tree, serialize_tree


def manifest_for_scan(tree: ArchiveTree) -> BundleManifest | None:
    """
    Reads the manifest for trust decisions only. An unusable manifest means
    no trusted context; the loader still requires a valid one.
    """
    try:
        return read_manifest(tree)
    except FormatError as e:
        logger.warning(
            "Ignoring unusable manifest, scanning without a trusted context", error=str(e)
        )
        return None


def log_scan_results(results: dict[str, ScanResult], phase: str) -> None:
    """Logs every warn-or-above result so overrides can be audited."""
    for path, result in results.items():
        if result.classification is Classification.CLEAN:
            continue
        log = logger.error if result.is_rejected else logger.warning
        log(
            f"Content scan {result.classification.value}",
            phase=phase,
            path=path,
            risk_score=result.risk_score,
            findings=result.describe(),
        )


class BundleBuilder:
    def __init__(
        self,
        source_dir: Path,
        *,
        trusted_packages: Iterable[str] = (),
        force_pack: bool = False,
        exclude: Iterable[str] = (),
        reject_threshold: int | None = None,
        key_file: Path | None = None,
        signing_key: SigningKey | bytes | str | None = None,
    ) -> None:
        self.source_dir = Path(source_dir)
        self.trusted_packages = frozenset(trusted_packages)
        self.force_pack = force_pack
        self.exclude = list(exclude)
        self.reject_threshold = reject_threshold
        self.key_file = key_file
        self.signing_key = signing_key

    def scan_tree(self, tree: ArchiveTree) -> dict[str, ScanResult]:
        """Scans every text entry; a rejection aborts unless force_pack is set."""
        manifest = manifest_for_scan(tree)
        options = ScanOptions(
            package_name=manifest.name if manifest else None,
            trusted_packages=self.trusted_packages,
            reject_threshold=self.reject_threshold,
        )
        results = scan_files(tree.files, options)
        log_scan_results(results, phase="pack")

        rejected = sorted(p for p, r in results.items() if r.is_rejected)
        if rejected:
            if not self.force_pack:
                raise RiskRejectedError(
                    f"Packing aborted: {len(rejected)} file(s) rejected by the content "
                    f"scanner: {', '.join(rejected)}. Use force-pack to override.",
                    results={p: results[p] for p in rejected},
                )
            logger.warning(
                "⚠️  Override: force-pack set, packing rejected files",
                files=", ".join(rejected),
            )
        return results

    def build_bytes(self) -> bytes:
        logger.info("Packing bundle", source=str(self.source_dir))
        tree = read_tree(self.source_dir, exclude=self.exclude)
        self.scan_tree(tree)

        serialized = serialize_tree(tree)
        key = self.signing_key
        if key is None:
            key = resolve_signing_key(self.key_file)
        envelope = seal(serialized, key)
        logger.debug("Bundle signed", file_count=tree.metadata.file_count)
        return compress(encode_envelope(envelope))

    def build_bundle(self, output_path: Path) -> Path:
        output_path = Path(output_path)
        blob = self.build_bytes()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(blob)
        logger.info("Bundle written", path=str(output_path), size=len(blob))
        return output_path


def default_output_path(source_dir: Path, bundle_dir: Path) -> Path:
    return Path(bundle_dir) / f"{Path(source_dir).resolve().name}{BUNDLE_SUFFIX}"


def pack_bytes(source_dir: Path, **options) -> bytes:
    return BundleBuilder(source_dir, **options).build_bytes()


def pack(
    source_dir: Path,
    output_path: Path | None = None,
    *,
    bundle_dir: Path = Path("art-packages"),
    **options,
) -> Path:
    """Packs `source_dir` into a signed bundle file and returns its path."""
    target = output_path or default_output_path(source_dir, bundle_dir)
    return BundleBuilder(source_dir, **options).build_bundle(target)
