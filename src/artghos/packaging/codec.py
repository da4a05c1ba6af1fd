"""Serialization of file trees to and from the bundle wire format."""

import base64
import binascii
from collections.abc import Iterable
from datetime import datetime, timezone
import fnmatch
import gzip
import json
import posixpath
from pathlib import Path
import re
import shutil
import zlib

from ..exceptions import FileSystemError, FormatError
from ..models import (
    BUNDLE_FORMAT_VERSION,
    ENVELOPE_DATA_KEY,
    ENVELOPE_SIGNATURE_KEY,
    ENVELOPE_VERSION_KEY,
    MANIFEST_FILE_NAME,
    TREE_FILES_KEY,
    TREE_METADATA_KEY,
    ArchiveMetadata,
    ArchiveTree,
    BundleManifest,
    Envelope,
    LegacyPayload,
    SignedEnvelope,
)

# "C:/..." and a bare "C:"; "a:b.txt" is an ordinary POSIX name.
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:(?:/|$)")


def normalize_entry_path(path: str) -> str:
    """Normalizes an entry path to forward slashes, rejecting escapes."""
    candidate = path.replace("\\", "/")
    if not candidate or candidate.startswith("/") or _DRIVE_PREFIX.match(candidate):
        raise FormatError(f"Illegal archive entry path: {path!r}")

    normalized = posixpath.normpath(candidate)
    if normalized in (".", "..") or normalized.startswith("../"):
        raise FormatError(f"Archive entry escapes the archive root: {path!r}")
    return normalized


def collect_files(source_dir: Path) -> list[Path]:
    """Returns every regular file below `source_dir`, sorted."""
    if not source_dir.is_dir():
        raise FileSystemError("Source directory not found", source_dir)
    return sorted(p for p in source_dir.rglob("*") if p.is_file())


def is_excluded(rel_path: str, patterns: Iterable[str]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    parts = rel_path.split("/")[:-1]
    for pattern in patterns:
        if fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(name, pattern):
            return True
        if any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


def read_tree(
    source_dir: Path, created: str | None = None, exclude: Iterable[str] = ()
) -> ArchiveTree:
    exclude = tuple(exclude)
    files: dict[str, bytes] = {}
    for file_path in collect_files(source_dir):
        rel_path = normalize_entry_path(file_path.relative_to(source_dir).as_posix())
        if exclude and is_excluded(rel_path, exclude):
            continue
        files[rel_path] = file_path.read_bytes()

    metadata = ArchiveMetadata(
        created=created or datetime.now(timezone.utc).isoformat(),
        file_count=len(files),
        package_name=source_dir.resolve().name,
    )
    return ArchiveTree(files=files, metadata=metadata)


def read_manifest(tree: ArchiveTree) -> BundleManifest | None:
    payload = tree.files.get(MANIFEST_FILE_NAME)
    if payload is None:
        return None
    return BundleManifest.from_bytes(payload)


def serialize_tree(tree: ArchiveTree) -> str:
    document = {
        TREE_FILES_KEY: {
            path: base64.b64encode(payload).decode("ascii")
            for path, payload in tree.files.items()
        },
        TREE_METADATA_KEY: tree.metadata.to_dict(),
    }
    return json.dumps(document, sort_keys=True, separators=(",", ":"))


def deserialize_tree(text: str) -> ArchiveTree:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise FormatError(f"Serialized tree is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise FormatError("Serialized tree must be a JSON object.")

    raw_files = document.get(TREE_FILES_KEY)
    if not isinstance(raw_files, dict):
        raise FormatError(f"Serialized tree has no '{TREE_FILES_KEY}' object.")

    files: dict[str, bytes] = {}
    for raw_path, encoded in raw_files.items():
        path = normalize_entry_path(raw_path)
        if path in files:
            raise FormatError(f"Duplicate archive entry after normalization: {path!r}")
        if not isinstance(encoded, str):
            raise FormatError(f"Payload of {path!r} is not a base64 string.")
        try:
            files[path] = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise FormatError(f"Corrupt payload for {path!r}: {e}") from e

    metadata = ArchiveMetadata.from_dict(
        document.get(TREE_METADATA_KEY, {}), file_count=len(files)
    )
    return ArchiveTree(files=files, metadata=metadata)


def encode_envelope(envelope: SignedEnvelope) -> str:
    return json.dumps(envelope.to_dict(), separators=(",", ":"))


def parse_envelope(text: str) -> Envelope:
    """Classifies a decompressed bundle document as signed or legacy."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise FormatError(f"Bundle is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise FormatError("Bundle document must be a JSON object.")

    has_data = ENVELOPE_DATA_KEY in document
    has_signature = ENVELOPE_SIGNATURE_KEY in document
    if not has_data and not has_signature:
        return LegacyPayload(serialized_tree=text)
    if not has_data:
        raise FormatError("Bundle carries a signature but no signed data.")

    data = document[ENVELOPE_DATA_KEY]
    signature = document.get(ENVELOPE_SIGNATURE_KEY) or ""
    version = document.get(ENVELOPE_VERSION_KEY, BUNDLE_FORMAT_VERSION)
    if not isinstance(data, str) or not isinstance(signature, str):
        raise FormatError("Envelope 'data' and 'signature' must be strings.")
    if version != BUNDLE_FORMAT_VERSION:
        raise FormatError(f"Unsupported bundle format version: {version!r}")
    return SignedEnvelope(data=data, signature=signature, version=version)


def compress(text: str) -> bytes:
    return gzip.compress(text.encode("utf-8"))


def decompress(blob: bytes) -> str:
    try:
        return gzip.decompress(blob).decode("utf-8")
    except (OSError, EOFError, zlib.error) as e:
        raise FormatError(f"Bundle is not a valid gzip stream: {e}") from e
    except UnicodeDecodeError as e:
        raise FormatError(f"Bundle content is not UTF-8 text: {e}") from e


def _ensure_parents(dest: Path, rel_path: str) -> Path:
    """Creates the parent directories of an entry one level at a time."""
    current = dest
    for part in rel_path.split("/")[:-1]:
        current = current / part
        if current.is_dir():
            continue
        if current.exists():
            raise FileSystemError("Path collision: a file blocks a directory", current)
        current.mkdir()
    return current / rel_path.split("/")[-1]


def check_collisions(paths: Iterable[str]) -> None:
    """Rejects trees where one entry is used both as a file and as a directory."""
    files = set(paths)
    for path in sorted(files):
        parent = posixpath.dirname(path)
        while parent:
            if parent in files:
                raise FileSystemError("Path collision: a file blocks a directory", parent)
            parent = posixpath.dirname(parent)


def write_tree(tree: ArchiveTree, dest: Path) -> None:
    """Destructively resets `dest` and materializes every entry of `tree`."""
    check_collisions(tree.files)
    if dest.exists():
        shutil.rmtree(dest)
    dest.mkdir(parents=True)
    root = dest.resolve()

    for rel_path, payload in tree.files.items():
        target = _ensure_parents(dest, rel_path)
        if not target.resolve().is_relative_to(root):
            raise FileSystemError("Archive entry resolves outside the destination", target)
        if target.is_dir():
            raise FileSystemError("Path collision: a directory blocks a file", target)
        target.write_bytes(payload)
