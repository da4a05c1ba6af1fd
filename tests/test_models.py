"""Tests for the data models and their wire forms."""

import json

import pytest

from artghos.exceptions import FormatError
from artghos.models import (
    ArchiveMetadata,
    BundleManifest,
    Classification,
    ScanOptions,
    SignedEnvelope,
)


def test_metadata_wire_form() -> None:
    """Tests the camel-case wire keys of the metadata."""
    metadata = ArchiveMetadata(created="2024-01-01T00:00:00+00:00", file_count=2, package_name="demo")
    assert metadata.to_dict() == {
        "created": "2024-01-01T00:00:00+00:00",
        "fileCount": 2,
        "packageName": "demo",
    }
    assert ArchiveMetadata.from_dict(metadata.to_dict(), file_count=0) == metadata


def test_metadata_legacy_defaults() -> None:
    """Tests the defaults applied to metadata of legacy bundles."""
    metadata = ArchiveMetadata.from_dict({}, file_count=4)
    assert metadata == ArchiveMetadata(created="", file_count=4, package_name="")


@pytest.mark.parametrize(
    "data",
    [[], {"fileCount": -1}, {"fileCount": "2"}, {"fileCount": True}, {"created": 5}],
)
def test_metadata_rejects_bad_values(data: object) -> None:
    with pytest.raises(FormatError):
        ArchiveMetadata.from_dict(data, file_count=0)


def test_signed_envelope_defaults_to_current_version() -> None:
    assert SignedEnvelope(data="{}", signature="ab").to_dict() == {
        "data": "{}",
        "signature": "ab",
        "version": "1.0",
    }


def test_manifest_defaults() -> None:
    """Tests the defaults of a minimal manifest."""
    manifest = BundleManifest.from_bytes(b'{"name": "demo"}')
    assert manifest.main == "index.py"
    assert manifest.type is None
    assert not manifest.is_async
    assert manifest.dependencies == ()


def test_manifest_async_and_dependencies() -> None:
    """Tests the async type and requirement-string dependencies."""
    payload = json.dumps(
        {
            "name": "service",
            "main": "app.py",
            "type": "async",
            "dependencies": ["attrs>=23.1", "click [extra] ==8.1", "@scope/pkg@^2", "plain"],
        }
    ).encode()

    manifest = BundleManifest.from_bytes(payload)

    assert manifest.is_async
    assert manifest.main == "app.py"
    assert manifest.dependencies == ("attrs", "click", "@scope/pkg", "plain")


def test_manifest_dependency_object() -> None:
    manifest = BundleManifest.from_bytes(b'{"name": "x", "dependencies": {"left-pad": "^1.0"}}')
    assert manifest.dependencies == ("left-pad",)


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"[]",
        b'{"main": "index.py"}',
        b'{"name": "x", "main": 3}',
        b'{"name": "x", "type": 1}',
        b'{"name": "x", "dependencies": "attrs"}',
        b"\xff\xfe",
    ],
)
def test_manifest_rejects_malformed(payload: bytes) -> None:
    """Tests that malformed manifests raise FormatError."""
    with pytest.raises(FormatError):
        BundleManifest.from_bytes(payload)


def test_classification_rank() -> None:
    ranked = sorted(Classification, key=lambda c: c.rank)
    assert ranked == [Classification.CLEAN, Classification.WARN, Classification.REJECT]


def test_scan_options_trust() -> None:
    assert ScanOptions(package_name="goodlib", trusted_packages=["goodlib"]).is_trusted
    assert not ScanOptions(package_name="other", trusted_packages=["goodlib"]).is_trusted
    assert not ScanOptions(trusted_packages=["goodlib"]).is_trusted
