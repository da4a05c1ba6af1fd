import enum
import json
import re
from typing import Any, Self

from attrs import define, field

from .exceptions import FormatError

# Canonical bundle format constants
BUNDLE_FORMAT_VERSION: str = "1.0"
BUNDLE_SUFFIX: str = ".art"
MANIFEST_FILE_NAME: str = "package.json"
DEFAULT_ENTRY_POINT: str = "index.py"
ASYNC_MODULE_TYPE: str = "async"

# Wire keys of the serialized tree and the signed envelope
TREE_FILES_KEY = "files"
TREE_METADATA_KEY = "metadata"
ENVELOPE_DATA_KEY = "data"
ENVELOPE_SIGNATURE_KEY = "signature"
ENVELOPE_VERSION_KEY = "version"


@define(frozen=True, slots=True)
class ArchiveMetadata:
    created: str
    file_count: int
    package_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "fileCount": self.file_count,
            "packageName": self.package_name,
        }

    @classmethod
    def from_dict(cls, data: Any, file_count: int) -> Self:
        """Builds metadata from its wire form; legacy bundles may omit fields."""
        if not isinstance(data, dict):
            raise FormatError("Archive metadata must be an object.")
        created = data.get("created", "")
        count = data.get("fileCount", file_count)
        package_name = data.get("packageName", "")
        if not isinstance(created, str) or not isinstance(package_name, str):
            raise FormatError("Archive metadata fields have unexpected types.")
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            raise FormatError(f"Invalid fileCount in archive metadata: {count!r}")
        return cls(created=created, file_count=count, package_name=package_name)


@define(frozen=True, slots=True)
class ArchiveTree:
    files: dict[str, bytes]
    metadata: ArchiveMetadata


@define(frozen=True, slots=True)
class SignedEnvelope:
    data: str
    signature: str
    version: str = field(default=BUNDLE_FORMAT_VERSION)

    def to_dict(self) -> dict[str, str]:
        return {
            ENVELOPE_DATA_KEY: self.data,
            ENVELOPE_SIGNATURE_KEY: self.signature,
            ENVELOPE_VERSION_KEY: self.version,
        }


@define(frozen=True, slots=True)
class LegacyPayload:
    """An unsigned bundle whose tree sits at the top level of the document."""

    serialized_tree: str


Envelope = SignedEnvelope | LegacyPayload


@define(frozen=True, slots=True)
class BundleManifest:
    name: str
    main: str = field(default=DEFAULT_ENTRY_POINT)
    type: str | None = field(default=None)
    dependencies: tuple[str, ...] = field(default=())

    @property
    def is_async(self) -> bool:
        return self.type == ASYNC_MODULE_TYPE

    @classmethod
    def from_bytes(cls, payload: bytes) -> Self:
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise FormatError(f"Manifest is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise FormatError("Manifest must be a JSON object.")

        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise FormatError("Manifest is missing a 'name'.")
        main = data.get("main") or DEFAULT_ENTRY_POINT
        if not isinstance(main, str):
            raise FormatError("Manifest 'main' must be a string.")
        module_type = data.get("type")
        if module_type is not None and not isinstance(module_type, str):
            raise FormatError("Manifest 'type' must be a string.")

        raw_deps = data.get("dependencies")
        if raw_deps is None:
            dependencies: tuple[str, ...] = ()
        elif isinstance(raw_deps, dict):
            dependencies = tuple(str(k) for k in raw_deps)
        elif isinstance(raw_deps, list):
            dependencies = tuple(_requirement_name(str(d)) for d in raw_deps)
        else:
            raise FormatError("Manifest 'dependencies' must be a list or object.")

        return cls(name=name, main=main, type=module_type, dependencies=dependencies)


_REQUIREMENT_NAME = re.compile(r"^\s*(@?[A-Za-z0-9._/-]+?)\s*(?:[\[<>=!~;@ ]|$)")


def _requirement_name(requirement: str) -> str:
    """'attrs>=23.1' -> 'attrs'"""
    match = _REQUIREMENT_NAME.match(requirement)
    return match.group(1) if match else requirement.strip()


class RiskTier(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Classification(enum.Enum):
    CLEAN = "clean"
    WARN = "warn"
    REJECT = "reject"

    @property
    def rank(self) -> int:
        return _CLASSIFICATION_RANK[self]


_CLASSIFICATION_RANK = {
    Classification.CLEAN: 0,
    Classification.WARN: 1,
    Classification.REJECT: 2,
}


@define(frozen=True, slots=True)
class RiskFinding:
    pattern_id: str
    description: str
    tier: RiskTier


@define(frozen=True, slots=True)
class ScanResult:
    risk_score: int
    findings: tuple[RiskFinding, ...]
    classification: Classification

    @property
    def is_rejected(self) -> bool:
        return self.classification is Classification.REJECT

    def describe(self) -> str:
        return ", ".join(
            f"{f.pattern_id} ({f.tier.value})" for f in self.findings
        ) or "no findings"


@define(frozen=True, slots=True)
class ScanOptions:
    package_name: str | None = None
    trusted_packages: frozenset[str] = field(default=frozenset(), converter=frozenset)
    reject_threshold: int | None = None

    @property
    def is_trusted(self) -> bool:
        return self.package_name is not None and self.package_name in self.trusted_packages
