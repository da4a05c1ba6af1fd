"""Reads the `[tool.artghos]` table from a project's pyproject.toml."""

from pathlib import Path
import tomllib
from typing import Any

from attrs import define, field

from .exceptions import FormatError

DEFAULT_PYPROJECT = Path("pyproject.toml")


@define(frozen=True, slots=True)
class ArtghosConfig:
    bundle_dir: Path = field(default=Path("art-packages"))
    trusted_packages: frozenset[str] = field(default=frozenset(), converter=frozenset)
    reject_threshold: int | None = field(default=None)
    key_file: Path | None = field(default=None)
    exclude: tuple[str, ...] = field(default=(), converter=tuple)


def _string_list(conf: dict[str, Any], key: str) -> list[str]:
    value = conf.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise FormatError(f"[tool.artghos] '{key}' must be a list of strings.")
    return value


def load_config(pyproject_path: Path | None = None) -> ArtghosConfig:
    """
    Loads configuration, falling back to defaults when the file or the
    table is missing. Relative paths resolve against the pyproject directory.
    """
    manifest_path = Path(pyproject_path or DEFAULT_PYPROJECT)
    if not manifest_path.is_file():
        return ArtghosConfig()

    try:
        with manifest_path.open("rb") as f:
            pyproject_data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise FormatError(f"Could not parse {manifest_path}: {e}") from e

    artghos_conf = pyproject_data.get("tool", {}).get("artghos", {})
    if not artghos_conf:
        return ArtghosConfig()

    manifest_dir = manifest_path.parent
    signing_conf = artghos_conf.get("signing", {})
    key_file = signing_conf.get("key_file")

    reject_threshold = artghos_conf.get("reject_threshold")
    if reject_threshold is not None and (
        not isinstance(reject_threshold, int) or isinstance(reject_threshold, bool)
    ):
        raise FormatError("[tool.artghos] 'reject_threshold' must be an integer.")

    return ArtghosConfig(
        bundle_dir=manifest_dir / artghos_conf.get("bundle_dir", "art-packages"),
        trusted_packages=_string_list(artghos_conf, "trusted_packages"),
        reject_threshold=reject_threshold,
        key_file=manifest_dir / key_file if key_file else None,
        exclude=_string_list(artghos_conf, "exclude"),
    )
