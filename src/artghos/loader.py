"""
Dynamic loading of bundle entry points into the running process.

A `LoaderContext` owns the process-wide module cache and the set of extracted
workspaces. Workspaces are cleaned up lazily: they stay on disk until the
context is closed (explicitly, via `with`, or by the `atexit` hook registered
on first use) because loaded modules may read sibling files after import.
"""

import atexit
from collections.abc import Awaitable, Callable, Iterable, Mapping
import importlib.util
import inspect
from pathlib import Path
import re
import shutil
import sys
import tempfile
from types import ModuleType
from typing import Any, Self
import uuid

from attrs import define

from .config import ArtghosConfig
from .crypto import SigningKey
from .exceptions import FileSystemError, FormatError, ModuleResolutionError
from .models import BUNDLE_SUFFIX, MANIFEST_FILE_NAME, BundleManifest
from .packaging.codec import normalize_entry_path
from .packaging.extractor import BundleExtractor
from .telemetry import logger

DEFAULT_BUNDLE_DIR = Path("art-packages")
WORKSPACE_DIR_NAME = ".artghos-workspaces"
ASYNC_SETUP_HOOK = "setup"

_UNSAFE_MODULE_CHARS = re.compile(r"\W")


def unwrap_default(value: Any) -> Any:
    """Returns the value exported under 'default', if the loaded value has one."""
    if isinstance(value, Mapping):
        inner = value.get("default")
        return value if inner is None else inner
    if isinstance(value, ModuleType):
        inner = getattr(value, "default", None)
        return value if inner is None else inner
    return value


def _module_locations(module: ModuleType) -> list[str]:
    spec = getattr(module, "__spec__", None)
    locations = [getattr(module, "__file__", None), getattr(spec, "origin", None)]
    locations.extend(getattr(module, "__path__", None) or ())
    return [loc for loc in locations if isinstance(loc, str)]


def _evict_workspace_modules(workspace: Path, before: set[str], keep: str) -> None:
    """
    Drops the sibling modules an entry point imported from its workspace, so a
    later bundle importing the same plain name gets its own copy. The entry
    module keeps its references to them.
    """
    root = workspace.resolve()
    for name in set(sys.modules) - before:
        if name == keep:
            continue
        module = sys.modules.get(name)
        if module is None:
            continue
        if any(Path(loc).resolve().is_relative_to(root) for loc in _module_locations(module)):
            del sys.modules[name]
            logger.debug("Bundle-local module evicted", module=name)


@define(frozen=True, slots=True)
class SynchronousLoad:
    handle: Any


@define(frozen=True, slots=True)
class AsynchronousLoad:
    """A bundle whose entry point must be awaited before it yields a handle."""

    context: "LoaderContext"
    bundle_path: Path
    module: ModuleType
    setup: Callable[[], Awaitable[Any]]

    async def resolve(self) -> Any:
        if self.bundle_path in self.context.cache:
            return self.context.cache[self.bundle_path]
        try:
            value = await self.setup()
        except Exception as e:
            logger.warning(
                "Asynchronous load failed, falling back to the synchronous module",
                path=str(self.bundle_path),
                error=repr(e),
            )
            value = self.module
        handle = unwrap_default(value)
        self.context.cache[self.bundle_path] = handle
        self.context.pending.pop(self.bundle_path, None)
        return handle


LoadResult = SynchronousLoad | AsynchronousLoad


class LoaderContext:
    def __init__(
        self,
        bundle_dir: Path | str = DEFAULT_BUNDLE_DIR,
        workspace_root: Path | str | None = None,
        *,
        trusted_packages: Iterable[str] = (),
        force_unpack: bool = False,
        accept_invalid_signature: bool = False,
        reject_threshold: int | None = None,
        key_file: Path | None = None,
        signing_key: SigningKey | bytes | str | None = None,
        register_atexit: bool = True,
    ) -> None:
        self.bundle_dir = Path(bundle_dir)
        self.workspace_root = (
            Path(workspace_root) if workspace_root else self.bundle_dir / WORKSPACE_DIR_NAME
        )
        self.extractor = BundleExtractor(
            trusted_packages=trusted_packages,
            force_unpack=force_unpack,
            accept_invalid_signature=accept_invalid_signature,
            reject_threshold=reject_threshold,
            key_file=key_file,
            signing_key=signing_key,
        )
        self.register_atexit = register_atexit
        self.cache: dict[Path, Any] = {}
        # Asynchronous loads extracted and imported but not yet awaited.
        self.pending: dict[Path, AsynchronousLoad] = {}
        self.workspaces: set[Path] = set()
        self._shutdown_hook_registered = False

    @classmethod
    def from_config(cls, config: ArtghosConfig, **overrides: Any) -> Self:
        options: dict[str, Any] = {
            "bundle_dir": config.bundle_dir,
            "trusted_packages": config.trusted_packages,
            "reject_threshold": config.reject_threshold,
            "key_file": config.key_file,
        }
        options.update(overrides)
        return cls(**options)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def resolve_path(self, name: str | Path) -> Path:
        """Bare names resolve to `<bundle_dir>/<name>.art`."""
        text = str(name)
        explicit = (
            text.endswith(BUNDLE_SUFFIX)
            or text.startswith(("./", "../", ".\\", "..\\"))
            or Path(text).is_absolute()
        )
        path = Path(text) if explicit else self.bundle_dir / f"{text}{BUNDLE_SUFFIX}"
        return path.resolve()

    def load(self, name: str | Path) -> LoadResult:
        bundle_path = self.resolve_path(name)
        if bundle_path in self.cache:
            logger.debug("Bundle cache hit", path=str(bundle_path))
            return SynchronousLoad(self.cache[bundle_path])
        if bundle_path in self.pending:
            logger.debug("Pending asynchronous load reused", path=str(bundle_path))
            return self.pending[bundle_path]
        if not bundle_path.is_file():
            raise FileSystemError("Bundle not found", bundle_path)

        workspace = self._create_workspace(bundle_path)
        try:
            self.extractor.extract(bundle_path, workspace)
            manifest = self._read_manifest(workspace)
            entry_path = self._entry_path(workspace, manifest)
            module = self._import_entry(workspace, entry_path, manifest.name)
            result = self._select_variant(bundle_path, module, manifest)
        except Exception:
            shutil.rmtree(workspace, ignore_errors=True)
            raise

        self.workspaces.add(workspace)
        self._ensure_shutdown_hook()
        if isinstance(result, SynchronousLoad):
            self.cache[bundle_path] = result.handle
        else:
            self.pending[bundle_path] = result
        logger.info(
            "Bundle loaded",
            path=str(bundle_path),
            package=manifest.name,
            variant="async" if isinstance(result, AsynchronousLoad) else "sync",
        )
        return result

    def require(self, name: str | Path) -> Any:
        """Loads a synchronous bundle and returns its handle."""
        result = self.load(name)
        if isinstance(result, AsynchronousLoad):
            raise ModuleResolutionError(
                f"Bundle '{name}' loads asynchronously; await load_async() instead."
            )
        return result.handle

    async def load_async(self, name: str | Path) -> Any:
        result = self.load(name)
        if isinstance(result, AsynchronousLoad):
            return await result.resolve()
        return result.handle

    def close(self) -> None:
        """Removes every workspace this context extracted."""
        for workspace in sorted(self.workspaces):
            shutil.rmtree(workspace, ignore_errors=True)
            logger.debug("Workspace removed", path=str(workspace))
        self.workspaces.clear()
        self.pending.clear()

    def _ensure_shutdown_hook(self) -> None:
        if self.register_atexit and not self._shutdown_hook_registered:
            atexit.register(self.close)
            self._shutdown_hook_registered = True

    def _create_workspace(self, bundle_path: Path) -> Path:
        self.workspace_root.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix=f"{bundle_path.stem}-", dir=self.workspace_root))
        logger.debug("Workspace created", path=str(workspace))
        return workspace

    def _read_manifest(self, workspace: Path) -> BundleManifest:
        manifest_path = workspace / MANIFEST_FILE_NAME
        if not manifest_path.is_file():
            raise FileSystemError("Bundle has no manifest", manifest_path)
        return BundleManifest.from_bytes(manifest_path.read_bytes())

    def _entry_path(self, workspace: Path, manifest: BundleManifest) -> Path:
        try:
            rel_path = normalize_entry_path(manifest.main)
        except FormatError as e:
            raise FileSystemError("Entry point escapes the workspace", manifest.main) from e

        entry = workspace / rel_path
        for candidate in (entry, entry.with_name(f"{entry.name}.py"), entry / "__init__.py"):
            if candidate.is_file():
                return candidate
        raise FileSystemError("Entry point not found", entry)

    def _import_entry(self, workspace: Path, entry_path: Path, package_name: str) -> ModuleType:
        module_name = (
            f"_artghos_bundle_{_UNSAFE_MODULE_CHARS.sub('_', package_name)}_{uuid.uuid4().hex[:8]}"
        )
        search_locations = [str(entry_path.parent)] if entry_path.name == "__init__.py" else None
        spec = importlib.util.spec_from_file_location(
            module_name, entry_path, submodule_search_locations=search_locations
        )
        if spec is None or spec.loader is None:
            raise ModuleResolutionError(
                f"Entry point '{entry_path.name}' is not an importable Python module."
            )

        module = importlib.util.module_from_spec(spec)
        before = set(sys.modules)
        sys.modules[module_name] = module
        workspace_str = str(workspace)
        sys.path.insert(0, workspace_str)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise ModuleResolutionError(
                f"Failed to load entry point '{entry_path.name}': {e}"
            ) from e
        finally:
            sys.path.remove(workspace_str)
            _evict_workspace_modules(workspace, before, keep=module_name)
        return module

    def _select_variant(
        self, bundle_path: Path, module: ModuleType, manifest: BundleManifest
    ) -> LoadResult:
        if not manifest.is_async:
            return SynchronousLoad(unwrap_default(module))

        setup = getattr(module, ASYNC_SETUP_HOOK, None)
        if not inspect.iscoroutinefunction(setup):
            logger.warning(
                f"Bundle declares an asynchronous entry point without an async "
                f"{ASYNC_SETUP_HOOK}(); falling back to the synchronous module",
                path=str(bundle_path),
            )
            return SynchronousLoad(unwrap_default(module))
        return AsynchronousLoad(
            context=self, bundle_path=bundle_path, module=module, setup=setup
        )


_default_context: LoaderContext | None = None


def default_context() -> LoaderContext:
    global _default_context
    if _default_context is None:
        _default_context = LoaderContext()
    return _default_context


def load(name: str | Path) -> LoadResult:
    return default_context().load(name)


def require(name: str | Path) -> Any:
    return default_context().require(name)


async def load_async(name: str | Path) -> Any:
    return await default_context().load_async(name)
