"""Pytest fixtures for the entire artghos test suite."""

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
import structlog

from artghos.crypto import SIGNING_KEY_ENV_VAR
from artghos.telemetry import LOG_LEVEL_ENV_VAR

TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef0123"


@pytest.fixture(autouse=True)
def isolated_workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Runs every test from an empty working directory with no signing key in
    the environment, so the default key file and bundle directory resolve
    inside the test's own tmp_path.
    """
    monkeypatch.delenv(SIGNING_KEY_ENV_VAR, raising=False)
    monkeypatch.delenv(LOG_LEVEL_ENV_VAR, raising=False)
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return workdir


@pytest.fixture
def signing_key(monkeypatch: pytest.MonkeyPatch) -> str:
    """Provides a valid signing key through the environment."""
    monkeypatch.setenv(SIGNING_KEY_ENV_VAR, TEST_SIGNING_KEY)
    return TEST_SIGNING_KEY


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[str, dict[str, str | bytes]], Path]:
    """A factory fixture that writes a source tree and returns its root."""

    def _make_tree(name: str, files: dict[str, str | bytes]) -> Path:
        root = tmp_path / "sources" / name
        root.mkdir(parents=True)
        for rel_path, content in files.items():
            target = root / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content)
        return root

    return _make_tree


@pytest.fixture
def demo_source(make_tree: Callable[..., Path]) -> Path:
    """The two-file 'demo' tree."""
    return make_tree(
        "demo",
        {
            "a.txt": "hello",
            "package.json": '{"name":"demo","main":"a.txt"}',
        },
    )


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Undoes any logging configuration installed by a CLI invocation."""
    yield
    structlog.reset_defaults()
