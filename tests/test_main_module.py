"""Test for running artghos as a module."""

import runpy
from unittest.mock import patch


def test_main_module_entrypoint() -> None:
    """Tests that `python -m artghos` calls the CLI."""
    with patch("artghos.cli.cli") as mock_cli:
        runpy.run_module("artghos", run_name="__main__")
    mock_cli.assert_called_once()
