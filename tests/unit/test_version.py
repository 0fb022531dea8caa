"""Unit tests for the fleur package version."""

from __future__ import annotations

import importlib.metadata
import importlib.util
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import pytest

import fleur


def test_version_comes_from_installed_metadata() -> None:
    try:
        expected = version("fleur")
    except PackageNotFoundError:
        expected = "0.0.0+unknown"

    assert fleur.__version__ == expected


def test_source_tree_without_metadata_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    def _not_installed(_name: str) -> str:
        raise PackageNotFoundError

    monkeypatch.setattr(importlib.metadata, "version", _not_installed)

    init_path = Path(__file__).resolve().parents[2] / "src" / "fleur" / "__init__.py"
    spec = importlib.util.spec_from_file_location("fleur_version_probe", init_path)
    assert spec is not None
    assert spec.loader is not None

    module = importlib.util.module_from_spec(spec)
    with pytest.warns(RuntimeWarning, match="Package metadata for 'fleur' not found"):
        spec.loader.exec_module(module)

    assert module.__version__ == "0.0.0+unknown"
