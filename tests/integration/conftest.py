"""Integration test fixtures."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Baseline env dict for subprocess-based MCP integration tests.

    Points the host config and shim into an isolated tmp directory, disables
    startup preloading, and aims the registry at a closed local port so no
    test ever reaches the network or the developer's real desktop config.
    """
    env = os.environ.copy()
    env["FLEUR__HOST__CONFIG_PATH"] = str(tmp_path / "Claude" / "claude_desktop_config.json")
    env["FLEUR__TOOLCHAIN__SHIM_PATH"] = str(tmp_path / "bin" / "npx-fleur")
    env["FLEUR__TOOLCHAIN__NVM_DIR"] = str(tmp_path / ".nvm")
    env["FLEUR__REGISTRY__URL"] = "http://127.0.0.1:9/apps.json"
    env["FLEUR__PRELOAD__ENABLED"] = "false"
    env["FLEUR__PRELOAD__PACKAGES"] = json.dumps([])
    return env
