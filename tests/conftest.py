"""Shared test fixtures for the fleur test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from fleur.config import Settings
from fleur.state import build_state
from fakes import REGISTRY_URL, SAMPLE_REGISTRY, FakeCommandRunner, script_ready_toolchain

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from fleur.state import AppState


@pytest.fixture()
def nvm_dir(tmp_path: Path) -> Path:
    path = tmp_path / ".nvm"
    path.mkdir()
    return path


@pytest.fixture()
def host_config_path(tmp_path: Path) -> Path:
    return tmp_path / "Claude" / "claude_desktop_config.json"


@pytest.fixture()
def shim_path(tmp_path: Path) -> Path:
    return tmp_path / "share" / "fleur" / "bin" / "npx-fleur"


@pytest.fixture()
def settings(nvm_dir: Path, host_config_path: Path, shim_path: Path) -> Settings:
    return Settings(
        registry={"url": REGISTRY_URL},
        host={"config_path": str(host_config_path)},
        toolchain={"nvm_dir": str(nvm_dir), "shim_path": str(shim_path)},
        preload={"enabled": False},
    )


@pytest.fixture()
def runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture()
def ready_runner(runner: FakeCommandRunner, nvm_dir: Path) -> FakeCommandRunner:
    script_ready_toolchain(runner, nvm_dir)
    return runner


@pytest.fixture()
def registry_requests() -> list[httpx.Request]:
    return []


@pytest.fixture()
async def http_client(
    registry_requests: list[httpx.Request],
) -> AsyncIterator[httpx.AsyncClient]:
    def handler(request: httpx.Request) -> httpx.Response:
        registry_requests.append(request)
        if str(request.url) == REGISTRY_URL:
            return httpx.Response(200, json=SAMPLE_REGISTRY)
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


@pytest.fixture()
async def state(
    settings: Settings,
    http_client: httpx.AsyncClient,
    ready_runner: FakeCommandRunner,
) -> AsyncIterator[AppState]:
    """Fully wired AppState on a machine whose toolchains are already installed."""
    app_state = build_state(settings, http_client=http_client, runner=ready_runner, testing=True)
    yield app_state
    await app_state.tasks.cancel_all()
