"""Integration tests for the MCP tool functions in fleur.server.

Each tool is called directly with a minimal context object carrying a fully
wired AppState, so the whole path from tool to config file is exercised.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest
from mcp.types import CallToolResult

from fleur import server

if TYPE_CHECKING:
    from pathlib import Path

    from fleur.state import AppState


def _ctx(state: AppState) -> SimpleNamespace:
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context=state))


def _error_text(result: object) -> str:
    assert isinstance(result, CallToolResult)
    assert result.isError is True
    return result.content[0].text


async def test_install_then_query(state: AppState, host_config_path: Path) -> None:
    ctx = _ctx(state)

    assert await server.install("Time", ctx, {"TZ": "UTC"}) == "Added time configuration for Time"
    assert await server.is_installed("Time", ctx) is True
    assert await server.get_app_env("Time", ctx) == {"TZ": "UTC"}

    document = json.loads(host_config_path.read_text(encoding="utf-8"))
    assert document["mcpServers"]["time"]["env"] == {"TZ": "UTC"}


async def test_save_app_env_and_uninstall(state: AppState) -> None:
    ctx = _ctx(state)
    await server.install("Time", ctx)

    saved = await server.save_app_env("Time", {"TZ": "UTC"}, ctx)
    removed = await server.uninstall("Time", ctx)

    assert saved == "Saved ENV values for app 'Time'"
    assert removed == "Removed time configuration for Time"


async def test_get_app_statuses(state: AppState) -> None:
    statuses = await server.get_app_statuses(_ctx(state))

    assert statuses["installed"] == {
        "Browser": False,
        "Time": False,
        "Fetch": False,
        "Sandbox": False,
    }


async def test_get_app_registry(state: AppState) -> None:
    registry = await server.get_app_registry(_ctx(state))

    assert [entry["name"] for entry in registry] == ["Browser", "Time", "Fetch", "Sandbox"]


async def test_ensure_environment(state: AppState) -> None:
    ctx = _ctx(state)

    assert await server.ensure_environment(ctx) == "Environment setup started"
    assert await server.ensure_environment(ctx) == "Environment setup already in progress"
    await state.tasks.join()


async def test_preload_dependencies(state: AppState) -> None:
    assert await server.preload_dependencies(_ctx(state)) == "Preloading dependencies"
    await state.tasks.join()


async def test_error_becomes_plain_message_result(state: AppState) -> None:
    result = await server.get_app_env("Time", _ctx(state))

    assert _error_text(result) == "App 'Time' is not installed"


async def test_unknown_app_env_error(state: AppState) -> None:
    result = await server.save_app_env("Nope", {"A": "1"}, _ctx(state))

    assert _error_text(result) == "No configuration available for 'Nope'"


async def test_unexpected_exception_propagates(
    state: AppState, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(state.apps, "install", AsyncMock(side_effect=RuntimeError("boom")))

    with pytest.raises(RuntimeError, match="boom"):
        await server.install("Time", _ctx(state))
