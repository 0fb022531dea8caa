"""Application state container.

AppState is created once at server startup (inside the FastMCP lifespan context
manager) and injected into every tool handler via the MCP Context object.
Tests build their own AppState with fakes via ``build_state``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fleur.apps import AppManager
from fleur.environment import Environment
from fleur.registry import RegistryClient
from fleur.store import ConfigStore
from fleur.tasks import BackgroundTasks

if TYPE_CHECKING:
    import httpx

    from fleur.config import Settings
    from fleur.protocols import CommandRunnerProtocol


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    http_client: httpx.AsyncClient
    tasks: BackgroundTasks
    environment: Environment
    registry: RegistryClient
    store: ConfigStore
    apps: AppManager


def build_state(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient,
    runner: CommandRunnerProtocol,
    testing: bool = False,
) -> AppState:
    """Wire every component from ``settings``."""
    tasks = BackgroundTasks()
    environment = Environment(runner, settings.toolchain, tasks, testing=testing)
    registry = RegistryClient(http_client, settings.registry.url)
    store = ConfigStore(settings.host.resolved_config_path())
    apps = AppManager(
        environment=environment,
        registry=registry,
        store=store,
        runner=runner,
        tasks=tasks,
        npm_command=settings.toolchain.npm_command,
        preload_packages=settings.preload.packages,
    )
    return AppState(
        settings=settings,
        http_client=http_client,
        tasks=tasks,
        environment=environment,
        registry=registry,
        store=store,
        apps=apps,
    )
