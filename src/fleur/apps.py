"""Install, uninstall and configure MCP apps in the desktop client config.

App names come from the remote registry. A name the registry does not know
is not an error for install, uninstall or is_installed: those report that
there is nothing to do, which keeps them safe to call speculatively.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from fleur.errors import ErrorCode, FleurError
from fleur.models.host import AppStatuses, ServerEntry
from fleur.registry import resolve_app_configs
from fleur.store import MCP_SERVERS_KEY

if TYPE_CHECKING:
    from fleur.models.registry import ResolvedAppConfig
    from fleur.protocols import CommandRunnerProtocol, EnvironmentProtocol
    from fleur.registry import RegistryClient
    from fleur.store import ConfigDocument, ConfigStore
    from fleur.tasks import BackgroundTasks

log = structlog.get_logger()


class AppManager:
    """Composes toolchains, registry and config store into app operations."""

    def __init__(
        self,
        *,
        environment: EnvironmentProtocol,
        registry: RegistryClient,
        store: ConfigStore,
        runner: CommandRunnerProtocol,
        tasks: BackgroundTasks,
        npm_command: str = "npm",
        preload_packages: list[str] | None = None,
    ) -> None:
        self._environment = environment
        self._registry = registry
        self._store = store
        self._runner = runner
        self._tasks = tasks
        self._npm_command = npm_command
        self._preload_packages = list(preload_packages or [])

    # ------------------------------------------------------------------
    # Registry resolution
    # ------------------------------------------------------------------

    async def get_app_configs(self) -> list[tuple[str, ResolvedAppConfig]]:
        """Resolve every registry app against freshly ensured toolchain paths."""
        npx_shim, uvx_path = await self._environment.ensure_runtime_paths()
        registry = await self._registry.fetch_registry()
        return resolve_app_configs(registry, npx_shim=npx_shim, uvx_path=uvx_path)

    async def _find_app(self, app_name: str) -> ResolvedAppConfig | None:
        for name, config in await self.get_app_configs():
            if name == app_name:
                return config
        return None

    async def get_app_registry(self) -> Any:
        log.info("registry_requested")
        try:
            registry = await self._registry.fetch_registry()
        except FleurError as exc:
            log.error("registry_request_failed", code=exc.code, error=exc.message)
            raise
        log.info("registry_request_complete")
        return registry

    # ------------------------------------------------------------------
    # Install / uninstall
    # ------------------------------------------------------------------

    async def install(self, app_name: str, env_vars: Mapping[str, str] | None = None) -> str:
        app_log = log.bind(app=app_name)
        app_log.info("app_install_requested")

        config = await self._find_app(app_name)
        if config is None:
            app_log.info("app_not_in_registry")
            return f"No configuration available for {app_name}"

        try:
            entry = ServerEntry(
                command=config.command,
                args=config.args,
                env=dict(env_vars) if env_vars is not None else None,
            )
        except (ValidationError, TypeError, ValueError) as exc:
            raise FleurError(ErrorCode.INVALID_INPUT, f"Invalid env_vars: {exc}") from exc

        def add_server(document: ConfigDocument) -> bool:
            document[MCP_SERVERS_KEY][config.mcp_key] = entry.to_json()
            return True

        await self._store.update(add_server)
        app_log.info("app_installed", mcp_key=config.mcp_key, command=config.command)

        if "npx" in Path(config.command).name and len(config.args) > 1:
            package = config.args[1]
            self._tasks.spawn(self._warm_npm_cache(package), name=f"npm_cache_add:{package}")

        return f"Added {config.mcp_key} configuration for {app_name}"

    async def uninstall(self, app_name: str) -> str:
        app_log = log.bind(app=app_name)
        app_log.info("app_uninstall_requested")

        config = await self._find_app(app_name)
        if config is None:
            app_log.info("app_not_in_registry")
            return f"No configuration available for {app_name}"

        removed = False

        def remove_server(document: ConfigDocument) -> bool:
            nonlocal removed
            servers = document[MCP_SERVERS_KEY]
            removed = config.mcp_key in servers
            if removed:
                del servers[config.mcp_key]
            return removed

        await self._store.update(remove_server)
        if not removed:
            return f"Configuration for {app_name} was not found"

        app_log.info("app_uninstalled", mcp_key=config.mcp_key)
        return f"Removed {config.mcp_key} configuration for {app_name}"

    async def is_installed(self, app_name: str) -> bool:
        config = await self._find_app(app_name)
        if config is None:
            return False
        document = await self._store.load()
        return config.mcp_key in document[MCP_SERVERS_KEY]

    # ------------------------------------------------------------------
    # Environment variables
    # ------------------------------------------------------------------

    async def save_app_env(self, app_name: str, env_values: Any) -> str:
        """Merge ``env_values`` into the installed app's ``env`` object."""
        log.info("app_env_save_requested", app=app_name)

        if not isinstance(env_values, Mapping):
            raise FleurError(ErrorCode.INVALID_INPUT, "Invalid env_values format")
        if not all(isinstance(k, str) and isinstance(v, str) for k, v in env_values.items()):
            raise FleurError(ErrorCode.INVALID_INPUT, "Invalid env_values format")

        config = await self._require_app(app_name)

        def merge_env(document: ConfigDocument) -> bool:
            server = document[MCP_SERVERS_KEY].get(config.mcp_key)
            if not isinstance(server, dict):
                raise FleurError(
                    ErrorCode.APP_NOT_INSTALLED, f"App '{app_name}' is not installed"
                )
            env = server.setdefault("env", {})
            if not isinstance(env, dict):
                raise FleurError(
                    ErrorCode.CONFIG_INVALID, f"env of app '{app_name}' is not a JSON object"
                )
            env.update(env_values)
            return True

        await self._store.update(merge_env)
        return f"Saved ENV values for app '{app_name}'"

    async def get_app_env(self, app_name: str) -> dict[str, Any]:
        log.info("app_env_requested", app=app_name)
        config = await self._require_app(app_name)

        document = await self._store.load()
        server = document[MCP_SERVERS_KEY].get(config.mcp_key)
        if not isinstance(server, dict):
            raise FleurError(ErrorCode.APP_NOT_INSTALLED, f"App '{app_name}' is not installed")

        env = server.get("env")
        return env if isinstance(env, dict) else {}

    async def _require_app(self, app_name: str) -> ResolvedAppConfig:
        config = await self._find_app(app_name)
        if config is None:
            raise FleurError(
                ErrorCode.APP_NOT_FOUND, f"No configuration available for '{app_name}'"
            )
        return config

    # ------------------------------------------------------------------
    # Status and environment
    # ------------------------------------------------------------------

    async def get_app_statuses(self) -> dict[str, dict[str, bool]]:
        document = await self._store.load()
        servers = document[MCP_SERVERS_KEY]

        statuses = AppStatuses()
        for name, config in await self.get_app_configs():
            statuses.installed[name] = config.mcp_key in servers
            statuses.configured[name] = bool(config.command)
        return statuses.model_dump()

    async def ensure_environment(self) -> str:
        return await self._environment.ensure_environment()

    def preload_dependencies(self) -> None:
        """Warm the npm cache for the default packages in the background."""
        if self._preload_packages:
            self._tasks.spawn(self._preload(list(self._preload_packages)), name="npm_preload")

    async def _preload(self, packages: list[str]) -> None:
        for package in packages:
            await self._warm_npm_cache(package)

    async def _warm_npm_cache(self, package: str) -> None:
        """Best effort: any failure is logged at debug level and dropped."""
        try:
            result = await self._runner.run(self._npm_command, "cache", "add", package)
        except OSError as exc:
            log.debug("npm_cache_warm_failed", package=package, error=str(exc))
            return
        if result.ok:
            log.debug("npm_cache_warmed", package=package)
        else:
            log.debug("npm_cache_warm_failed", package=package, returncode=result.returncode)
