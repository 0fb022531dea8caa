"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Register the app-management tools the host shell calls
- Start the stdio transport
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

from fleur import __version__
from fleur.config import Settings
from fleur.errors import FleurError
from fleur.registry import build_http_client
from fleur.runner import CommandRunner
from fleur.state import AppState, build_state

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(default=str),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout is reserved for the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info(
        "server_starting",
        version=__version__,
        host_config=str(settings.host.resolved_config_path()),
    )

    http_client = build_http_client()
    state = build_state(settings, http_client=http_client, runner=CommandRunner())

    if settings.preload.enabled:
        state.apps.preload_dependencies()

    log.info("server_started", version=__version__)

    try:
        yield state
    finally:
        # Detached work is not joined: whatever is still running is dropped.
        await state.tasks.cancel_all()
        await http_client.aclose()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("fleur", lifespan=lifespan)
# FastMCP doesn't expose a version kwarg, so set it on the underlying Server
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: FleurError) -> CallToolResult:
    """Convert a FleurError to an MCP error result carrying just its message."""
    return CallToolResult(
        content=[TextContent(type="text", text=error.message)],
        isError=True,
    )


def _state(ctx: Context) -> AppState:
    return ctx.request_context.lifespan_context


async def _call(tool: str, operation: Awaitable[Any]) -> object:
    try:
        return await operation
    except FleurError as exc:
        log.warning("tool_error", tool=tool, code=exc.code, message=exc.message)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool=tool, exc_info=True)
        raise


@mcp.tool()
async def install(
    app_name: str,
    ctx: Context,
    env_vars: dict[str, str] | None = None,
) -> object:
    """Add an app's MCP server entry to the desktop client config."""
    return await _call("install", _state(ctx).apps.install(app_name, env_vars))


@mcp.tool()
async def uninstall(app_name: str, ctx: Context) -> object:
    """Remove an app's MCP server entry from the desktop client config."""
    return await _call("uninstall", _state(ctx).apps.uninstall(app_name))


@mcp.tool()
async def is_installed(app_name: str, ctx: Context) -> object:
    """Report whether an app currently has an MCP server entry."""
    return await _call("is_installed", _state(ctx).apps.is_installed(app_name))


@mcp.tool()
async def get_app_statuses(ctx: Context) -> object:
    """Report installed and configured flags for every registry app."""
    return await _call("get_app_statuses", _state(ctx).apps.get_app_statuses())


@mcp.tool()
async def save_app_env(app_name: str, env_values: dict[str, str], ctx: Context) -> object:
    """Merge environment variables into an installed app's entry."""
    return await _call("save_app_env", _state(ctx).apps.save_app_env(app_name, env_values))


@mcp.tool()
async def get_app_env(app_name: str, ctx: Context) -> object:
    """Return the environment variables stored for an installed app."""
    return await _call("get_app_env", _state(ctx).apps.get_app_env(app_name))


@mcp.tool()
async def get_app_registry(ctx: Context) -> object:
    """Return the raw app registry."""
    return await _call("get_app_registry", _state(ctx).apps.get_app_registry())


@mcp.tool()
async def ensure_environment(ctx: Context) -> object:
    """Start installing uv, nvm and Node in the background if not done yet."""
    return await _call("ensure_environment", _state(ctx).apps.ensure_environment())


@mcp.tool()
async def preload_dependencies(ctx: Context) -> object:
    """Warm the npm cache for the default app packages in the background."""
    _state(ctx).apps.preload_dependencies()
    return "Preloading dependencies"


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
