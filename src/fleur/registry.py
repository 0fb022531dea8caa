"""App registry: one fetch per process, then resolution into launch commands."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from fleur import __version__
from fleur.errors import ErrorCode, FleurError
from fleur.models.registry import AppRegistryEntry, ResolvedAppConfig, RuntimeKind

log = structlog.get_logger()


def build_http_client() -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(30.0),
        headers={"User-Agent": f"fleur/{__version__}"},
    )


class RegistryClient:
    """Fetches the remote app registry and keeps the first good copy.

    There is no TTL and no revalidation. A failed fetch is not cached, so the
    next call tries the network again.
    """

    def __init__(self, http_client: httpx.AsyncClient, url: str) -> None:
        self._client = http_client
        self._url = url
        self._cache: Any | None = None
        self._lock = asyncio.Lock()

    def clear_cache(self) -> None:
        self._cache = None

    async def fetch_registry(self) -> Any:
        """Return the parsed registry JSON, fetching it on first use."""
        async with self._lock:
            if self._cache is not None:
                return copy.deepcopy(self._cache)

            try:
                response = await self._client.get(self._url)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                log.warning("registry_fetch_failed", url=self._url, error=str(exc))
                raise FleurError(
                    ErrorCode.REGISTRY_FETCH_FAILED,
                    f"Failed to fetch app registry: {exc}",
                ) from exc

            try:
                registry = response.json()
            except ValueError as exc:
                log.warning("registry_parse_failed", url=self._url, error=str(exc))
                raise FleurError(
                    ErrorCode.REGISTRY_INVALID_JSON,
                    f"Failed to parse app registry JSON: {exc}",
                ) from exc

            self._cache = registry
            log.info(
                "registry_fetched",
                url=self._url,
                entries=len(registry) if isinstance(registry, list) else None,
            )
            return copy.deepcopy(registry)


def resolve_app_configs(
    registry: Any,
    *,
    npx_shim: str,
    uvx_path: str,
) -> list[tuple[str, ResolvedAppConfig]]:
    """Map every registry entry to the command the host should run.

    ``npx`` apps run through the shim, ``uvx`` apps through the resolved uvx
    binary, and any other runtime string is used verbatim. One malformed entry
    rejects the whole registry.
    """
    if not isinstance(registry, list):
        raise FleurError(ErrorCode.REGISTRY_INVALID_ENTRY, "App registry is not an array")

    configs: list[tuple[str, ResolvedAppConfig]] = []
    for index, raw_entry in enumerate(registry):
        try:
            entry = AppRegistryEntry.model_validate(raw_entry)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first["loc"]) or "entry"
            raise FleurError(
                ErrorCode.REGISTRY_INVALID_ENTRY,
                f"Invalid app registry entry #{index}: {location}: {first['msg']}",
            ) from exc

        launch = entry.config
        if launch.runtime_kind is RuntimeKind.NPX:
            command = npx_shim
        elif launch.runtime_kind is RuntimeKind.UVX:
            command = uvx_path
        else:
            command = launch.runtime

        configs.append(
            (
                entry.name,
                ResolvedAppConfig(mcp_key=launch.mcp_key, command=command, args=list(launch.args)),
            )
        )

    return configs
