"""Cached access to the desktop client's config file.

The document is read from disk once and then served from memory. Every
mutation runs under one lock as: read the latest cached value, change a deep
copy, write it to disk, and only then make that copy the cached value. A
write that fails leaves the cache as it was.

Edits made to the file by other programs are not noticed until the path
override is set again (which drops the cache).
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
import sys
from contextlib import suppress
from typing import TYPE_CHECKING, Any

import structlog

from fleur.errors import ErrorCode, FleurError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

log = structlog.get_logger()

MCP_SERVERS_KEY = "mcpServers"

ConfigDocument = dict[str, Any]


def default_document() -> ConfigDocument:
    return {MCP_SERVERS_KEY: {}}


def ensure_mcp_servers(document: Any) -> ConfigDocument:
    """Validate the document shape, inserting an empty ``mcpServers`` if absent."""
    if not isinstance(document, dict):
        raise FleurError(ErrorCode.CONFIG_INVALID, "Config file must contain a JSON object")

    servers = document.setdefault(MCP_SERVERS_KEY, {})
    if not isinstance(servers, dict):
        raise FleurError(ErrorCode.CONFIG_INVALID, "Failed to find mcpServers in config")
    return document


class ConfigStore:
    """Read-modify-write store for the host's ``claude_desktop_config.json``."""

    def __init__(self, default_path: Path) -> None:
        self._default_path = default_path
        self._path_override: Path | None = None
        self._cache: ConfigDocument | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path_override or self._default_path

    def set_path_override(self, path: Path | None) -> None:
        """Point the store at another file (tests only). Always drops the cache."""
        self._path_override = path
        self._cache = None

    async def load(self) -> ConfigDocument:
        """Return a private copy of the current document."""
        async with self._lock:
            return copy.deepcopy(await self._load_locked())

    async def save(self, document: ConfigDocument) -> None:
        async with self._lock:
            await self._save_locked(document)

    async def update(self, mutator: Callable[[ConfigDocument], bool]) -> ConfigDocument:
        """Apply ``mutator`` to a copy of the latest document and persist it.

        The mutator returns True when it changed something; otherwise nothing
        is written. Exceptions raised by the mutator leave disk and cache
        untouched. Returns a copy of the resulting document.
        """
        async with self._lock:
            document = copy.deepcopy(await self._load_locked())
            if mutator(document):
                await self._save_locked(document)
            return copy.deepcopy(document)

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    async def _load_locked(self) -> ConfigDocument:
        if self._cache is not None:
            return self._cache

        path = self.path
        document = await asyncio.to_thread(_read_document, path)
        self._cache = ensure_mcp_servers(document)
        log.debug("config_loaded", path=str(path))
        return self._cache

    async def _save_locked(self, document: ConfigDocument) -> None:
        path = self.path
        payload = json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
        try:
            await asyncio.to_thread(_write_atomic, path, payload)
        except OSError as exc:
            log.warning("config_write_failed", path=str(path), error=str(exc))
            raise FleurError(
                ErrorCode.CONFIG_WRITE_FAILED, f"Failed to write config file: {exc}"
            ) from exc

        self._cache = copy.deepcopy(document)
        log.info("config_saved", path=str(path), servers=len(document.get(MCP_SERVERS_KEY, {})))


def _read_document(path: Path) -> Any:
    if not path.exists():
        try:
            _write_atomic(path, json.dumps(default_document(), indent=2).encode("utf-8"))
        except OSError as exc:
            raise FleurError(
                ErrorCode.CONFIG_WRITE_FAILED, f"Failed to create config file: {exc}"
            ) from exc
        log.info("config_created", path=str(path))

    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FleurError(ErrorCode.CONFIG_INVALID, f"Failed to read config file: {exc}") from exc

    try:
        return json.loads(data)
    except ValueError as exc:  # includes UnicodeDecodeError
        raise FleurError(ErrorCode.CONFIG_INVALID, f"Failed to parse config JSON: {exc}") from exc


def _write_atomic(path: Path, data: bytes) -> None:
    """Replace ``path`` with ``data`` so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with tmp_path.open("wb") as file_obj:
            file_obj.write(data)
            file_obj.flush()
            os.fsync(file_obj.fileno())
        os.replace(tmp_path, path)
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)

    # The replace has already happened: a failed directory fsync is logged, not raised.
    try:
        _fsync_directory(path.parent)
    except OSError as exc:
        log.warning("directory_fsync_failed", path=str(path.parent), error=str(exc))


def _fsync_directory(path: Path) -> None:
    if sys.platform == "win32":
        return  # Windows does not support fsync on directory handles
    directory_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(directory_fd)
    finally:
        os.close(directory_fd)
