"""Stable ``npx`` entry point for the desktop client config.

Config entries point at the shim rather than at nvm's versioned npx, so an
upgraded Node install never leaves the host with a dead path.
"""

from __future__ import annotations

import os
import stat
from contextlib import suppress
from typing import TYPE_CHECKING

import structlog

from fleur.errors import ErrorCode, FleurError

if TYPE_CHECKING:
    from pathlib import Path

    from fleur.environment import Environment

log = structlog.get_logger()

_SHIM_TEMPLATE = """#!/bin/sh
# NPX shim for Fleur

NODE="{node_path}"
NPX="{npx_path}"

export PATH="$(dirname "$NODE"):$PATH"

exec "$NPX" "$@"
"""


def render_shim(node_path: str, npx_path: str) -> str:
    return _SHIM_TEMPLATE.format(node_path=node_path, npx_path=npx_path)


async def ensure_npx_shim(environment: Environment, shim_path: Path) -> str:
    """Return the shim path, writing the shim first if it does not exist yet.

    An existing file is trusted as-is; its contents are not re-validated.
    """
    if shim_path.exists():
        return str(shim_path)

    node_path, npx_path = await environment.get_nvm_node_paths()

    try:
        shim_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FleurError(
            ErrorCode.SHIM_FAILED, f"Failed to create shim directory: {exc}"
        ) from exc

    # Written under a temporary name and renamed into place once executable,
    # so a failed attempt never leaves a shim that the exists() check trusts.
    tmp_path = shim_path.with_name(shim_path.name + ".tmp")
    try:
        try:
            tmp_path.write_text(render_shim(node_path, npx_path), encoding="utf-8")
        except OSError as exc:
            raise FleurError(
                ErrorCode.SHIM_FAILED, f"Failed to write shim script: {exc}"
            ) from exc

        try:
            mode = tmp_path.stat().st_mode
            tmp_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            os.replace(tmp_path, shim_path)
        except OSError as exc:
            raise FleurError(
                ErrorCode.SHIM_FAILED, f"Failed to make shim executable: {exc}"
            ) from exc
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)

    log.info("npx_shim_written", path=str(shim_path), node=node_path, npx=npx_path)
    return str(shim_path)
