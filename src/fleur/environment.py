"""Toolchain bootstrap: uv, nvm and a pinned Node.js.

Each toolchain has a probe (``check_*``) and an installer (``install_*``).
Probes treat absence as a normal outcome and return False; installers raise
FleurError. A toolchain's ``installed`` flag only ever goes from False to True
after a successful probe or install, so later calls skip the subprocesses.
Each check-then-install sequence runs under that toolchain's lock.

All flags live on an EnvironmentState owned by one Environment instance.
Tests build their own instance instead of touching process-wide state.
"""

from __future__ import annotations

import asyncio
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from fleur.errors import ErrorCode, FleurError
from fleur.shim import ensure_npx_shim

if TYPE_CHECKING:
    from fleur.config import ToolchainSettings
    from fleur.protocols import CommandRunnerProtocol
    from fleur.runner import CommandResult
    from fleur.tasks import BackgroundTasks

log = structlog.get_logger()

SETUP_STARTED = "Environment setup started"
SETUP_IN_PROGRESS = "Environment setup already in progress"


@dataclass
class EnvironmentState:
    uv_installed: bool = False
    nvm_installed: bool = False
    node_installed: bool = False
    setup_started: bool = False


class Environment:
    """Probes, installs and locates the toolchains MCP apps are launched with."""

    def __init__(
        self,
        runner: CommandRunnerProtocol,
        settings: ToolchainSettings,
        tasks: BackgroundTasks,
        *,
        state: EnvironmentState | None = None,
        testing: bool = False,
    ) -> None:
        self._runner = runner
        self._settings = settings
        self._tasks = tasks
        self.state = state or EnvironmentState()
        self._testing = testing
        # One lock per toolchain and one for the shim: concurrent callers wait
        # for the first install instead of starting a second one.
        self._uv_lock = asyncio.Lock()
        self._nvm_lock = asyncio.Lock()
        self._node_lock = asyncio.Lock()
        self._shim_lock = asyncio.Lock()

    @property
    def node_version(self) -> str:
        return self._settings.node_version

    @property
    def nvm_dir(self) -> Path:
        return Path(self._settings.nvm_dir).expanduser()

    @property
    def shim_path(self) -> Path:
        return Path(self._settings.shim_path).expanduser()

    def reset_for_tests(self) -> None:
        if not self._testing:
            raise RuntimeError("reset_for_tests() is only available on a testing Environment")
        self.state = EnvironmentState()

    # ------------------------------------------------------------------
    # Background bootstrap
    # ------------------------------------------------------------------

    async def ensure_environment(self) -> str:
        """Start the full bootstrap in the background, at most once per instance.

        No await sits between the check and the set, so concurrent callers on
        the event loop cannot both see ``setup_started`` as False.
        """
        if self.state.setup_started:
            return SETUP_IN_PROGRESS
        self.state.setup_started = True

        self._tasks.spawn(self._run_setup(), name="environment_setup")
        log.info("environment_setup_started")
        return SETUP_STARTED

    async def _run_setup(self) -> None:
        try:
            await self.ensure_uv_environment()
        except FleurError as exc:
            log.warning("uv_setup_failed", code=exc.code, error=exc.message)

        try:
            await self.ensure_node_environment()
        except FleurError as exc:
            log.warning("node_setup_failed", code=exc.code, error=exc.message)

        log.info("environment_setup_finished", state=self.state)

    async def ensure_runtime_paths(self) -> tuple[str, str]:
        """Make sure every toolchain is ready; return (npx shim path, uvx path)."""
        try:
            await self.ensure_uv_environment()
        except FleurError as exc:
            raise exc.wrap("Failed to set up UV environment") from exc

        try:
            await self.ensure_node_environment()
        except FleurError as exc:
            raise exc.wrap("Failed to set up Node environment") from exc

        try:
            npx_shim = await self.ensure_shim()
        except FleurError as exc:
            raise exc.wrap("Failed to ensure NPX shim") from exc

        try:
            uvx_path = await self.get_uvx_path()
        except FleurError as exc:
            raise exc.wrap("Failed to get UVX path") from exc

        return npx_shim, uvx_path

    # ------------------------------------------------------------------
    # uv
    # ------------------------------------------------------------------

    async def check_uv_installed(self) -> bool:
        if self.state.uv_installed:
            return True

        if not await self._succeeds("which", "uv"):
            return False

        if not await self._succeeds("uv", "--version"):
            return False

        self.state.uv_installed = True
        log.info("uv_already_installed")
        return True

    async def install_uv(self) -> None:
        if await self.check_uv_installed():
            return

        log.info("uv_install_started", url=self._settings.uv_install_url)
        await self._run_installer(
            f"curl -LsSf {shlex.quote(self._settings.uv_install_url)} | sh",
            tool="uv",
        )
        self.state.uv_installed = True
        log.info("uv_install_complete")

    async def ensure_uv_environment(self) -> str:
        async with self._uv_lock:
            await self.install_uv()
        return "UV environment is ready"

    async def get_uvx_path(self) -> str:
        try:
            result = await self._runner.run("which", "uvx")
        except OSError as exc:
            raise FleurError(ErrorCode.TOOLING_MISSING, f"Failed to get uvx path: {exc}") from exc

        if not result.ok:
            raise FleurError(ErrorCode.TOOLING_MISSING, "uvx not found in PATH")
        return result.stdout.strip()

    # ------------------------------------------------------------------
    # nvm
    # ------------------------------------------------------------------

    def _nvm_prelude(self) -> str:
        """Shell lines that make the ``nvm`` function available."""
        return (
            f"export NVM_DIR={shlex.quote(str(self.nvm_dir))}\n"
            '[ -s "$NVM_DIR/nvm.sh" ] && \\. "$NVM_DIR/nvm.sh"\n'
        )

    async def check_nvm_installed(self) -> bool:
        if self.state.nvm_installed:
            return True

        if not self.nvm_dir.exists():
            return False

        if not await self._shell_succeeds(self._nvm_prelude() + "nvm --version"):
            return False

        self.state.nvm_installed = True
        log.info("nvm_already_installed", nvm_dir=str(self.nvm_dir))
        return True

    async def install_nvm(self) -> None:
        if await self.check_nvm_installed():
            return

        log.info("nvm_install_started", url=self._settings.nvm_install_url)
        # The nvm installer honours NVM_DIR but refuses a directory that does not exist.
        await self._run_installer(
            f"export NVM_DIR={shlex.quote(str(self.nvm_dir))}\n"
            'mkdir -p "$NVM_DIR"\n'
            f"curl -o- {shlex.quote(self._settings.nvm_install_url)} | bash",
            tool="nvm",
        )
        self.state.nvm_installed = True
        log.info("nvm_install_complete")

    # ------------------------------------------------------------------
    # Node.js
    # ------------------------------------------------------------------

    async def check_node_version(self) -> str | None:
        """Return the active ``node --version``, or None when node is absent.

        Marks Node as installed only when the version matches the pinned one.
        """
        if self.state.node_installed:
            return self.node_version

        which = await self._try_run("which", "node")
        if which is None or not which.ok:
            return None

        result = await self._try_run("node", "--version")
        if result is None or not result.ok:
            return None

        version = result.stdout.strip()
        if version == self.node_version:
            self.state.node_installed = True
        return version

    async def check_node_installed(self) -> bool:
        return await self.check_node_version() == self.node_version

    async def install_node(self) -> None:
        """Install the pinned Node version through nvm.

        Fails fast if nvm cannot be sourced instead of attempting a bare install.
        """
        if await self.check_node_installed():
            return

        log.info("node_install_started", version=self.node_version)

        try:
            located = await self._runner.run_shell(self._nvm_prelude() + "command -v nvm")
        except OSError as exc:
            raise FleurError(ErrorCode.INSTALL_FAILED, f"Failed to source nvm: {exc}") from exc

        if not located.ok:
            raise FleurError(ErrorCode.TOOLING_MISSING, "Failed to source nvm")
        if not located.stdout.strip():
            raise FleurError(ErrorCode.TOOLING_MISSING, "nvm not found after sourcing")

        await self._run_installer(
            self._nvm_prelude() + f"nvm install {shlex.quote(self.node_version)}",
            tool=f"Node.js {self.node_version}",
        )
        self.state.node_installed = True
        log.info("node_install_complete", version=self.node_version)

    async def get_nvm_node_paths(self) -> tuple[str, str]:
        """Return absolute (node, npx) paths of the pinned nvm-managed Node."""
        script = (
            self._nvm_prelude()
            + f"nvm use {shlex.quote(self.node_version)} > /dev/null 2>&1\n"
            + "which node\n"
            + "which npx\n"
        )
        try:
            result = await self._runner.run_shell(script)
        except OSError as exc:
            raise FleurError(
                ErrorCode.TOOLING_MISSING, f"Failed to get node paths: {exc}"
            ) from exc

        if not result.ok:
            raise FleurError(ErrorCode.TOOLING_MISSING, "Failed to get node and npx paths")

        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            raise FleurError(ErrorCode.TOOLING_MISSING, "Failed to get node path")
        if len(lines) < 2:
            raise FleurError(ErrorCode.TOOLING_MISSING, "Failed to get npx path")
        node_path, npx_path = lines[0], lines[1]

        if not Path(node_path).is_relative_to(self.nvm_dir / "versions" / "node"):
            raise FleurError(ErrorCode.TOOLING_MISSING, "Node path is not from nvm installation")

        return node_path, npx_path

    async def ensure_node_environment(self) -> str:
        async with self._nvm_lock:
            await self.install_nvm()

        async with self._node_lock:
            # Any other version gets a full install of the pinned one.
            await self.install_node()

        await self.ensure_shim()
        return "Node environment is ready"

    async def ensure_shim(self) -> str:
        async with self._shim_lock:
            return await ensure_npx_shim(self, self.shim_path)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _try_run(self, program: str, *args: str) -> CommandResult | None:
        try:
            return await self._runner.run(program, *args)
        except OSError:
            log.debug("probe_spawn_failed", program=program, exc_info=True)
            return None

    async def _succeeds(self, program: str, *args: str) -> bool:
        result = await self._try_run(program, *args)
        return result is not None and result.ok

    async def _shell_succeeds(self, script: str) -> bool:
        try:
            result = await self._runner.run_shell(script)
        except OSError:
            log.debug("probe_spawn_failed", program="shell", exc_info=True)
            return False
        return result.ok

    async def _run_installer(self, script: str, *, tool: str) -> CommandResult:
        try:
            result = await self._runner.run_shell(script)
        except OSError as exc:
            raise FleurError(ErrorCode.INSTALL_FAILED, f"Failed to install {tool}: {exc}") from exc

        if not result.ok:
            log.warning("install_failed", tool=tool, returncode=result.returncode)
            raise FleurError(
                ErrorCode.INSTALL_FAILED,
                f"{tool} installation failed: {result.stderr.strip()}",
            )
        return result
