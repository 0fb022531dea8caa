"""Protocol interfaces for swappable components.

AppManager and Environment reference these protocols, not the concrete
implementations. This allows:
- Tests to script subprocess results without spawning anything
- Tests to exercise the app orchestration without a real toolchain
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from fleur.runner import CommandResult


class CommandRunnerProtocol(Protocol):
    """Interface for running external programs and shell scripts."""

    async def run(self, program: str, *args: str) -> CommandResult: ...

    async def run_shell(self, script: str) -> CommandResult: ...


class EnvironmentProtocol(Protocol):
    """Interface for the toolchain bootstrapper used by AppManager."""

    async def ensure_runtime_paths(self) -> tuple[str, str]: ...

    async def ensure_environment(self) -> str: ...
