"""Subprocess execution.

Every external command (presence probes, installer scripts, npm cache
warming) goes through a CommandRunner so the toolchain logic can be tested
with a scripted fake. Commands run to completion: there is no timeout and no
cancellation once a process has been spawned.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

log = structlog.get_logger()


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs commands with asyncio subprocesses and captures their output.

    Raises ``OSError`` when the program cannot be spawned at all; a non-zero
    exit status is reported through ``CommandResult`` instead.
    """

    def __init__(self, shell: str = "bash") -> None:
        self._shell = shell

    async def run(self, program: str, *args: str) -> CommandResult:
        process = await asyncio.create_subprocess_exec(
            program,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        result = CommandResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        log.debug(
            "command_finished",
            program=program,
            args=list(args),
            returncode=result.returncode,
        )
        return result

    async def run_shell(self, script: str) -> CommandResult:
        """Run ``script`` with ``<shell> -c``. Needed wherever nvm must be sourced."""
        return await self.run(self._shell, "-c", script)
