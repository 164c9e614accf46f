"""External process execution.

The download, extract and build stages each shell out to one program. They
receive a :class:`CommandRunner` rather than spawning processes themselves,
so tests can swap in a fake without touching pipeline logic.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from channel_proxy.logging import get_logger

log = get_logger("channel_proxy.commands")

# How much of a failing command's stderr ends up in the log
_STDERR_LOG_LIMIT = 500


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of a finished command."""

    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    """Runs a program to completion.

    Raises ``OSError`` when the program cannot be launched at all.
    """

    async def run(self, argv: Sequence[str]) -> CommandResult: ...


class SubprocessRunner:
    """Runs commands with :func:`asyncio.create_subprocess_exec`."""

    async def run(self, argv: Sequence[str]) -> CommandResult:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        returncode = proc.returncode if proc.returncode is not None else -1

        if returncode != 0:
            log.warning(
                "command_failed",
                command=argv[0],
                returncode=returncode,
                stderr=stderr.decode(errors="replace")[:_STDERR_LOG_LIMIT],
            )
        return CommandResult(returncode=returncode, stdout=stdout, stderr=stderr)
