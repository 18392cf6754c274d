"""
Async subprocess helper shared by the transcoder and the command engine.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


async def run_process(argv: Sequence[str], timeout: float | None = None) -> ProcessResult:
    """
    Run a command to completion and capture its output.

    Launch failures (missing file, not executable) surface as OSError before
    anything runs. On timeout or cancellation the child is killed and reaped
    before the exception propagates.

    Raises:
        OSError: The executable could not be launched.
        asyncio.TimeoutError: The command outlived `timeout` seconds.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        raise

    return ProcessResult(returncode=proc.returncode, stdout=stdout, stderr=stderr)
