"""Subprocess execution shared by the shell, test, and lint tools.

Commands run without a shell, as an argv list, in their own process
group so that a timeout or a cancelled run kills the whole tree.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path

from codeloop.tool.errors import ErrorCode, StandardizedToolError
from codeloop.tool.truncation import sanitize_output, strip_ansi, truncate_output

logger = logging.getLogger(__name__)

MAX_TIMEOUT_SECONDS = 3600
OUTPUT_MAX_LINES = 500
OUTPUT_MAX_BYTES = 32 * 1024


@dataclass(frozen=True)
class ProcessOutcome:
    """Exit status and combined stdout/stderr of a finished command."""

    exit_code: int
    output: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0


async def run_process(
    argv: list[str],
    cwd: Path,
    timeout: float,
) -> ProcessOutcome:
    """Run ``argv`` in ``cwd``, bounded by ``timeout`` seconds.

    Raises:
        StandardizedToolError: COMMAND_NOT_FOUND when the executable is missing,
            PERMISSION_DENIED when it cannot be executed.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd),
            start_new_session=True,
            env={**os.environ, "TERM": "dumb", "NO_COLOR": "1"},
        )
    except FileNotFoundError:
        raise StandardizedToolError(
            ErrorCode.COMMAND_NOT_FOUND,
            f"Command not found: {argv[0]}",
            "Check that the program is installed and spelled correctly",
        ).with_detail("command", argv[0])
    except PermissionError:
        raise StandardizedToolError(
            ErrorCode.PERMISSION_DENIED,
            f"Command is not executable: {argv[0]}",
            "Check the file permissions of the program",
        ).with_detail("command", argv[0])

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill_group(process)
        await process.wait()
        logger.info("Command timed out after %ss: %s", timeout, argv[0])
        return ProcessOutcome(exit_code=-1, output="", timed_out=True)
    except asyncio.CancelledError:
        _kill_group(process)
        raise

    output = stdout.decode("utf-8", errors="replace") if stdout else ""
    output = sanitize_output(strip_ansi(output))
    output = truncate_output(output, max_lines=OUTPUT_MAX_LINES, max_bytes=OUTPUT_MAX_BYTES)
    return ProcessOutcome(exit_code=process.returncode or 0, output=output)


def _kill_group(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except ProcessLookupError:
        pass
