"""
External process execution with a wall-clock timeout.

Every command runs in its own session so that a timeout can terminate the
whole process group, including children the command forked or detached.
Output is drained by `communicate` while the process runs, so large outputs
cannot fill the pipes and block the child.
"""

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel, ConfigDict

from .config import KILL_GRACE_SECONDS

logger = logging.getLogger(__name__)


class ProcessResult(BaseModel):
    """Outcome of one external command."""

    model_config = ConfigDict(frozen=True)

    returncode: int | None
    stdout: bytes = b""
    stderr: bytes = b""
    timed_out: bool = False
    spawn_error: str | None = None
    elapsed_ms: int = 0

    @property
    def exited(self) -> bool:
        """True if the process ran and exited on its own."""
        return self.spawn_error is None and not self.timed_out and self.returncode is not None


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def run_process(
    command: Sequence[str | Path],
    stdin: bytes | None = None,
    timeout: float | None = None,
    cwd: Path | None = None,
) -> ProcessResult:
    """
    Run a command and capture its output.

    Args:
        command: Program and arguments.
        stdin: Bytes written to standard input; empty input when None.
        timeout: Wall-clock limit in seconds, no limit when None.
        cwd: Working directory of the command.

    Returns:
        ProcessResult. Spawn failures and timeouts are reported in the
        result, never raised.
    """
    argv = [str(part) for part in command]
    logger.debug("Executing: %s", " ".join(argv))
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.debug("Command failed to start: %s (%s)", argv[0], e)
        return ProcessResult(returncode=None, spawn_error=str(e))

    try:
        stdout, stderr = proc.communicate(input=stdin or b"", timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(proc)
        try:
            stdout, stderr = proc.communicate(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            # A descendant outside the group still holds the pipes open
            proc.kill()
            stdout, stderr = b"", b""
            proc.wait()
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Command timed out after %d ms: %s", elapsed_ms, argv[0])
        return ProcessResult(
            returncode=None,
            stdout=stdout or b"",
            stderr=stderr or b"",
            timed_out=True,
            elapsed_ms=elapsed_ms,
        )

    # Reap anything the command left running in its group
    _kill_group(proc)
    elapsed_ms = int((time.monotonic() - start) * 1000)
    return ProcessResult(
        returncode=proc.returncode,
        stdout=stdout,
        stderr=stderr,
        elapsed_ms=elapsed_ms,
    )


def decode_output(data: bytes) -> str:
    """Decode process output so that distinct byte strings stay distinct."""
    return data.decode("utf-8", errors="surrogateescape")


def display_output(data: bytes) -> str:
    """Decode process output for reports."""
    return data.decode("utf-8", errors="replace")
