"""
Process helpers and result types for one-shot execution.

:func:`run_subprocess` runs a command to completion, enforcing a hard
wall-clock timeout, and returns an :class:`ExecutionResult` with the
aggregated output.  The child starts in its own process group so a
timeout kills every descendant (a compiler driver and the program it
launched, for example) rather than only the direct child.

No container or VM isolation is attempted: programs run with the
privileges of the service.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional


logger = logging.getLogger("runcore.executor")

TIMEOUT_EXIT_CODE = 124


@dataclass
class ExecutionResult:
    """Result of running a program.

    Attributes
    ----------
    stdout: str
        Standard output captured from the execution.
    stderr: str
        Standard error captured from the execution.
    exit_code: int
        Exit status of the process.  ``124`` indicates the wall-clock
        timeout fired; ``0`` is reported when no status was available.
    duration_ms: int
        Wall-clock execution time in milliseconds.
    language: str
        Display name of the runner that executed the program.
    timed_out: bool
        Whether the process was killed by the timeout.
    """

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    language: str = ""
    timed_out: bool = False


def kill_process_group(process: subprocess.Popen, sig: int = signal.SIGKILL) -> None:
    """Signal the process group led by ``process``; ignore already-gone groups."""
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError as exc:
        logger.warning("Unable to signal process group %s: %s", process.pid, exc)
        process.kill()


def run_subprocess(
    args: List[str],
    cwd: Path,
    timeout: int,
    env: Optional[Dict[str, str]] = None,
) -> ExecutionResult:
    """
    Invoke ``args`` directly (no outer shell) with standard input closed
    and capture its output.

    Parameters
    ----------
    args: list[str]
        Command and arguments to execute.
    cwd: Path
        Working directory for the subprocess.
    timeout: int
        Seconds after which the whole process group is force-killed.
    env: dict, optional
        Environment for the child.  Inherits the service's when omitted.

    Returns
    -------
    ExecutionResult
        Contains the process outputs and exit status.  Spawn failures are
        reported as exit code 1 with the reason on stderr.
    """
    start_time = time.perf_counter()
    try:
        process = subprocess.Popen(
            args,
            cwd=str(cwd),
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
    except OSError as exc:
        logger.warning("Failed to spawn %s: %s", args[0], exc)
        duration = int((time.perf_counter() - start_time) * 1000)
        return ExecutionResult("", f"Failed to start process: {exc}", 1, duration)

    timed_out = False

    def kill_proc() -> None:
        nonlocal timed_out
        timed_out = True
        kill_process_group(process)

    # Start timer thread to enforce wall clock timeout
    timer = threading.Timer(timeout, kill_proc)
    timer.start()

    try:
        stdout, stderr = process.communicate()
    finally:
        timer.cancel()
        duration = int((time.perf_counter() - start_time) * 1000)
        # Reap anything the program left running in its group.
        kill_process_group(process)

    exit_code = process.returncode if process.returncode is not None else 0
    if timed_out:
        stderr = (stderr or "") + f"\nExecution timed out after {timeout} seconds."
        exit_code = TIMEOUT_EXIT_CODE
    return ExecutionResult(stdout or "", stderr or "", exit_code, duration, timed_out=timed_out)
