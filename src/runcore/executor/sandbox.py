"""
One-shot execution of a submitted program.

:class:`ExecutionSandbox` resolves a runner from the file extension, writes
the program and its auxiliary files into a private scratch directory,
runs it with a hard wall-clock timeout and returns the aggregated output.
Nothing is streamed; the caller gets a single :class:`ExecutionResult`.

Calls are independent of each other and keep no state between requests.
"""

from __future__ import annotations

import logging
import os
from pathlib import PurePosixPath
from typing import Dict, Iterable, Optional, Tuple

from ..errors import InvalidFilePath
from ..scratch import ScratchRoot, safe_relative_path
from .base import ExecutionResult, run_subprocess
from .runners import LanguageRunnerRegistry


logger = logging.getLogger("runcore.sandbox")


class ExecutionSandbox:
    """Run single programs in per-request scratch directories."""

    def __init__(
        self,
        registry: LanguageRunnerRegistry,
        scratch: ScratchRoot,
        timeout: int = 30,
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        self.registry = registry
        self.scratch = scratch
        self.timeout = timeout
        self.env = env

    def execute(
        self,
        code: str,
        filename: str,
        additional_files: Iterable[Tuple[str, str]] = (),
    ) -> ExecutionResult:
        """Run ``code`` as ``filename`` and return its output.

        Raises :class:`~runcore.errors.LanguageUnavailable` before anything
        is written when the extension has no installed runner,
        :class:`~runcore.errors.InvalidFilePath` for names escaping the
        scratch directory and :class:`~runcore.errors.ScratchFailure` when
        files cannot be written.  The scratch directory is removed in every
        case.
        """
        runner = self.registry.lookup(filename)
        main_name = PurePosixPath(filename.replace("\\", "/")).name
        if not main_name or main_name in (".", ".."):
            raise InvalidFilePath(filename)
        aux = [(str(safe_relative_path(name)), content) for name, content in additional_files]
        for name, _ in aux:
            if name == main_name:
                # Would overwrite the submitted program.
                raise InvalidFilePath(name)

        with self.scratch.allocate() as space:
            space.save_all([(main_name, code), *aux])
            command = runner.command(str(space.path), main_name)
            logger.info(
                "Running %s (%s) in %s with %d auxiliary file(s)",
                main_name,
                runner.name,
                space.path,
                len(aux),
            )
            result = run_subprocess(command, space.path, self.timeout, env=self._child_env())

        result.language = runner.name
        logger.info(
            "Execution finished: language=%s, exit_code=%s, duration_ms=%s, timed_out=%s",
            runner.name,
            result.exit_code,
            result.duration_ms,
            result.timed_out,
        )
        return result

    def _child_env(self) -> Dict[str, str]:
        env = dict(self.env if self.env is not None else os.environ)
        env.setdefault("PYTHONUNBUFFERED", "1")
        return env
