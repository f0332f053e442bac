"""
One-shot execution backends.

The sandbox resolves a language runner from the submitted file's
extension, writes the program into a private scratch directory and runs
it to completion under a wall-clock timeout.  Additional languages are
added by extending the runner table in ``runners.py``.
"""

from .base import TIMEOUT_EXIT_CODE, ExecutionResult, run_subprocess
from .runners import DEFAULT_RUNNERS, LanguageRunner, LanguageRunnerRegistry
from .sandbox import ExecutionSandbox

__all__ = [
    "TIMEOUT_EXIT_CODE",
    "ExecutionResult",
    "run_subprocess",
    "DEFAULT_RUNNERS",
    "LanguageRunner",
    "LanguageRunnerRegistry",
    "ExecutionSandbox",
]
