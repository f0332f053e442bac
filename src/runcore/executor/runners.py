"""
Catalog of supported languages and the probe that finds installed ones.

Each :class:`LanguageRunner` pairs a language with the file extensions it
claims, a command that reports whether the toolchain is installed, and a
command builder that turns a source file into the argument vector that
runs it.  Compiled languages build and run in a single ``sh -c`` call so a
compile error surfaces as a non-zero exit with diagnostics on stderr and
the run phase never starts.

:class:`LanguageRunnerRegistry` probes every runner once when it is
constructed; the set of available languages is not refreshed afterwards.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import LanguageNotInstalled, UnsupportedLanguage


logger = logging.getLogger("runcore.runners")

CommandBuilder = Callable[[str, str], Tuple[str, List[str]]]


@dataclass(frozen=True)
class LanguageRunner:
    """How to detect and run one language.

    ``build_command(path, filename)`` receives the directory holding the
    source file and the file's name, and returns ``(executable, args)``.
    """

    name: str
    extensions: Tuple[str, ...]
    probe: Tuple[str, ...]
    build_command: CommandBuilder = field(compare=False)
    compiled: bool = False

    def command(self, path: str, filename: str) -> List[str]:
        executable, args = self.build_command(path, filename)
        return [executable, *args]


def _interpreted(*prefix: str) -> CommandBuilder:
    def build(path: str, filename: str) -> Tuple[str, List[str]]:
        return prefix[0], [*prefix[1:], filename]

    return build


def _compile_and_run(compile_cmd: str, run_cmd: str) -> CommandBuilder:
    """Build a ``sh -c "<compile> && <run>"`` command.

    ``{src}`` is replaced with the quoted file name, ``{out}`` with the
    quoted output binary and ``{stem}`` with the bare file stem.
    """

    def build(path: str, filename: str) -> Tuple[str, List[str]]:
        stem = PurePosixPath(filename).stem
        values = {
            "src": shlex.quote(filename),
            "out": shlex.quote("./" + stem),
            "stem": shlex.quote(stem),
        }
        script = compile_cmd.format(**values) + " && " + run_cmd.format(**values)
        return "sh", ["-c", script]

    return build


DEFAULT_RUNNERS: Tuple[LanguageRunner, ...] = (
    LanguageRunner("Python", (".py",), ("python3", "--version"), _interpreted("python3", "-u")),
    LanguageRunner("JavaScript", (".js", ".mjs", ".cjs"), ("node", "--version"), _interpreted("node")),
    LanguageRunner(
        "TypeScript",
        (".ts",),
        ("npx", "--no-install", "tsx", "--version"),
        _interpreted("npx", "--no-install", "tsx"),
    ),
    LanguageRunner("Ruby", (".rb",), ("ruby", "--version"), _interpreted("ruby")),
    LanguageRunner("PHP", (".php",), ("php", "--version"), _interpreted("php")),
    LanguageRunner("Bash", (".sh",), ("bash", "--version"), _interpreted("bash")),
    LanguageRunner("Go", (".go",), ("go", "version"), _interpreted("go", "run")),
    LanguageRunner(
        "C",
        (".c",),
        ("gcc", "--version"),
        _compile_and_run("gcc {src} -o {out} -lm", "{out}"),
        compiled=True,
    ),
    LanguageRunner(
        "C++",
        (".cpp", ".cc", ".cxx"),
        ("g++", "--version"),
        _compile_and_run("g++ -std=c++17 {src} -o {out}", "{out}"),
        compiled=True,
    ),
    LanguageRunner(
        "Rust",
        (".rs",),
        ("rustc", "--version"),
        _compile_and_run("rustc {src} -o {out}", "{out}"),
        compiled=True,
    ),
    LanguageRunner(
        "Java",
        (".java",),
        ("java", "-version"),
        _compile_and_run("javac {src}", "java -cp . {stem}"),
        compiled=True,
    ),
)


def extension_of(filename: str) -> str:
    return PurePosixPath(filename.replace("\\", "/")).suffix.lower()


def probe_runner(runner: LanguageRunner, timeout: float) -> Optional[str]:
    """Run the install probe; return the reported version or ``None``."""
    try:
        completed = subprocess.run(
            list(runner.probe),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if completed.returncode != 0:
        return None
    for stream in (completed.stdout, completed.stderr):
        for line in stream.splitlines():
            if line.strip():
                return line.strip()
    return "unknown"


class LanguageRunnerRegistry:
    """Supported runners plus the subset found installed at startup.

    Parameters
    ----------
    runners: iterable of LanguageRunner, optional
        Catalog to serve.  Defaults to :data:`DEFAULT_RUNNERS`.
    probe_timeout: float, optional
        Seconds allowed for each install probe.
    versions: dict, optional
        Pre-computed ``{name: version}`` availability.  When given, no
        probes are run; used to pin availability in tests.
    """

    def __init__(
        self,
        runners: Optional[Iterable[LanguageRunner]] = None,
        probe_timeout: float = 5,
        versions: Optional[Dict[str, str]] = None,
    ) -> None:
        self.runners: Tuple[LanguageRunner, ...] = tuple(runners or DEFAULT_RUNNERS)
        self._by_extension: Dict[str, LanguageRunner] = {}
        for runner in self.runners:
            for ext in runner.extensions:
                self._by_extension.setdefault(ext.lower(), runner)
        if versions is None:
            versions = self._probe_all(probe_timeout)
        self._versions: Dict[str, str] = dict(versions)

    def _probe_all(self, timeout: float) -> Dict[str, str]:
        with ThreadPoolExecutor(max_workers=max(1, len(self.runners))) as pool:
            results = list(pool.map(lambda r: probe_runner(r, timeout), self.runners))
        versions: Dict[str, str] = {}
        for runner, version in zip(self.runners, results):
            if version is None:
                logger.info("Runner %s not available", runner.name)
                continue
            logger.info("Runner %s available: %s", runner.name, version)
            versions[runner.name] = version
        return versions

    def is_installed(self, runner: LanguageRunner) -> bool:
        return runner.name in self._versions

    def lookup(self, filename: str) -> LanguageRunner:
        """Return the installed runner for ``filename``'s extension.

        Raises :class:`UnsupportedLanguage` when no runner claims the
        extension and :class:`LanguageNotInstalled` when one does but its
        toolchain was not found at startup.
        """
        ext = extension_of(filename)
        runner = self._by_extension.get(ext)
        if runner is None:
            raise UnsupportedLanguage(ext)
        if not self.is_installed(runner):
            raise LanguageNotInstalled(runner.name)
        return runner

    def available(self) -> List[Tuple[LanguageRunner, str]]:
        return [(r, self._versions[r.name]) for r in self.runners if r.name in self._versions]

    def supported(self) -> List[Tuple[LanguageRunner, bool]]:
        return [(r, self.is_installed(r)) for r in self.runners]
