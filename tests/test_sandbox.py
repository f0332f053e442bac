"""
One-shot execution tests.

These run real interpreters and compilers, so each test skips when the
toolchain it needs is not on PATH.
"""

from __future__ import annotations

import os
import shutil
import time
from pathlib import Path

import pytest

from runcore.errors import InvalidFilePath, LanguageNotInstalled, ScratchFailure, UnsupportedLanguage
from runcore.executor import TIMEOUT_EXIT_CODE, ExecutionSandbox, LanguageRunnerRegistry
from runcore.scratch import ScratchRoot, safe_relative_path


needs_python = pytest.mark.skipif(shutil.which("python3") is None, reason="python3 not installed")
needs_gcc = pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not installed")


def _alive(pid: int) -> bool:
    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            # Zombies count as gone: they no longer run.
            return stat.read_text().rsplit(")", 1)[1].split()[0] != "Z"
        except (OSError, IndexError):
            return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def sandbox(runners, scratch_dir) -> ExecutionSandbox:
    return ExecutionSandbox(runners, ScratchRoot(str(scratch_dir)), timeout=5)


@needs_python
def test_python_hello(sandbox):
    result = sandbox.execute("print('hi')", "a.py")
    assert result.stdout == "hi\n"
    assert result.exit_code == 0
    assert result.language == "Python"
    assert result.duration_ms >= 0


@needs_python
def test_nonzero_exit_and_stderr(sandbox):
    result = sandbox.execute("import sys\nprint('bad', file=sys.stderr)\nsys.exit(3)", "fail.py")
    assert result.exit_code == 3
    assert "bad" in result.stderr


@needs_python
def test_auxiliary_files_in_nested_directories(sandbox):
    code = "print(open('data/input.txt').read().strip())\nprint(open('top.csv').read().strip())"
    result = sandbox.execute(
        code,
        "read.py",
        [("data/input.txt", "nested"), ("top.csv", "a,b")],
    )
    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["nested", "a,b"]


@needs_python
def test_scratch_is_removed_after_each_run(sandbox, scratch_dir):
    sandbox.execute("open('out.txt', 'w').write('x')", "w.py", [("in/data.txt", "1")])
    assert list(scratch_dir.iterdir()) == []


@needs_python
def test_same_filename_runs_in_separate_directories(sandbox):
    code = "import os\nprint(os.getcwd())"
    first = sandbox.execute(code, "main.py")
    second = sandbox.execute(code, "main.py")
    assert first.stdout != second.stdout


@needs_python
def test_timeout_kills_program_and_children(scratch_dir):
    registry = LanguageRunnerRegistry(versions={"Python": "Python 3"})
    sandbox = ExecutionSandbox(registry, ScratchRoot(str(scratch_dir)), timeout=1)
    code = (
        "import subprocess, time\n"
        "child = subprocess.Popen(['sleep', '60'])\n"
        "print(child.pid, flush=True)\n"
        "time.sleep(60)\n"
    )
    result = sandbox.execute(code, "sleepy.py")

    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.timed_out
    assert "timed out" in result.stderr
    child_pid = int(result.stdout.split()[0])
    deadline = time.monotonic() + 5
    while _alive(child_pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _alive(child_pid)


@needs_gcc
def test_compile_error_skips_run_phase(sandbox):
    code = '#include <stdio.h>\nint main( {\n  printf("ran\\n");\n  return 0;\n}\n'
    result = sandbox.execute(code, "broken.c")
    assert result.exit_code != 0
    assert "error" in result.stderr
    assert result.stdout == ""
    assert result.language == "C"


@needs_gcc
def test_compiled_program_runs(sandbox):
    code = '#include <stdio.h>\nint main(void) {\n  printf("compiled\\n");\n  return 0;\n}\n'
    result = sandbox.execute(code, "ok.c")
    assert result.exit_code == 0
    assert result.stdout == "compiled\n"


def test_unsupported_and_not_installed_are_distinct(sandbox, scratch_dir):
    with pytest.raises(UnsupportedLanguage) as unsupported:
        sandbox.execute("x", "notes.xyz")
    with pytest.raises(LanguageNotInstalled) as missing:
        sandbox.execute("puts 1", "a.rb")
    assert str(unsupported.value) != str(missing.value)
    assert "Ruby" in str(missing.value)
    # Nothing is materialized when the language cannot run.
    assert not scratch_dir.exists() or list(scratch_dir.iterdir()) == []


@needs_python
def test_escaping_auxiliary_path_is_rejected(sandbox):
    with pytest.raises(InvalidFilePath):
        sandbox.execute("print(1)", "a.py", [("../outside.txt", "x")])
    with pytest.raises(InvalidFilePath):
        sandbox.execute("print(1)", "a.py", [("/etc/passwd", "x")])


@needs_python
def test_auxiliary_file_cannot_replace_main_file(sandbox, scratch_dir):
    with pytest.raises(InvalidFilePath):
        sandbox.execute("print(1)", "a.py", [("a.py", "print(2)")])
    with pytest.raises(InvalidFilePath):
        sandbox.execute("print(1)", "src/a.py", [("./a.py", "print(2)")])
    assert not scratch_dir.exists() or list(scratch_dir.iterdir()) == []


def test_safe_relative_path_normalizes():
    assert str(safe_relative_path("./data/./in.txt")) == "data/in.txt"
    assert str(safe_relative_path("dir\\file.txt")) == "dir/file.txt"
    with pytest.raises(InvalidFilePath):
        safe_relative_path("")


def test_save_all_continues_past_failures(tmp_path):
    root = ScratchRoot(str(tmp_path / "scratch"))
    with root.allocate() as space:
        # A regular file where a directory is needed makes this write fail.
        space.save("blocker", "x")
        with pytest.raises(ScratchFailure) as excinfo:
            space.save_all([("blocker/inner.txt", "1"), ("after.txt", "2")])
        assert excinfo.value.failed == ["blocker/inner.txt"]
        assert (space.path / "after.txt").read_text() == "2"
    assert not space.path.exists()
