"""Shared fixtures: an isolated configuration, pinned language availability
and shell services wired the way the application wires them."""

from __future__ import annotations

import shutil

import pytest
from fastapi.testclient import TestClient

from runcore.api.main import create_app
from runcore.config import Config
from runcore.executor import LanguageRunnerRegistry
from runcore.shell import CommandDispatcher, OutputBroadcaster, SessionRegistry


@pytest.fixture
def config(tmp_path) -> Config:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return Config(
        api_key="",
        workspace_root=str(workspace),
        scratch_path=str(tmp_path / "scratch"),
        shell="/bin/sh",
        max_execution_seconds=5,
        probe_timeout_seconds=5,
        heartbeat_seconds=15,
        buffer_size=100,
        max_file_bytes=1024 * 1024,
        log_level="INFO",
        host="127.0.0.1",
        port=3001,
    )


@pytest.fixture
def runners() -> LanguageRunnerRegistry:
    # Ruby is never marked installed so it can stand in for a registered
    # but missing toolchain.
    versions = {}
    if shutil.which("python3"):
        versions["Python"] = "Python 3"
    if shutil.which("gcc"):
        versions["C"] = "gcc"
    if shutil.which("bash"):
        versions["Bash"] = "GNU bash"
    return LanguageRunnerRegistry(versions=versions)


@pytest.fixture
def client(config, runners):
    app = create_app(config, runners)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def broadcaster() -> OutputBroadcaster:
    return OutputBroadcaster()


@pytest.fixture
def sessions(broadcaster, tmp_path) -> SessionRegistry:
    return SessionRegistry(broadcaster, str(tmp_path), buffer_size=100)


@pytest.fixture
async def dispatcher(sessions, broadcaster):
    d = CommandDispatcher(sessions, broadcaster, shell="/bin/sh")
    yield d
    await d.shutdown()
