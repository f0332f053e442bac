"""
Basic API tests for the runcore service.

These tests exercise the HTTP endpoints using FastAPI's TestClient.  They
verify that shell sessions can be opened, driven and killed, that programs
execute through the one-shot endpoint, that language availability is
reported, and that errors come back with the documented statuses.
"""

from __future__ import annotations

import shutil
import time

import pytest
from fastapi.testclient import TestClient

from runcore.api.main import create_app


needs_python = pytest.mark.skipif(shutil.which("python3") is None, reason="python3 not installed")


def wait_for_output(client, session_id: str, needle: str, timeout: float = 10.0) -> str:
    session = client.app.state.services.sessions.get(session_id)
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        text = "".join(m.content for m in session.buffer.snapshot())
        if needle in text:
            return text
        time.sleep(0.05)
    raise AssertionError(f"{needle!r} not seen in session output")


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_shell_session_lifecycle(client, config):
    # Spawn
    res = client.post("/api/shell/spawn", json={})
    assert res.status_code == 200
    data = res.json()
    session_id = data["sessionId"]
    assert data["cwd"] == config.workspace_root
    assert data["shell"] == config.shell

    # Listed
    res = client.get("/api/shell/sessions")
    assert [s["sessionId"] for s in res.json()["sessions"]] == [session_id]

    # Input runs asynchronously; the response only acknowledges it
    res = client.post(f"/api/shell/{session_id}/input", json={"input": "echo hello-api\n"})
    assert res.status_code == 200
    assert res.json() == {"success": True}
    wait_for_output(client, session_id, "hello-api")

    # Kill tears the session down
    res = client.post(f"/api/shell/{session_id}/kill")
    assert res.status_code == 200
    assert res.json() == {"success": True}
    assert client.get("/api/shell/sessions").json()["sessions"] == []
    assert client.post(f"/api/shell/{session_id}/input", json={"input": "ls"}).status_code == 404
    assert client.get(f"/api/shell/{session_id}/output").status_code == 404


def test_spawn_without_body_uses_workspace(client, config):
    res = client.post("/api/shell/spawn")
    assert res.status_code == 200
    assert res.json()["cwd"] == config.workspace_root


def test_spawn_with_cwd(client, tmp_path):
    res = client.post("/api/shell/spawn", json={"cwd": str(tmp_path)})
    assert res.json()["cwd"] == str(tmp_path.resolve())


def test_busy_session_returns_conflict(client):
    session_id = client.post("/api/shell/spawn", json={}).json()["sessionId"]
    assert client.post(f"/api/shell/{session_id}/input", json={"input": "sleep 5"}).status_code == 200

    res = client.post(f"/api/shell/{session_id}/input", json={"input": "echo again"})
    assert res.status_code == 409
    assert "error" in res.json()

    res = client.post(f"/api/shell/{session_id}/interrupt")
    assert res.status_code == 200
    wait_for_output(client, session_id, "^C\n")


def test_unknown_session_returns_404(client):
    for action in ("interrupt", "kill"):
        res = client.post(f"/api/shell/nope/{action}")
        assert res.status_code == 404
        assert res.json() == {"error": "Session not found: nope"}


def test_input_requires_field(client):
    session_id = client.post("/api/shell/spawn", json={}).json()["sessionId"]
    res = client.post(f"/api/shell/{session_id}/input", json={})
    assert res.status_code == 400
    assert "input" in res.json()["error"]


@needs_python
def test_execute_python(client):
    res = client.post("/api/execute", json={"code": "print('hi')", "filename": "a.py"})
    assert res.status_code == 200
    data = res.json()
    assert data["stdout"] == "hi\n"
    assert data["exitCode"] == 0
    assert data["language"] == "Python"
    assert isinstance(data["executionTime"], int)


@needs_python
def test_execute_with_additional_files(client):
    payload = {
        "code": "print(open('inputs/numbers.txt').read().split())",
        "filename": "sum.py",
        "additionalFiles": [{"name": "inputs/numbers.txt", "content": "1 2 3"}],
    }
    res = client.post("/api/execute", json=payload)
    assert res.status_code == 200
    assert res.json()["stdout"].strip() == "['1', '2', '3']"


def test_execute_language_errors_are_distinct(client):
    unsupported = client.post("/api/execute", json={"code": "x", "filename": "a.xyz"})
    missing = client.post("/api/execute", json={"code": "puts 1", "filename": "a.rb"})
    assert unsupported.status_code == 400
    assert missing.status_code == 400
    assert unsupported.json()["error"] != missing.json()["error"]
    assert "Ruby" in missing.json()["error"]


def test_execute_missing_fields(client):
    res = client.post("/api/execute", json={"filename": "a.py"})
    assert res.status_code == 400
    assert "code" in res.json()["error"]


@needs_python
def test_execute_rejects_escaping_paths(client):
    payload = {
        "code": "print(1)",
        "filename": "a.py",
        "additionalFiles": [{"name": "../../etc/evil", "content": "x"}],
    }
    res = client.post("/api/execute", json=payload)
    assert res.status_code == 400


def test_compilers_listing(client, runners):
    res = client.get("/api/compilers")
    assert res.status_code == 200
    data = res.json()
    assert [c["name"] for c in data["available"]] == [r.name for r, _ in runners.available()]
    ruby = next(s for s in data["supported"] if s["name"] == "Ruby")
    assert ruby == {"name": "Ruby", "extensions": [".rb"], "installed": False}
    for compiler in data["available"]:
        assert set(compiler) == {"name", "version", "extensions"}


def test_api_key_required_when_configured(config, runners):
    config.api_key = "secret"
    app = create_app(config, runners)
    with TestClient(app) as client:
        assert client.get("/api/health").status_code == 200
        assert client.get("/api/compilers").status_code == 401
        assert client.get("/api/compilers", headers={"x-api-key": "secret"}).status_code == 200
        assert client.get("/api/compilers?api_key=secret").status_code == 200
