"""Configuration loader.

The runcore service reads its configuration from environment variables so
the same installation can back a local tutor UI or a shared deployment.
Reasonable defaults are provided so that local development works out of the
box.

Environment variables:

``RUNCORE_API_KEY``
    Shared secret used to authenticate incoming requests.  Clients send it
    in the ``x-api-key`` header or, for event-stream clients that cannot set
    headers, the ``api_key`` query parameter.  Empty disables the check.

``RUNCORE_WORKSPACE_ROOT``
    Working directory for new shell sessions that do not ask for one.
    Defaults to the directory the service was started from.

``RUNCORE_SCRATCH_PATH``
    Base directory under which one-shot executions get their private
    scratch directories.  Defaults to ``<tmp>/runcore``.

``RUNCORE_SHELL``
    Interpreter used to run shell session commands.  Defaults to
    ``/bin/bash`` when present, otherwise ``/bin/sh``.

``RUNCORE_MAX_EXECUTION_SECONDS``
    Wall-clock timeout (in seconds) for a single one-shot execution.
    Default is 30.

``RUNCORE_PROBE_TIMEOUT_SECONDS``
    Timeout for each language install probe at startup.  Default is 5.

``RUNCORE_HEARTBEAT_SECONDS``
    Interval between keep-alive frames on output streams.  Default is 15.

``RUNCORE_BUFFER_SIZE``
    Number of output messages each shell session keeps for replay.
    Default is 100.

``RUNCORE_MAX_FILE_BYTES``
    Size limit for each file submitted to the one-shot executor.
    Default is 1 MiB.

``RUNCORE_LOG_LEVEL``
    Level for the ``runcore`` logger.  Defaults to ``INFO``.

``RUNCORE_HOST`` / ``PORT``
    Address the API server binds to.  Defaults to ``127.0.0.1:3001``.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass


def _default_shell() -> str:
    if os.path.exists("/bin/bash"):
        return "/bin/bash"
    return "/bin/sh"


def _int_var(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {val}")


@dataclass
class Config:
    """Centralised configuration object."""

    api_key: str
    workspace_root: str
    scratch_path: str
    shell: str
    max_execution_seconds: int
    probe_timeout_seconds: int
    heartbeat_seconds: int
    buffer_size: int
    max_file_bytes: int
    log_level: str
    host: str
    port: int

    @classmethod
    def load(cls) -> "Config":
        # API key may be empty in local development but should be set when shared.
        api_key = os.getenv("RUNCORE_API_KEY", "")

        workspace_root = os.path.abspath(
            os.path.expanduser(os.getenv("RUNCORE_WORKSPACE_ROOT") or os.getcwd())
        )
        scratch_path = os.getenv("RUNCORE_SCRATCH_PATH") or os.path.join(
            tempfile.gettempdir(), "runcore"
        )
        shell = os.getenv("RUNCORE_SHELL") or _default_shell()

        max_execution_seconds = _int_var("RUNCORE_MAX_EXECUTION_SECONDS", 30)
        probe_timeout_seconds = _int_var("RUNCORE_PROBE_TIMEOUT_SECONDS", 5)
        heartbeat_seconds = _int_var("RUNCORE_HEARTBEAT_SECONDS", 15)
        buffer_size = _int_var("RUNCORE_BUFFER_SIZE", 100)
        if buffer_size < 1:
            raise ValueError(f"Invalid RUNCORE_BUFFER_SIZE: {buffer_size}. Must be positive.")
        max_file_bytes = _int_var("RUNCORE_MAX_FILE_BYTES", 1024 * 1024)

        log_level = os.getenv("RUNCORE_LOG_LEVEL", "INFO").upper()
        host = os.getenv("RUNCORE_HOST", "127.0.0.1")
        port = _int_var("PORT", 3001)

        return cls(
            api_key=api_key,
            workspace_root=workspace_root,
            scratch_path=scratch_path,
            shell=shell,
            max_execution_seconds=max_execution_seconds,
            probe_timeout_seconds=probe_timeout_seconds,
            heartbeat_seconds=heartbeat_seconds,
            buffer_size=buffer_size,
            max_file_bytes=max_file_bytes,
            log_level=log_level,
            host=host,
            port=port,
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Alternate constructor used by the API to load configuration."""
        return cls.load()
