"""Shell sessions and the registry that owns them.

A :class:`ShellSession` holds a working directory, a bounded buffer of
recent output, the set of connected subscribers and the handle of the
command currently running (if any).  Sessions live in memory only: they
are created on request, destroyed by an explicit kill and lost when the
service restarts.  Idle sessions are never expired.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Set, Union

from ..errors import SessionNotFound
from ..executor.base import kill_process_group
from ..models import StderrMessage, StdoutMessage
from .broadcast import OutputBroadcaster, Subscriber


logger = logging.getLogger("runcore.session")

OutputMessage = Union[StdoutMessage, StderrMessage]


class OutputBuffer:
    """Fixed-capacity FIFO of output messages; the oldest is dropped on overflow."""

    def __init__(self, capacity: int = 100) -> None:
        self.capacity = capacity
        self._items: Deque[OutputMessage] = deque(maxlen=capacity)

    def append(self, message: OutputMessage) -> None:
        self._items.append(message)

    def snapshot(self) -> List[OutputMessage]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class ShellSession:
    def __init__(self, session_id: str, cwd: str, buffer_size: int = 100) -> None:
        self.id = session_id
        self.cwd = cwd
        self.created_at = datetime.now(timezone.utc)
        self.buffer = OutputBuffer(buffer_size)
        self.subscribers: Set[Subscriber] = set()
        # asyncio.subprocess.Process of the running command, if any.
        self.process = None
        # Set while a command is being started, before its handle exists.
        self.spawning = False
        self.closed = False
        self.lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self.spawning or self.process is not None


def new_session_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


class SessionRegistry:
    """Thread-safe map of session id to :class:`ShellSession`."""

    def __init__(
        self,
        broadcaster: OutputBroadcaster,
        workspace_root: str,
        buffer_size: int = 100,
    ) -> None:
        self.broadcaster = broadcaster
        self.workspace_root = workspace_root
        self.buffer_size = buffer_size
        self._sessions: Dict[str, ShellSession] = {}
        self._lock = threading.Lock()

    def create(self, cwd_hint: Optional[str] = None) -> ShellSession:
        cwd = self.workspace_root
        if cwd_hint:
            candidate = os.path.realpath(os.path.expanduser(cwd_hint))
            if os.path.isdir(candidate):
                cwd = candidate
            else:
                logger.warning("Requested cwd %s is not a directory; using %s", cwd_hint, cwd)
        session = ShellSession(new_session_id(), cwd, self.buffer_size)
        with self._lock:
            self._sessions[session.id] = session
        logger.info("Created shell session %s in %s", session.id, cwd)
        return session

    def get(self, session_id: str) -> ShellSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def destroy(self, session_id: str) -> None:
        """Terminate any running command and remove the session."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        # Close before reading the handle: a command still starting either
        # sees the session closed or is already bound here.
        self.broadcaster.close(session, exit_code=None)
        with session.lock:
            process = session.process
            session.process = None
        if process is not None:
            kill_process_group(process, signal.SIGTERM)
        logger.info("Destroyed shell session %s", session_id)

    def list(self) -> List[ShellSession]:
        with self._lock:
            return list(self._sessions.values())

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
