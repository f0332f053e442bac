"""Interpret lines of shell input against a session.

``cd`` is handled in-process so the session's working directory persists
between commands; every other non-empty line runs as a transient child of
the configured shell interpreter.  The child's stdout and stderr are
broadcast chunk by chunk as they arrive, and a fresh prompt follows when
it exits.

A session runs one command at a time.  Input that would start a second
command while one is running is rejected with :class:`SessionBusy`.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shlex
import signal
from typing import Dict, Optional, Set

from ..errors import SessionBusy, SessionNotFound
from ..executor.base import kill_process_group
from ..models import stderr_message, stdout_message
from .broadcast import OutputBroadcaster
from .session import SessionRegistry, ShellSession


logger = logging.getLogger("runcore.dispatcher")

READ_CHUNK = 4096
_SHELL_METACHARACTERS = set(";&|<>`$(){}*?")

UNBUFFERED_ENV = {
    "PYTHONUNBUFFERED": "1",
    "NODE_DISABLE_COLORS": "1",
}


def prompt_for(cwd: str) -> str:
    home = os.path.expanduser("~")
    shown = cwd
    if home not in ("", "/") and (cwd == home or cwd.startswith(home + os.sep)):
        shown = "~" + cwd[len(home):]
    return f"{shown} $ "


def parse_cd(line: str) -> Optional[str]:
    """Return the target of a plain ``cd`` command, or ``None``.

    ``cd`` with no argument targets ``~``.  Lines combining ``cd`` with
    other shell syntax are left to the shell.
    """
    if line != "cd" and not line.startswith(("cd ", "cd\t")):
        return None
    if any(ch in _SHELL_METACHARACTERS for ch in line):
        return None
    try:
        tokens = shlex.split(line)
    except ValueError:
        return None
    if len(tokens) == 1:
        return "~"
    if len(tokens) == 2:
        return tokens[1]
    return None


def resolve_directory(cwd: str, target: str) -> Optional[str]:
    """Canonical path of ``target`` relative to ``cwd`` if it is a directory."""
    if target == "~" or target.startswith("~/"):
        target = os.path.expanduser(target)
    path = os.path.realpath(os.path.join(cwd, target))
    if os.path.isdir(path):
        return path
    return None


class CommandDispatcher:
    def __init__(
        self,
        registry: SessionRegistry,
        broadcaster: OutputBroadcaster,
        shell: str = "/bin/sh",
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.shell = shell
        self.env = env
        self._tasks: Set[asyncio.Task] = set()

    def prompt(self, session: ShellSession) -> None:
        self.broadcaster.publish(session, stdout_message(prompt_for(session.cwd)))

    async def input(self, session_id: str, line: str) -> None:
        session = self.registry.get(session_id)
        line = line.strip()
        if not line:
            self.prompt(session)
            return

        target = parse_cd(line)
        if target is not None:
            self.change_directory(session, target)
            return

        # Claim the session before the first await so concurrent input sees it busy.
        with session.lock:
            if session.busy:
                raise SessionBusy(session_id)
            session.spawning = True
        try:
            await self._spawn(session, line)
        finally:
            session.spawning = False

    def change_directory(self, session: ShellSession, target: str) -> None:
        resolved = resolve_directory(session.cwd, target)
        if resolved is None:
            reason = "No such file or directory"
            candidate = os.path.join(session.cwd, os.path.expanduser(target))
            if os.path.exists(candidate):
                reason = "Not a directory"
            self.broadcaster.publish(session, stderr_message(f"cd: {target}: {reason}\n"))
        else:
            session.cwd = resolved
        self.prompt(session)

    def _child_env(self) -> Dict[str, str]:
        env = dict(self.env if self.env is not None else os.environ)
        env.update(UNBUFFERED_ENV)
        return env

    async def _spawn(self, session: ShellSession, line: str) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                line,
                cwd=session.cwd,
                env=self._child_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            logger.warning("Failed to spawn command in session %s: %s", session.id, exc)
            self.broadcaster.publish(session, stderr_message(f"Failed to start process: {exc}\n"))
            self.prompt(session)
            return

        with session.lock:
            abandoned = session.closed
            if not abandoned:
                session.process = process
        if abandoned:
            logger.info("Session %s was destroyed while starting pid %s", session.id, process.pid)
            kill_process_group(process, signal.SIGTERM)
            await process.wait()
            return

        logger.info("Session %s running pid %s: %s", session.id, process.pid, line)
        task = asyncio.create_task(self._watch(session, process))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _pump(self, session: ShellSession, stream: asyncio.StreamReader, make) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self.broadcaster.publish(session, make(tail))
                return
            text = decoder.decode(chunk)
            if text:
                self.broadcaster.publish(session, make(text))

    async def _watch(self, session: ShellSession, process) -> None:
        await asyncio.gather(
            self._pump(session, process.stdout, stdout_message),
            self._pump(session, process.stderr, stderr_message),
        )
        returncode = await process.wait()
        logger.info("Session %s pid %s exited with %s", session.id, process.pid, returncode)
        # Interrupt and kill clear the handle themselves and emit their own prompt.
        if session.process is process:
            session.process = None
            self.prompt(session)

    def interrupt(self, session_id: str) -> None:
        session = self.registry.get(session_id)
        process = session.process
        if process is None:
            return
        session.process = None
        kill_process_group(process, signal.SIGINT)
        logger.info("Interrupted pid %s in session %s", process.pid, session_id)
        self.broadcaster.publish(session, stdout_message("^C\n"))
        self.prompt(session)

    def kill(self, session_id: str) -> None:
        """Terminate the running command and destroy the whole session."""
        session = self.registry.get(session_id)
        process = session.process
        if process is not None:
            session.process = None
            kill_process_group(process, signal.SIGTERM)
            logger.info("Terminated pid %s in session %s", process.pid, session_id)
        self.registry.destroy(session_id)

    async def shutdown(self, grace: float = 5) -> None:
        """Destroy every session and wait briefly for output watchers to finish."""
        for session in self.registry.list():
            try:
                self.kill(session.id)
            except SessionNotFound:
                continue
        if not self._tasks:
            return
        _, pending = await asyncio.wait(list(self._tasks), timeout=grace)
        for task in pending:
            task.cancel()
