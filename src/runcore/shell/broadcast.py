"""Output fan-out for shell sessions.

Every message a session produces is appended to the session's bounded
buffer and delivered to each live subscriber in production order.  A new
subscriber receives the buffered messages and is registered for live
delivery under the same lock that producers hold, so it sees every message
exactly once across the replay/live boundary.

Subscribers are queue-backed sinks drained by the connection's writer
task.  All methods here are called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Union

from ..models import ExitFrame, StderrMessage, StdoutMessage

if TYPE_CHECKING:
    from .session import ShellSession


logger = logging.getLogger("runcore.broadcast")

Frame = Union[StdoutMessage, StderrMessage, ExitFrame]


class SubscriberClosed(Exception):
    pass


class Subscriber:
    """Sink for one client connection."""

    _CLOSE = object()

    def __init__(self, session_id: str, maxsize: int = 0) -> None:
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self.closed = False

    def write(self, item: Union[Frame, str]) -> None:
        """Queue a frame, or a comment string such as ``"heartbeat"``.

        A subscriber whose queue is full has stopped reading; it is closed
        and :class:`SubscriberClosed` is raised.
        """
        if self.closed:
            raise SubscriberClosed(self.session_id)
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning("Subscriber on session %s fell behind; closing it", self.session_id)
            self.close()
            raise SubscriberClosed(self.session_id)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Pending output is discarded so the close marker always fits.
        while self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(self._CLOSE)

    async def get(self) -> Optional[Union[Frame, str]]:
        """Next queued item, or ``None`` once the subscriber is closed."""
        item = await self._queue.get()
        if item is self._CLOSE:
            return None
        return item


class OutputBroadcaster:
    """Appends session output to its buffer and fans it out.

    Each subscriber queues at most ``queue_size`` live items beyond the
    replayed buffer before it is dropped.
    """

    def __init__(self, queue_size: int = 1000) -> None:
        self.queue_size = queue_size

    def append(self, session: "ShellSession", message: Union[StdoutMessage, StderrMessage]) -> None:
        session.buffer.append(message)

    def broadcast(self, session: "ShellSession", frame: Frame) -> None:
        for subscriber in list(session.subscribers):
            try:
                subscriber.write(frame)
            except SubscriberClosed:
                logger.warning("Dropping closed subscriber on session %s", session.id)
                session.subscribers.discard(subscriber)

    def publish(self, session: "ShellSession", message: Union[StdoutMessage, StderrMessage]) -> bool:
        """Append and deliver ``message``; return False if the session is closed."""
        with session.lock:
            if session.closed:
                return False
            self.append(session, message)
            self.broadcast(session, message)
            return True

    def subscribe(self, session: "ShellSession") -> Subscriber:
        """Replay the buffer into a new subscriber and register it for live output."""
        subscriber = Subscriber(session.id, maxsize=session.buffer.capacity + self.queue_size)
        with session.lock:
            if session.closed:
                subscriber.write(ExitFrame())
                subscriber.close()
                return subscriber
            for message in session.buffer.snapshot():
                subscriber.write(message)
            session.subscribers.add(subscriber)
        logger.info(
            "Subscriber connected to session %s (%d live)", session.id, len(session.subscribers)
        )
        return subscriber

    def unsubscribe(self, session: "ShellSession", subscriber: Subscriber) -> None:
        with session.lock:
            session.subscribers.discard(subscriber)
        subscriber.close()
        logger.info(
            "Subscriber disconnected from session %s (%d live)", session.id, len(session.subscribers)
        )

    def close(self, session: "ShellSession", exit_code: Optional[int] = None) -> None:
        """Mark the session closed, send the exit frame and end every stream."""
        with session.lock:
            if session.closed:
                return
            session.closed = True
            subscribers = list(session.subscribers)
            session.subscribers.clear()
            for subscriber in subscribers:
                try:
                    subscriber.write(ExitFrame(exit_code=exit_code))
                except SubscriberClosed:
                    continue
                subscriber.close()
