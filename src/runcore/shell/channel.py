"""Per-client event streams for shell sessions.

A :class:`SubscriptionChannel` turns a subscriber's queue into the text of
an event stream: a ``:connected`` comment, the replayed buffer, then live
output as it is broadcast.  A heartbeat task queues a ``:heartbeat``
comment at a fixed interval whether or not the session is producing
output.  Closing the stream (client disconnect) unsubscribes without
touching the session or its running command.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

from ..errors import SessionNotFound
from ..models import ExitFrame, encode_frame
from .broadcast import OutputBroadcaster, Subscriber, SubscriberClosed
from .session import SessionRegistry, ShellSession


logger = logging.getLogger("runcore.channel")

CONNECTED = ":connected\n\n"


def comment(text: str) -> str:
    return f":{text}\n\n"


class SubscriptionChannel:
    def __init__(
        self,
        registry: SessionRegistry,
        broadcaster: OutputBroadcaster,
        session_id: str,
        heartbeat_seconds: float = 15,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.session_id = session_id
        self.heartbeat_seconds = heartbeat_seconds

    async def _heartbeat(self, subscriber: Subscriber) -> None:
        while not subscriber.closed:
            await asyncio.sleep(self.heartbeat_seconds)
            try:
                subscriber.write("heartbeat")
            except SubscriberClosed:
                return

    async def stream(self) -> AsyncIterator[str]:
        yield CONNECTED
        session: Optional[ShellSession] = None
        try:
            session = self.registry.get(self.session_id)
        except SessionNotFound:
            # Destroyed between the request and the first read.
            logger.info("Session %s closed before its stream started", self.session_id)
            yield encode_frame(ExitFrame())
            return

        subscriber = self.broadcaster.subscribe(session)
        heartbeat = asyncio.create_task(self._heartbeat(subscriber))
        try:
            while True:
                item = await subscriber.get()
                if item is None:
                    return
                if isinstance(item, str):
                    yield comment(item)
                    continue
                yield encode_frame(item)
        finally:
            heartbeat.cancel()
            self.broadcaster.unsubscribe(session, subscriber)
