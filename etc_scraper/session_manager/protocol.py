"""Page-scoped command channel and event subscriptions over a CDP connection."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

_CLOSED = object()


class ProtocolError(Exception):
    """Base class for remote-debugging failures."""


class ConnectionLost(ProtocolError):
    """The browser or its debugging connection went away."""


class CommandFailed(ProtocolError):
    """The remote side answered a command with an error."""


class CommandTimeout(CommandFailed):
    """A command (usually a navigation) did not finish in time."""


class EventStream:
    """Unbounded queue of one event kind for a single subscriber.

    Iterating yields event params until the stream is closed. Each
    subscription gets its own queue, so two subscribers both see every event.
    """

    def __init__(self, kind: str, session: ProtocolSession):
        self.kind = kind
        self._session = session
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, params: dict):
        if not self._closed:
            self._queue.put_nowait(params)

    async def next(self) -> dict:
        """Wait for the next event. Raises ConnectionLost once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise ConnectionLost(f"event stream {self.kind} closed")
        return item

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._session._unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        try:
            return await self.next()
        except ConnectionLost:
            raise StopAsyncIteration


class ProtocolSession:
    """Command/event surface the scrape core drives.

    Subclasses implement ``send_command``, ``navigate``, ``evaluate_script``
    and ``close``, and call ``_emit`` for every event that arrives.
    ``_listen`` is called once per event kind on first subscription.
    """

    def __init__(self):
        self._streams: dict[str, list[EventStream]] = {}

    async def send_command(self, method: str, params: Optional[dict] = None) -> dict:
        raise NotImplementedError

    async def navigate(self, url: str):
        raise NotImplementedError

    async def evaluate_script(self, source: str) -> Any:
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError

    def subscribe(self, kind: str) -> EventStream:
        if kind not in self._streams:
            self._streams[kind] = []
            self._listen(kind)
        stream = EventStream(kind, self)
        self._streams[kind].append(stream)
        return stream

    def _listen(self, kind: str):
        """Start receiving ``kind`` from the remote side."""

    def _unsubscribe(self, stream: EventStream):
        streams = self._streams.get(stream.kind, [])
        if stream in streams:
            streams.remove(stream)

    def _emit(self, kind: str, params: dict):
        for stream in list(self._streams.get(kind, ())):
            stream.push(params)

    def _close_streams(self):
        for streams in list(self._streams.values()):
            for stream in list(streams):
                stream.close()
