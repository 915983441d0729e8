"""Progress channel: orchestration callbacks as an async event stream."""

from __future__ import annotations

import math
from collections.abc import AsyncIterator

import anyio
from anyio.abc import ObjectReceiveStream, ObjectSendStream

from codeh.types.events import ProgressEvent
from codeh.types.providers import StreamChunk

ProgressItem = ProgressEvent | StreamChunk


class ProgressChannel:
    """Turns the orchestrator's callbacks into something a UI can iterate.

    Pass :meth:`on_progress` and :meth:`on_chunk` as the orchestrator's
    callbacks and consume the channel from another task::

        channel = ProgressChannel()
        async with anyio.create_task_group() as tg:
            tg.start_soon(render, channel)
            await orchestrator.run(turn, on_progress=channel.on_progress,
                                   on_stream_chunk=channel.on_chunk)
            await channel.close()

    Uses an unbounded anyio memory object stream so the producer never blocks.
    """

    def __init__(self) -> None:
        send: ObjectSendStream[ProgressItem]
        recv: ObjectReceiveStream[ProgressItem]
        send, recv = anyio.create_memory_object_stream[ProgressItem](max_buffer_size=math.inf)
        self._send = send
        self._recv = recv
        self._closed = False

    def on_progress(self, event: ProgressEvent) -> None:
        self._push(event)

    def on_chunk(self, chunk: StreamChunk) -> None:
        self._push(chunk)

    def _push(self, item: ProgressItem) -> None:
        if self._closed:
            return
        self._send.send_nowait(item)

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Stop accepting items; consumers finish once the buffer drains."""
        if self._closed:
            return
        self._closed = True
        await self._send.aclose()

    def __aiter__(self) -> AsyncIterator[ProgressItem]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressItem]:
        async with self._recv:
            async for item in self._recv:
                yield item
