"""Pull-based iteration over an engine's push-style row callbacks.

The engine calls ``on_row(err, row)`` per row and ``on_complete(err, count)``
once at the end. ``on_row`` hands back an acknowledgement future which
resolves True when the consumer asks for the next row, or False when the
consumer gives up. An engine that waits on it never has more than one row
ahead of the consumer; one that ignores it just gets its rows queued.

The engine only ever holds the stream's feed, never the stream itself, so a
stream dropped mid-iteration (``break`` out of ``async for``) is collected
and tells the engine to stop.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from .results import Row

logger = logging.getLogger(__name__)

_ROW = "row"
_END = "end"
_FAILED = "failed"

Starter = Callable[[Callable[..., Any], Callable[..., Any]], Any]


class _Feed:
    """Engine-facing side of a RowStream."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()
        self.finished = loop.create_future()
        self.ack: Optional[asyncio.Future] = None
        self.terminated = False
        self.closing = False

    def acknowledge(self, proceed: bool):
        ack, self.ack = self.ack, None
        if ack is not None and not ack.done():
            ack.set_result(proceed)

    def abandon(self):
        self.closing = True
        self.acknowledge(False)
        while not self.queue.empty():
            _, _, ack = self.queue.get_nowait()
            if ack is not None and not ack.done():
                ack.set_result(False)

    def on_row(self, error: Any = None, row: Optional[Row] = None) -> Optional[asyncio.Future]:
        if error is not None:
            self.terminate(_FAILED, error)
            return None
        ack = self.loop.create_future()
        if self.closing or self.terminated:
            ack.set_result(False)
            return ack
        self.queue.put_nowait((_ROW, row, ack))
        return ack

    def on_complete(self, error: Any = None, count: Any = None):
        if not self.finished.done():
            self.finished.set_result(count)
        if error is not None:
            if self.closing:
                logger.debug(f"Row iteration failed after close: {error}")
            self.terminate(_FAILED, error)
        else:
            self.terminate(_END, None)

    def terminate(self, kind: str, value: Any):
        if self.terminated:
            return
        self.terminated = True
        self.queue.put_nowait((kind, value, None))


class RowStream:
    def __init__(self, start: Starter):
        self._start = start
        self._feed: Optional[_Feed] = None
        self._exhausted = False
        self.count = 0

    def __aiter__(self):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    def __del__(self):
        feed = self._feed
        if feed is None or feed.finished.done() or feed.loop.is_closed():
            return
        logger.debug(f"Row stream dropped after {self.count} rows; stopping the engine")
        feed.abandon()

    async def __anext__(self) -> Row:
        if self._exhausted:
            raise StopAsyncIteration
        if self._feed is None:
            self._begin()
        else:
            self._feed.acknowledge(True)

        kind, value, ack = await self._feed.queue.get()
        if kind is _ROW:
            self._feed.ack = ack
            self.count += 1
            return value

        self._exhausted = True
        if kind is _FAILED:
            raise value
        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Stop consuming; tell the engine to stop and wait for it to finish."""
        feed = self._feed
        if self._exhausted and (feed is None or feed.finished.done()):
            return
        self._exhausted = True
        if feed is None:
            return
        feed.abandon()
        await asyncio.shield(feed.finished)

    def _begin(self):
        self._feed = _Feed(asyncio.get_running_loop())
        self._start(self._feed.on_row, self._feed.on_complete)
