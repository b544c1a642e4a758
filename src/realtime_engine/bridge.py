"""
Streaming bridge between an outbound message source and the inbound event
channel of a session.
"""

import asyncio
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

from src.realtime_engine.models import ClientMessage, ServerMessage
from utils.ml_logging import get_logger

logger = get_logger("realtime_engine.bridge")

_CLOSED = object()

MessageSource = Union[AsyncIterable[ClientMessage], Iterable[ClientMessage]]


class InboundChannel:
    """
    Unbounded queue of decoded server messages with an explicit close.

    Messages published before `close()` are still delivered; once drained,
    every reader gets None.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, message: ServerMessage) -> bool:
        if self._closed:
            logger.debug(f"Dropping {type(message).__name__} published after channel close")
            return False
        self._queue.put_nowait(message)
        return True

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def receive(self) -> Optional[ServerMessage]:
        item = await self._queue.get()
        if item is _CLOSED:
            # leave the marker for any other reader
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ServerMessage]:
        return self

    async def __anext__(self) -> ServerMessage:
        message = await self.receive()
        if message is None:
            raise StopAsyncIteration
        return message


class OutboundQueue:
    """Async message source the caller can push client messages into."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    async def put(self, message: ClientMessage) -> None:
        self.put_nowait(message)

    def put_nowait(self, message: ClientMessage) -> None:
        if self._closed:
            raise RuntimeError("OutboundQueue is closed")
        self._queue.put_nowait(message)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[ClientMessage]:
        return self

    async def __anext__(self) -> ClientMessage:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item


async def _iterate(source: MessageSource) -> AsyncIterator[ClientMessage]:
    if hasattr(source, "__aiter__"):
        async for message in source:
            yield message
    else:
        for message in source:
            yield message


class StreamingBridge:
    """
    Joins an outbound source to the inbound channel.

    Args:
        channel (InboundChannel): Where the session publishes decoded messages.
        send (Callable): Coroutine that encodes and writes one client message.
        on_error (Callable): Receives encode/send failures raised in the pump.
    """

    def __init__(
        self,
        channel: InboundChannel,
        send: Callable[[ClientMessage], Awaitable[None]],
        on_error: Callable[[Exception], Any],
    ) -> None:
        self.channel = channel
        self._send = send
        self._on_error = on_error
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    async def stream(
        self, outbound: MessageSource, cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ServerMessage]:
        """
        Pump `outbound` to the service while yielding inbound messages.

        Yields until the channel closes or `cancel` is set. The pump task is
        cancelled and awaited before the generator finishes.
        """
        if self._active:
            raise RuntimeError("A stream is already active on this session")
        self._active = True

        pump = asyncio.create_task(self._pump(outbound, cancel))
        try:
            while True:
                message = await self._next_inbound(cancel)
                if message is None:
                    break
                yield message
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            self._active = False
            logger.debug("Stream finished")

    async def _next_inbound(self, cancel: Optional[asyncio.Event]) -> Optional[ServerMessage]:
        if cancel is None:
            return await self.channel.receive()
        if cancel.is_set():
            return None

        receive = asyncio.ensure_future(self.channel.receive())
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({receive, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (receive, cancelled):
                if not task.done():
                    task.cancel()

        # a completed read is delivered even when cancellation raced it
        if receive in done:
            return receive.result()
        return None

    async def _pump(self, outbound: MessageSource, cancel: Optional[asyncio.Event]) -> None:
        sent = 0
        try:
            async for message in _iterate(outbound):
                if cancel is not None and cancel.is_set():
                    break
                await self._send(message)
                sent += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Outbound pump stopped after {sent} message(s): {exc}")
            self._on_error(exc)
            return
        logger.debug(f"Outbound source drained after {sent} message(s)")
