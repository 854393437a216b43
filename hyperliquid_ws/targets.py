"""
Delivery targets for subscription payloads.

A subscription delivers either to a callback invoked per message or to a
bounded queue drained by the caller. Queue pushes never block: when the
queue is full the newest message is dropped and counted.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

Handler = Callable[[Any], Union[None, Awaitable[None]]]

DEFAULT_QUEUE_SIZE = 100


class QueueClosed(Exception):
    """Raised by ``QueueTarget.get()`` once the target is closed and drained."""
    pass


class CallbackTarget:
    """Deliver each payload to a plain or coroutine function."""

    def __init__(self, handler: Handler):
        if not callable(handler):
            raise TypeError("handler must be callable")
        self.handler = handler
        self.closed = False

    async def deliver(self, payload: Any) -> bool:
        """
        Invoke the handler with a payload.

        Coroutine results are awaited before returning so that messages for
        one subscription are handled in wire order. Handler exceptions
        propagate to the router, which logs them.
        """
        if self.closed:
            return False
        result = self.handler(payload)
        if inspect.isawaitable(result):
            await result
        return True

    def close(self) -> None:
        self.closed = True

    def __repr__(self):
        name = getattr(self.handler, '__qualname__', repr(self.handler))
        return f"CallbackTarget({name})"


class QueueTarget:
    """
    Bounded backlog drained by the caller.

    Usage:
        target = QueueTarget(maxsize=100)
        key = await manager.subscribe('trades', {'coin': 'BTC'}, target)
        async for payload in target:
            ...
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.delivered = 0
        self.closed = False
        self._closed_event: Optional[asyncio.Event] = None

    def _event(self) -> asyncio.Event:
        if self._closed_event is None:
            self._closed_event = asyncio.Event()
            if self.closed:
                self._closed_event.set()
        return self._closed_event

    def push(self, payload: Any) -> bool:
        """
        Non-blocking push.

        Returns:
            True if queued, False if dropped (queue full or target closed)
        """
        if self.closed:
            return False
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            # Drop newest
            self.dropped += 1
            return False
        self.delivered += 1
        return True

    async def deliver(self, payload: Any) -> bool:
        return self.push(payload)

    async def get(self) -> Any:
        """
        Wait for the next payload.

        Raises:
            QueueClosed: If the target is closed and no payload is buffered
        """
        while True:
            try:
                return self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass

            if self.closed:
                raise QueueClosed()

            getter = asyncio.ensure_future(self.queue.get())
            closer = asyncio.ensure_future(self._event().wait())
            try:
                done, _ = await asyncio.wait(
                    {getter, closer}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                closer.cancel()
                if not getter.done():
                    getter.cancel()

            if getter in done and not getter.cancelled():
                return getter.result()

    def get_nowait(self) -> Any:
        return self.queue.get_nowait()

    def qsize(self) -> int:
        return self.queue.qsize()

    def close(self) -> None:
        """Stop accepting payloads and release waiting consumers."""
        self.closed = True
        if self._closed_event is not None:
            self._closed_event.set()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.get()
        except QueueClosed:
            raise StopAsyncIteration

    def __repr__(self):
        return f"QueueTarget(size={self.qsize()}/{self.maxsize}, dropped={self.dropped})"
