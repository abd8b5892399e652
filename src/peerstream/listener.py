"""
Listener: an accept loop over protocol-tagged streams.

The host pushes inbound streams by awaiting a handler; generic server code
pulls connections by awaiting accept(). The two meet at a hand-off queue:

    host task          handler           queue (1 slot)        accept()
        |  await handler(s)  |                  |                   |
        |------------------->|  put(s)          |                   |
        |                    |----------------->|   get()           |
        |                    |                  |<------------------|
        |                    |                  |-----> Conn(s) --->|

Backpressure
------------

The queue holds a single pending stream. While nobody accepts, the next
handler blocks inside put(), which in turn holds the host task that awaited
it. How many more streams queue up behind that is decided by the host's own
handler concurrency.

Cancellation
------------

close() sets an event that every waiting put() and get() races against:

    - accept() callers raise ListenerClosedError.
    - Handlers still holding a stream close it instead of handing it off.
    - A stream left in the queue is closed as well.

Discarding those streams is the only place the listener drops data. An
accept() that is itself cancelled after taking a stream puts it back for
the next caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from types import TracebackType
from typing import TypeVar

from .addr import Addr
from .config import HANDOFF_CAPACITY
from .conn import Conn
from .errors import ListenerClosedError
from .host import Host, Stream
from .types import ProtocolId

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Listener:
    """
    Accepts connections for one protocol on one host.

    Build with listen(). The listener stays registered with the host until
    close() is called.

    Example usage:
        listener = listen(host, "/echo/1.0.0")
        async for conn in listener:
            asyncio.create_task(serve(conn))
    """

    def __init__(self, host: Host, protocol_id: ProtocolId) -> None:
        self._host = host
        self._protocol_id = protocol_id
        self._addr = Addr(host.peer_id)
        self._closed = asyncio.Event()
        self._streams: asyncio.Queue[Stream] = asyncio.Queue(maxsize=HANDOFF_CAPACITY)

    def __repr__(self) -> str:
        return f"Listener({self._addr}, {self._protocol_id!r})"

    @property
    def addr(self) -> Addr:
        """The host's own identity as an address."""
        return self._addr

    @property
    def protocol_id(self) -> ProtocolId:
        """Protocol this listener serves."""
        return self._protocol_id

    @property
    def closed(self) -> bool:
        """True once close() was called."""
        return self._closed.is_set()

    async def accept(self) -> Conn:
        """
        Wait for the next inbound stream and wrap it in a Conn.

        Concurrent callers compete; each stream goes to exactly one of them.

        Raises:
            ListenerClosedError: If the listener is or becomes closed.
        """
        if self._closed.is_set():
            raise ListenerClosedError(f"Listener for {self._protocol_id} is closed")

        get = asyncio.ensure_future(self._streams.get())
        try:
            task = await self._until_closed(get)
        except asyncio.CancelledError:
            if get.done() and not get.cancelled():
                await self._restore(get.result())
            raise
        if task is None:
            raise ListenerClosedError(f"Listener for {self._protocol_id} is closed")

        stream = task.result()
        if self._closed.is_set():
            # Won the queue but lost to close(): no accept may succeed now.
            await self._discard(stream)
            raise ListenerClosedError(f"Listener for {self._protocol_id} is closed")

        return Conn(stream)

    async def close(self) -> None:
        """
        Stop accepting and unregister from the host.

        Cancellation takes effect before unregistering, so blocked accept()
        calls return even if unregistering fails. Failures closing pending
        streams are logged, never raised.

        Raises:
            RegistrationError: If the host fails to remove the handler.
        """
        if self._closed.is_set():
            return

        self._closed.set()
        try:
            await self._discard_pending()
        finally:
            self._host.remove_stream_handler(self._protocol_id)
        logger.debug("Closed listener for %s on %s", self._protocol_id, self._addr)

    async def _handle_stream(self, stream: Stream) -> None:
        """Hand an inbound stream to accept(), or close it once the listener closes."""
        if self._closed.is_set():
            await self._discard(stream)
            return

        if await self._until_closed(self._streams.put(stream)) is None:
            await self._discard(stream)
        elif self._closed.is_set():
            # The put landed in the slot close() just drained.
            await self._discard_pending()

    async def _until_closed(self, aw: Awaitable[T]) -> asyncio.Future[T] | None:
        """
        Race aw against the close event.

        Returns the finished task of aw, or None if the listener closed first.
        A queue operation cancelled here leaves the queue unchanged.
        """
        task = asyncio.ensure_future(aw)
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({task, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            if not task.done():
                task.cancel()

        if task.done() and not task.cancelled():
            return task
        return None

    async def _discard_pending(self) -> None:
        while not self._streams.empty():
            await self._discard(self._streams.get_nowait())

    async def _restore(self, stream: Stream) -> None:
        """Return a stream taken by a cancelled accept() to the queue, or close it."""
        if not self._closed.is_set() and not self._streams.full():
            self._streams.put_nowait(stream)
            return
        await self._discard(stream)

    async def _discard(self, stream: Stream) -> None:
        logger.debug(
            "Listener for %s dropping stream from %s",
            self._protocol_id,
            stream.remote_peer,
        )
        try:
            await stream.close()
        except Exception as e:
            logger.debug("Closing dropped stream from %s failed: %s", stream.remote_peer, e)

    def __aiter__(self) -> AsyncIterator[Conn]:
        return self._accept_loop()

    async def _accept_loop(self) -> AsyncIterator[Conn]:
        while True:
            try:
                conn = await self.accept()
            except ListenerClosedError:
                return
            yield conn

    async def __aenter__(self) -> Listener:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


def listen(host: Host, protocol_id: ProtocolId) -> Listener:
    """
    Create a listener for inbound streams of protocol_id on host.

    Returns immediately; connections are obtained with accept().

    Raises:
        RegistrationError: If the host rejects the handler, e.g. because
            another listener already serves protocol_id.
    """
    listener = Listener(host, protocol_id)
    host.set_stream_handler(protocol_id, listener._handle_stream)
    logger.debug("Listening for %s on %s", protocol_id, listener.addr)
    return listener
