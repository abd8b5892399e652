"""
Connection adapter over a host stream.

Conn gives a stream the shape generic stream code expects: read, write,
close, a local and a remote address, and absolute deadlines.

Deadlines
---------

The Stream interface has no deadline primitive, so Conn tracks one deadline
per direction and enforces it around each call. A deadline is a wall-clock
POSIX timestamp (the scale of time.time()) or None for no deadline.

    - An operation started after its deadline passed fails at once.
    - Moving a deadline re-arms operations already waiting in that direction.
    - When a deadline elapses mid-operation the stream call is cancelled and
      DeadlineExceededError is raised.

The error persists until the deadline is moved into the future or cleared.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from types import TracebackType
from typing import TypeVar

from .addr import Addr
from .errors import DeadlineExceededError, StreamClosedError
from .host import Stream
from .peer_id import PeerId
from .types import ProtocolId

T = TypeVar("T")


class _Deadline:
    """One direction's deadline plus a signal fired whenever it changes."""

    __slots__ = ("_when", "_changed")

    def __init__(self) -> None:
        self._when: float | None = None
        self._changed = asyncio.Event()

    def set(self, when: float | None) -> None:
        self._when = when

        # Wake waiters of the old deadline; new waiters get a fresh event.
        self._changed.set()
        self._changed = asyncio.Event()

    def remaining(self) -> float | None:
        if self._when is None:
            return None
        return max(0.0, self._when - time.time())

    async def run(self, operation: str, aw: Awaitable[T]) -> T:
        """Await aw, failing with DeadlineExceededError when the deadline passes."""
        if self.remaining() == 0.0:
            # Do not start the stream call at all.
            if asyncio.iscoroutine(aw):
                aw.close()
            raise DeadlineExceededError(operation)

        task = asyncio.ensure_future(aw)
        try:
            while True:
                changed = asyncio.ensure_future(self._changed.wait())
                try:
                    done, _ = await asyncio.wait(
                        {task, changed},
                        timeout=self.remaining(),
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                finally:
                    changed.cancel()

                # A finished operation wins over a deadline firing at the same time.
                if task in done:
                    return task.result()
                if changed in done:
                    continue
                raise DeadlineExceededError(operation)
        finally:
            if not task.done():
                task.cancel()


class Conn:
    """
    A bidirectional connection wrapping exactly one stream.

    Conn adds no buffering, framing or retries. Bytes arrive in the order
    and with the reliability of the underlying stream.

    Example usage:
        conn = await dial(host, server_id, "/echo/1.0.0")
        conn.set_deadline(time.time() + 5)
        await conn.write(b"ping")
        reply = await conn.read()
        await conn.close()
    """

    __slots__ = (
        "_stream",
        "_local_addr",
        "_remote_addr",
        "_read_deadline",
        "_write_deadline",
        "_closed",
    )

    def __init__(
        self,
        stream: Stream,
        local_peer: PeerId | None = None,
        remote_peer: PeerId | None = None,
    ) -> None:
        """
        Wrap a stream.

        Args:
            stream: The stream to own. It must not be used directly afterwards.
            local_peer: Identity for local_addr. Defaults to stream.local_peer.
            remote_peer: Identity for remote_addr. Defaults to stream.remote_peer.
        """
        self._stream = stream
        self._local_addr = Addr(local_peer if local_peer is not None else stream.local_peer)
        self._remote_addr = Addr(remote_peer if remote_peer is not None else stream.remote_peer)
        self._read_deadline = _Deadline()
        self._write_deadline = _Deadline()
        self._closed = False

    def __repr__(self) -> str:
        return f"Conn({self._local_addr} -> {self._remote_addr}, {self.protocol_id!r})"

    @property
    def stream(self) -> Stream:
        """The wrapped stream."""
        return self._stream

    @property
    def protocol_id(self) -> ProtocolId:
        """Protocol of the wrapped stream."""
        return self._stream.protocol_id

    @property
    def local_addr(self) -> Addr:
        """Address of our end."""
        return self._local_addr

    @property
    def remote_addr(self) -> Addr:
        """Address of the other end."""
        return self._remote_addr

    @property
    def closed(self) -> bool:
        """True once close() was called."""
        return self._closed

    async def read(self, n: int = -1) -> bytes:
        """
        Read from the stream under the read deadline.

        Args:
            n: Maximum bytes to read. -1 means whatever is available.

        Returns:
            Data read, or empty bytes at end of stream.

        Raises:
            DeadlineExceededError: If the read deadline elapsed.
            StreamClosedError: If this connection was closed.
        """
        if self._closed:
            raise StreamClosedError("read on closed connection")
        return await self._read_deadline.run("read", self._stream.read(n))

    async def write(self, data: bytes) -> int:
        """
        Write all of data under the write deadline.

        A write cut short by its deadline may already have delivered a prefix
        of data; the stream does not report how much.

        Returns:
            Number of bytes written.

        Raises:
            DeadlineExceededError: If the write deadline elapsed.
            StreamClosedError: If this connection was closed.
        """
        if self._closed:
            raise StreamClosedError("write on closed connection")
        await self._write_deadline.run("write", self._stream.write(data))
        return len(data)

    async def close(self) -> None:
        """Close the stream. Only the first call reaches the stream."""
        if self._closed:
            return
        self._closed = True
        await self._stream.close()

    def set_deadline(self, when: float | None) -> None:
        """Set both the read and the write deadline."""
        self._read_deadline.set(when)
        self._write_deadline.set(when)

    def set_read_deadline(self, when: float | None) -> None:
        """Set the read deadline (POSIX timestamp) or clear it with None."""
        self._read_deadline.set(when)

    def set_write_deadline(self, when: float | None) -> None:
        """Set the write deadline (POSIX timestamp) or clear it with None."""
        self._write_deadline.set(when)

    async def __aenter__(self) -> Conn:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
