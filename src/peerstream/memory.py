"""
In-process host implementation.

MemoryNetwork connects any number of MemoryHosts living in one event loop.
Streams are pairs of byte pipes, so everything above the host interface
(listeners, dials, connections) runs exactly as over a real transport.

Stream semantics:
    - Each direction buffers up to HostConfig.max_buffer_bytes of the
      receiving host. A writer past that bound waits for the reader.
    - close() is a full close: the peer reads what was sent, then end of
      stream; our side stops reading and the peer's writes fail.
    - reset() aborts both ends; all I/O fails with StreamResetError.
"""

from __future__ import annotations

import asyncio
import logging

from .config import HostConfig
from .errors import (
    HostClosedError,
    HostError,
    PeerUnreachableError,
    ProtocolNotSupportedError,
    RegistrationError,
    StreamClosedError,
    StreamResetError,
)
from .host import StreamHandler
from .identity import IdentityKeypair
from .peer_id import PeerId
from .types import ProtocolId

logger = logging.getLogger(__name__)


class _Pipe:
    """One direction of a stream: a bounded byte buffer plus state flags."""

    __slots__ = ("buffer", "capacity", "eof", "reader_gone", "reset", "_changed")

    def __init__(self, capacity: int) -> None:
        self.buffer = bytearray()
        self.capacity = capacity
        # Writer closed: no more data will arrive.
        self.eof = False
        # Reader closed: further writes fail.
        self.reader_gone = False
        self.reset = False
        self._changed = asyncio.Event()

    def notify(self) -> None:
        """Wake every task waiting on this pipe."""
        self._changed.set()
        self._changed = asyncio.Event()

    async def wait(self) -> None:
        """Wait for the next notify()."""
        await self._changed.wait()


class MemoryStream:
    """One end of an in-memory stream."""

    def __init__(
        self,
        host: MemoryHost,
        protocol_id: ProtocolId,
        remote_peer: PeerId,
        inbound: _Pipe,
        outbound: _Pipe,
    ) -> None:
        self._host = host
        self._protocol_id = protocol_id
        self._remote_peer = remote_peer
        self._inbound = inbound
        self._outbound = outbound
        self._closed = False

    def __repr__(self) -> str:
        return f"MemoryStream({self.local_peer} -> {self._remote_peer}, {self._protocol_id!r})"

    @property
    def protocol_id(self) -> ProtocolId:
        """Protocol the stream was opened under."""
        return self._protocol_id

    @property
    def local_peer(self) -> PeerId:
        """Identity of the owning host."""
        return self._host.peer_id

    @property
    def remote_peer(self) -> PeerId:
        """Identity of the other end."""
        return self._remote_peer

    @property
    def is_reset(self) -> bool:
        """True if either side aborted the stream."""
        return self._inbound.reset

    def _check_open(self) -> None:
        if self._inbound.reset:
            raise StreamResetError(f"Stream {self._protocol_id} was reset")
        if self._closed:
            raise StreamClosedError(f"Stream {self._protocol_id} is closed")

    async def read(self, n: int = -1) -> bytes:
        """
        Read up to n bytes (all buffered bytes if n < 1).

        Waits while the buffer is empty and the peer is still open. Safe to
        cancel: nothing is consumed unless the call returns.

        Returns:
            Data read, or empty bytes once the peer closed and the buffer drained.

        Raises:
            StreamResetError: If the stream was reset.
            StreamClosedError: If we closed the stream.
        """
        pipe = self._inbound
        while True:
            self._check_open()

            if pipe.buffer:
                size = len(pipe.buffer) if n < 1 else min(n, len(pipe.buffer))
                data = bytes(pipe.buffer[:size])
                del pipe.buffer[:size]
                pipe.notify()
                return data

            if pipe.eof:
                return b""

            await pipe.wait()

    async def write(self, data: bytes) -> None:
        """
        Write all of data, waiting for buffer space as needed.

        Raises:
            StreamResetError: If the stream was reset.
            StreamClosedError: If either side closed the stream.
        """
        pipe = self._outbound
        offset = 0
        while True:
            self._check_open()
            if pipe.reader_gone:
                raise StreamClosedError(f"Stream {self._protocol_id} closed by remote")
            if offset >= len(data):
                return

            space = pipe.capacity - len(pipe.buffer)
            if space > 0:
                chunk = data[offset : offset + space]
                pipe.buffer += chunk
                offset += len(chunk)
                pipe.notify()
            else:
                await pipe.wait()

    async def close(self) -> None:
        """Close both directions. Repeated calls do nothing."""
        if self._closed:
            return
        self._closed = True

        if not self._inbound.reset:
            self._outbound.eof = True
            self._outbound.notify()

            self._inbound.reader_gone = True
            self._inbound.buffer.clear()
            self._inbound.notify()

        self._host._forget(self)

    async def reset(self) -> None:
        """Abort the stream on both ends, discarding buffered data."""
        for pipe in (self._inbound, self._outbound):
            if not pipe.reset:
                pipe.reset = True
                pipe.buffer.clear()
                pipe.notify()

        self._closed = True
        self._host._forget(self)


class MemoryHost:
    """
    A host attached to a MemoryNetwork.

    Each inbound stream runs its protocol handler in a dedicated task.
    Registering a second handler for the same protocol fails.
    """

    def __init__(
        self,
        network: MemoryNetwork,
        keypair: IdentityKeypair,
        config: HostConfig,
    ) -> None:
        self._network = network
        self._keypair = keypair
        self._peer_id = keypair.to_peer_id()
        self._config = config
        self._handlers: dict[ProtocolId, StreamHandler] = {}
        self._streams: set[MemoryStream] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    def __repr__(self) -> str:
        return f"MemoryHost({self._peer_id})"

    @property
    def peer_id(self) -> PeerId:
        """This host's identity."""
        return self._peer_id

    @property
    def keypair(self) -> IdentityKeypair:
        """Identity keypair the PeerId derives from."""
        return self._keypair

    @property
    def config(self) -> HostConfig:
        return self._config

    @property
    def protocols(self) -> list[ProtocolId]:
        """Protocols with a registered handler."""
        return list(self._handlers)

    @property
    def open_streams(self) -> int:
        """Number of streams not yet closed or reset on this host."""
        return len(self._streams)

    @property
    def closed(self) -> bool:
        return self._closed

    def set_stream_handler(self, protocol_id: ProtocolId, handler: StreamHandler) -> None:
        """
        Register the handler for inbound streams of protocol_id.

        Raises:
            RegistrationError: If the host is closed or protocol_id is taken.
        """
        if self._closed:
            raise RegistrationError(f"Host {self._peer_id} is closed")
        if protocol_id in self._handlers:
            raise RegistrationError(f"Handler already registered for {protocol_id}")
        self._handlers[protocol_id] = handler

    def remove_stream_handler(self, protocol_id: ProtocolId) -> None:
        """
        Unregister the handler for protocol_id.

        Raises:
            RegistrationError: If no handler is registered.
        """
        if self._handlers.pop(protocol_id, None) is None:
            raise RegistrationError(f"No handler registered for {protocol_id}")

    async def new_stream(self, peer_id: PeerId, protocol_id: ProtocolId) -> MemoryStream:
        """
        Open a stream to peer_id and start its handler on the remote host.

        Raises:
            HostClosedError: If this host is closed.
            PeerUnreachableError: If peer_id is this host or not on the network.
            ProtocolNotSupportedError: If the remote has no handler for protocol_id.
            HostError: If either host has too many open streams.
        """
        if self._closed:
            raise HostClosedError(f"Host {self._peer_id} is closed")
        if peer_id == self._peer_id:
            raise PeerUnreachableError(f"Cannot dial self ({peer_id})")

        remote = self._network.get(peer_id)
        if remote is None:
            raise PeerUnreachableError(f"Peer {peer_id} is not reachable")

        handler = remote._handlers.get(protocol_id)
        if handler is None:
            raise ProtocolNotSupportedError(f"Peer {peer_id} does not support {protocol_id}")

        if len(self._streams) >= self._config.max_streams:
            raise HostError(f"Stream limit reached ({self._config.max_streams})")
        if len(remote._streams) >= remote._config.max_streams:
            raise HostError(f"Peer {peer_id} stream limit reached ({remote._config.max_streams})")

        # Each pipe is bounded by its receiver's buffer setting.
        to_remote = _Pipe(remote._config.max_buffer_bytes)
        to_local = _Pipe(self._config.max_buffer_bytes)

        local = MemoryStream(self, protocol_id, peer_id, inbound=to_local, outbound=to_remote)
        inbound = MemoryStream(
            remote, protocol_id, self._peer_id, inbound=to_remote, outbound=to_local
        )

        self._streams.add(local)
        remote._spawn_handler(handler, inbound)
        return local

    def _spawn_handler(self, handler: StreamHandler, stream: MemoryStream) -> None:
        self._streams.add(stream)
        task = asyncio.create_task(self._run_handler(handler, stream))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_handler(self, handler: StreamHandler, stream: MemoryStream) -> None:
        try:
            await handler(stream)
        except Exception as e:
            logger.warning("Handler for %s failed on %r: %s", stream.protocol_id, stream, e)
            await stream.reset()

    def _forget(self, stream: MemoryStream) -> None:
        self._streams.discard(stream)

    async def close(self) -> None:
        """
        Leave the network, reset open streams and cancel running handlers.

        Registered handlers are kept so listeners can still unregister.
        """
        if self._closed:
            return
        self._closed = True
        self._network._remove(self)

        for stream in list(self._streams):
            await stream.reset()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class MemoryNetwork:
    """
    A set of in-memory hosts that can reach each other.

    Example usage:
        network = MemoryNetwork()
        server = network.create_host()
        client = network.create_host()
        listener = listen(server, "/echo/1.0.0")
        conn = await dial(client, server.peer_id, "/echo/1.0.0")
    """

    def __init__(self) -> None:
        self._hosts: dict[PeerId, MemoryHost] = {}

    def create_host(
        self,
        keypair: IdentityKeypair | None = None,
        config: HostConfig | None = None,
    ) -> MemoryHost:
        """
        Create a host and attach it to this network.

        Args:
            keypair: Identity to use. A fresh one is generated if omitted.
            config: Host settings. Defaults apply if omitted.

        Raises:
            ValueError: If a host with the same identity is already attached.
        """
        keypair = keypair if keypair is not None else IdentityKeypair.generate()
        host = MemoryHost(self, keypair, config if config is not None else HostConfig())
        if host.peer_id in self._hosts:
            raise ValueError(f"Peer {host.peer_id} is already on the network")

        self._hosts[host.peer_id] = host
        logger.debug("Host %s joined the network", host.peer_id)
        return host

    def get(self, peer_id: PeerId) -> MemoryHost | None:
        """Return the attached host with this identity, if any."""
        return self._hosts.get(peer_id)

    @property
    def peers(self) -> list[PeerId]:
        """Identities of all attached hosts."""
        return list(self._hosts)

    def _remove(self, host: MemoryHost) -> None:
        self._hosts.pop(host.peer_id, None)
        logger.debug("Host %s left the network", host.peer_id)

    async def close(self) -> None:
        """Close every attached host."""
        for host in list(self._hosts.values()):
            await host.close()
