"""
Interfaces of the peer-to-peer host consumed by the adapter.

Only a narrow slice of a host is needed: its own identity, a registry of
per-protocol handlers for inbound streams, and the ability to open an
outbound stream. Anything satisfying these Protocols can back a Listener or
a dial, including the in-memory host in `peerstream.memory`.

The runtime_checkable decorator allows isinstance() checks, which is useful
for validation and testing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from .peer_id import PeerId
from .types import ProtocolId


@runtime_checkable
class Stream(Protocol):
    """
    An established, ordered, bidirectional byte stream between two peers.

    Example usage:
        stream = await host.new_stream(peer_id, "/echo/1.0.0")
        await stream.write(b"ping")
        reply = await stream.read()
        await stream.close()
    """

    @property
    def protocol_id(self) -> ProtocolId:
        """Protocol the stream was opened under."""
        ...

    @property
    def local_peer(self) -> PeerId:
        """Identity of our end."""
        ...

    @property
    def remote_peer(self) -> PeerId:
        """Identity of the other end."""
        ...

    async def read(self, n: int = -1) -> bytes:
        """
        Read data from the stream.

        Args:
            n: Maximum bytes to read. -1 means whatever is available.

        Returns:
            At least one byte, or empty bytes at end of stream.

        Raises:
            ConnectionError: If the stream was closed or reset.
        """
        ...

    async def write(self, data: bytes) -> None:
        """
        Write all of data to the stream.

        Raises:
            ConnectionError: If the stream was closed or reset.
        """
        ...

    async def close(self) -> None:
        """Close the stream. The peer reads end of stream after pending data."""
        ...

    async def reset(self) -> None:
        """Abort the stream in both directions without flushing."""
        ...


StreamHandler = Callable[[Stream], Awaitable[None]]
"""Coroutine the host awaits once per inbound stream of a protocol."""


@runtime_checkable
class Host(Protocol):
    """
    A peer-to-peer host that multiplexes protocol-tagged streams.

    Registration is keyed by protocol ID. A host may reject a second
    registration for the same ID by raising RegistrationError.
    """

    @property
    def peer_id(self) -> PeerId:
        """This host's own identity."""
        ...

    def set_stream_handler(self, protocol_id: ProtocolId, handler: StreamHandler) -> None:
        """
        Register the handler for inbound streams of protocol_id.

        Raises:
            RegistrationError: If the host rejects the registration.
        """
        ...

    def remove_stream_handler(self, protocol_id: ProtocolId) -> None:
        """
        Unregister the handler for protocol_id.

        Raises:
            RegistrationError: If no handler can be removed.
        """
        ...

    async def new_stream(self, peer_id: PeerId, protocol_id: ProtocolId) -> Stream:
        """
        Open a stream to peer_id speaking protocol_id.

        Raises:
            HostError: If the peer is unreachable or rejects the protocol.
        """
        ...
