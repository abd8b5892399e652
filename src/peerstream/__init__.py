"""
Connection and listener adapters over a peer-to-peer stream host.

Peer-to-peer hosts address peers by identity and multiplex many
protocol-tagged streams over one link. Generic networking code expects
something else: dial an address, accept connections in a loop, read and
write with deadlines. This package bridges the two:

    dial(host, peer_id, protocol_id)  -> Conn
    listen(host, protocol_id)         -> Listener
    await listener.accept()           -> Conn

Addresses are peer identities; their network family is NETWORK.

The host itself is an external collaborator described by the Host and
Stream Protocols. MemoryNetwork provides an in-process implementation.
"""

from .addr import NETWORK, Addr
from .config import HostConfig
from .conn import Conn
from .dial import dial
from .errors import (
    DeadlineExceededError,
    HostClosedError,
    HostError,
    ListenerClosedError,
    PeerStreamError,
    PeerUnreachableError,
    ProtocolNotSupportedError,
    RegistrationError,
    StreamClosedError,
    StreamResetError,
)
from .host import Host, Stream, StreamHandler
from .identity import IdentityKeypair
from .listener import Listener, listen
from .memory import MemoryHost, MemoryNetwork, MemoryStream
from .peer_id import PeerId
from .types import ProtocolId

__all__ = [
    # Adapter
    "dial",
    "listen",
    "Listener",
    "Conn",
    "Addr",
    "NETWORK",
    # Host interface
    "Host",
    "Stream",
    "StreamHandler",
    "ProtocolId",
    # Identity
    "PeerId",
    "IdentityKeypair",
    # In-memory host
    "MemoryNetwork",
    "MemoryHost",
    "MemoryStream",
    "HostConfig",
    # Errors
    "PeerStreamError",
    "RegistrationError",
    "ListenerClosedError",
    "DeadlineExceededError",
    "StreamClosedError",
    "StreamResetError",
    "HostError",
    "HostClosedError",
    "PeerUnreachableError",
    "ProtocolNotSupportedError",
]
