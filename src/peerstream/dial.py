"""Client entry point: open a connection to a peer."""

from __future__ import annotations

import logging

from .conn import Conn
from .host import Host
from .peer_id import PeerId
from .types import ProtocolId

logger = logging.getLogger(__name__)


async def dial(host: Host, peer_id: PeerId, protocol_id: ProtocolId) -> Conn:
    """
    Open a connection to peer_id speaking protocol_id.

    The host does whatever it takes to reach the peer. Its errors propagate
    unchanged: retry policy belongs to the caller.

    Args:
        host: Host to dial from. Its identity becomes the local address.
        peer_id: Peer to dial. Becomes the remote address.
        protocol_id: Protocol to open the stream under.

    Returns:
        A connection owning the new stream.
    """
    stream = await host.new_stream(peer_id, protocol_id)
    logger.debug("Dialed %s for %s", peer_id, protocol_id)
    return Conn(stream, local_peer=host.peer_id, remote_peer=peer_id)
