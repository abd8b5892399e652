"""
Addresses built from peer identities.

Generic stream code expects an address with a network family and a text
form. Here the peer identity stands in for an IP and port pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .peer_id import PeerId

NETWORK: Final = "libp2p"
"""Network family reported by every Addr, distinct from "tcp" and "udp"."""


@dataclass(frozen=True, slots=True)
class Addr:
    """An address naming a peer by its identity."""

    peer_id: PeerId
    """The wrapped identity."""

    @property
    def network(self) -> str:
        """Return the network family, always NETWORK."""
        return NETWORK

    def __str__(self) -> str:
        return str(self.peer_id)
