"""
secp256k1 identity keys.

A host's PeerId is derived from the compressed (33-byte) public key of its
identity keypair, which yields the familiar "16Uiu2..." text form.
"""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .peer_id import KeyType, PeerId

__all__ = [
    "IdentityKeypair",
]


@dataclass(frozen=True, slots=True)
class IdentityKeypair:
    """
    secp256k1 keypair backing a peer identity.

    Attributes:
        private_key: The secp256k1 private key.
    """

    private_key: ec.EllipticCurvePrivateKey

    @classmethod
    def generate(cls) -> IdentityKeypair:
        """Generate a fresh random keypair."""
        return cls(private_key=ec.generate_private_key(ec.SECP256K1()))

    @classmethod
    def from_bytes(cls, data: bytes) -> IdentityKeypair:
        """
        Load a keypair from a raw private scalar.

        Args:
            data: 32-byte big-endian private key.

        Raises:
            ValueError: If data is not a valid secp256k1 private key.
        """
        if len(data) != 32:
            raise ValueError(f"Expected 32 bytes, got {len(data)}")

        private_key = ec.derive_private_key(int.from_bytes(data, "big"), ec.SECP256K1())
        return cls(private_key=private_key)

    def private_key_bytes(self) -> bytes:
        """Return the 32-byte private scalar."""
        return self.private_key.private_numbers().private_value.to_bytes(32, "big")

    def public_key_bytes(self) -> bytes:
        """Return the 33-byte compressed public key."""
        return self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.CompressedPoint,
        )

    def to_peer_id(self) -> PeerId:
        """Derive the PeerId for this keypair."""
        return PeerId.from_public_key(KeyType.SECP256K1, self.public_key_bytes())
