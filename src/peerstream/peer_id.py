"""
Peer identities.

A PeerId is the multihash of a public key encoded in the libp2p-crypto
protobuf format:

    message PublicKey {
        required KeyType Type = 1;
        required bytes Data = 2;
    }

Encodings of at most 42 bytes are wrapped in an identity multihash; larger
ones are hashed with SHA-256. The canonical text form is Base58.

References:
    - https://github.com/libp2p/specs/blob/master/peer-ids/peer-ids.md
    - https://github.com/multiformats/multihash
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Final

__all__ = [
    "Base58",
    "KeyType",
    "MultihashCode",
    "PeerId",
]


class KeyType(IntEnum):
    """libp2p-crypto key type codes."""

    RSA = 0
    ED25519 = 1
    SECP256K1 = 2
    ECDSA = 3


class MultihashCode(IntEnum):
    """Multihash function codes used for PeerIds."""

    IDENTITY = 0x00
    """Wraps the data unchanged."""

    SHA256 = 0x12
    """SHA-256, 32-byte digest."""


_IDENTITY_THRESHOLD: Final = 42
"""Largest encoded key wrapped without hashing."""


def _uvarint(value: int) -> bytes:
    """Encode a non-negative integer as unsigned LEB128."""
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


class Base58:
    """Base58 with the Bitcoin alphabet (no 0, O, I or l)."""

    ALPHABET: Final[str] = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

    @classmethod
    def encode(cls, data: bytes) -> str:
        """Encode bytes; each leading zero byte becomes a leading '1'."""
        stripped = data.lstrip(b"\x00")
        num = int.from_bytes(stripped, "big")

        digits: list[str] = []
        while num:
            num, rem = divmod(num, 58)
            digits.append(cls.ALPHABET[rem])

        prefix = cls.ALPHABET[0] * (len(data) - len(stripped))
        return prefix + "".join(reversed(digits))

    @classmethod
    def decode(cls, text: str) -> bytes:
        """
        Decode a Base58 string.

        Raises:
            ValueError: If the string contains a character outside the alphabet.
        """
        num = 0
        for char in text:
            index = cls.ALPHABET.find(char)
            if index < 0:
                raise ValueError(f"Invalid Base58 character: {char!r}")
            num = num * 58 + index

        body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
        leading = len(text) - len(text.lstrip(cls.ALPHABET[0]))
        return b"\x00" * leading + body


@dataclass(frozen=True, slots=True)
class PeerId:
    """
    An opaque, immutable peer identifier.

    Equality and hashing follow the raw multihash bytes, so PeerIds can key
    dictionaries. String forms depend on the key type:

        - secp256k1: "16Uiu2..."
        - Ed25519: "12D3KooW..."
        - RSA and other large keys: "Qm..."
    """

    multihash: bytes
    """Raw multihash bytes."""

    def __str__(self) -> str:
        return Base58.encode(self.multihash)

    def __repr__(self) -> str:
        return f"PeerId({self!s})"

    def to_base58(self) -> str:
        """Return the canonical text form."""
        return str(self)

    def to_bytes(self) -> bytes:
        """Return the raw multihash bytes."""
        return self.multihash

    @classmethod
    def from_base58(cls, text: str) -> PeerId:
        """
        Parse the canonical text form.

        Raises:
            ValueError: If the text is empty or not valid Base58.
        """
        if not text:
            raise ValueError("Empty PeerId string")
        return cls(multihash=Base58.decode(text))

    @classmethod
    def from_bytes(cls, data: bytes) -> PeerId:
        """Wrap raw multihash bytes."""
        return cls(multihash=bytes(data))

    @classmethod
    def from_public_key(cls, key_type: KeyType, key_data: bytes) -> PeerId:
        """
        Derive a PeerId from a public key.

        Args:
            key_type: Algorithm of the key.
            key_data: Raw public key bytes in the algorithm's libp2p format.

        Returns:
            The derived PeerId.
        """
        # Deterministic protobuf: field 1 (varint) then field 2 (bytes).
        encoded = b"\x08" + _uvarint(key_type) + b"\x12" + _uvarint(len(key_data)) + key_data

        if len(encoded) <= _IDENTITY_THRESHOLD:
            code, digest = MultihashCode.IDENTITY, encoded
        else:
            code, digest = MultihashCode.SHA256, hashlib.sha256(encoded).digest()

        return cls(multihash=_uvarint(code) + _uvarint(len(digest)) + digest)
