"""
Exception hierarchy for peerstream.

Errors are classified so that callers can branch on kind:

    - DeadlineExceededError is a TimeoutError: retry after moving the deadline.
    - StreamClosedError is a ConnectionError: the stream is gone for good.
    - ListenerClosedError is the shutdown signal of an accept loop.
"""

from __future__ import annotations


class PeerStreamError(Exception):
    """Base exception for all peerstream errors."""


class RegistrationError(PeerStreamError):
    """Raised when the host rejects registering or removing a stream handler."""


class ListenerClosedError(PeerStreamError):
    """Raised by accept() once the listener has been closed."""


class DeadlineExceededError(PeerStreamError, TimeoutError):
    """
    Raised when a read or write deadline elapses.

    A timed-out write may have delivered part of its data.

    Attributes:
        operation: "read" or "write".
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} deadline exceeded")


class StreamClosedError(PeerStreamError, ConnectionError):
    """Raised on I/O against a stream that was closed."""


class StreamResetError(StreamClosedError):
    """Raised on I/O against a stream that was aborted by either side."""


class HostError(PeerStreamError):
    """Base class for host-level failures while opening streams."""


class PeerUnreachableError(HostError):
    """Raised when the target peer is not known to the host's network."""


class ProtocolNotSupportedError(HostError):
    """Raised when the remote peer has no handler for the requested protocol."""


class HostClosedError(HostError):
    """Raised when using a host after it was closed."""
