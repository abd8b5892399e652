"""
Host and listener configuration.

Constants are the defaults. `HostConfig` bundles the tunables of the
in-memory host so tests can shrink buffers without patching modules.
"""

from typing import Final

from pydantic import Field

from .types import StrictBaseModel

MAX_BUFFER_BYTES: Final = 256 * 1024
"""Bytes buffered per stream direction before writers block."""

MAX_STREAMS: Final = 1024
"""Maximum number of concurrently open streams per host."""

HANDOFF_CAPACITY: Final = 1
"""Streams a listener holds while no accept call is waiting."""


class HostConfig(StrictBaseModel):
    """Runtime configuration for an in-memory host."""

    max_buffer_bytes: int = Field(default=MAX_BUFFER_BYTES, gt=0)
    """Receive buffer bound per stream; writes wait for the reader beyond it."""

    max_streams: int = Field(default=MAX_STREAMS, gt=0)
    """Open streams, inbound and outbound, allowed per host before new_stream fails."""
