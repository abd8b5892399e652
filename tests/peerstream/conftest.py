"""
Shared pytest fixtures for peerstream tests.

Provides an in-memory network with two attached hosts.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest

from peerstream import MemoryHost, MemoryNetwork

ECHO = "/echo/1.0.0"
"""Protocol used by most tests."""


@pytest.fixture
async def network() -> AsyncGenerator[MemoryNetwork]:
    """Provide a network that closes all of its hosts on teardown."""
    net = MemoryNetwork()
    yield net
    await net.close()


@pytest.fixture
def server(network: MemoryNetwork) -> MemoryHost:
    """Host playing the listening side."""
    return network.create_host()


@pytest.fixture
def client(network: MemoryNetwork) -> MemoryHost:
    """Host playing the dialing side."""
    return network.create_host()
