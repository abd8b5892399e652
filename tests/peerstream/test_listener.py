"""Tests for the Listener accept loop."""

from __future__ import annotations

import asyncio

import pytest

from peerstream import (
    NETWORK,
    Conn,
    IdentityKeypair,
    Listener,
    ListenerClosedError,
    MemoryHost,
    PeerId,
    ProtocolNotSupportedError,
    RegistrationError,
    StreamClosedError,
    dial,
    listen,
)

PROTOCOL = "/listener-test/1.0.0"


class FailingCloseStream:
    """Stream double whose close always fails."""

    protocol_id = PROTOCOL

    def __init__(self, local_peer: PeerId, remote_peer: PeerId) -> None:
        self.local_peer = local_peer
        self.remote_peer = remote_peer

    async def read(self, n: int = -1) -> bytes:
        return b""

    async def write(self, data: bytes) -> None:
        pass

    async def close(self) -> None:
        raise StreamClosedError("close failed")

    async def reset(self) -> None:
        pass


class TestListen:
    """Tests for listen()."""

    async def test_registers_handler(self, server: MemoryHost) -> None:
        """The protocol becomes known to the host."""
        listen(server, PROTOCOL)
        assert PROTOCOL in server.protocols

    async def test_addr_is_host_identity(self, server: MemoryHost) -> None:
        """The listener's address is the host's PeerId."""
        listener = listen(server, PROTOCOL)

        assert str(listener.addr) == str(server.peer_id)
        assert listener.addr.network == NETWORK
        assert listener.addr is listener.addr

    async def test_second_listener_on_same_protocol_fails(self, server: MemoryHost) -> None:
        """Only one listener may serve a protocol on a host."""
        listen(server, PROTOCOL)
        with pytest.raises(RegistrationError, match="already registered"):
            listen(server, PROTOCOL)

    async def test_protocols_are_independent(self, server: MemoryHost) -> None:
        """Different protocols on one host each get a listener."""
        a = listen(server, "/a/1.0.0")
        b = listen(server, "/b/1.0.0")

        assert a.protocol_id == "/a/1.0.0"
        assert b.protocol_id == "/b/1.0.0"

    async def test_closed_host_rejects_listen(self, server: MemoryHost) -> None:
        """A closed host refuses new registrations."""
        await server.close()
        with pytest.raises(RegistrationError, match="closed"):
            listen(server, PROTOCOL)


class TestAccept:
    """Tests for Listener.accept()."""

    async def test_accept_wraps_dialed_stream(
        self, server: MemoryHost, client: MemoryHost
    ) -> None:
        """A dial produces an accepted Conn addressed from the server's view."""
        listener = listen(server, PROTOCOL)
        await dial(client, server.peer_id, PROTOCOL)

        conn = await asyncio.wait_for(listener.accept(), 1.0)

        assert isinstance(conn, Conn)
        assert conn.local_addr.peer_id == server.peer_id
        assert conn.remote_addr.peer_id == client.peer_id
        assert conn.local_addr.network == NETWORK

    async def test_accept_blocks_until_dial(self, server: MemoryHost, client: MemoryHost) -> None:
        """accept() waits for a stream to arrive."""
        listener = listen(server, PROTOCOL)
        accept = asyncio.create_task(listener.accept())

        await asyncio.sleep(0.02)
        assert not accept.done()

        await dial(client, server.peer_id, PROTOCOL)
        conn = await asyncio.wait_for(accept, 1.0)
        assert conn.remote_addr.peer_id == client.peer_id

    async def test_accept_loop(self, server: MemoryHost, client: MemoryHost) -> None:
        """Repeated accepts each return the next connection."""
        listener = listen(server, PROTOCOL)

        dialed = [await dial(client, server.peer_id, PROTOCOL) for _ in range(3)]
        for conn in dialed:
            await conn.write(b"hi")

        for _ in dialed:
            accepted = await asyncio.wait_for(listener.accept(), 1.0)
            assert await accepted.read() == b"hi"

    async def test_concurrent_accepts_get_distinct_streams(
        self, server: MemoryHost, client: MemoryHost
    ) -> None:
        """Each stream is delivered to exactly one of several waiting accepts."""
        listener = listen(server, PROTOCOL)
        accepts = [asyncio.create_task(listener.accept()) for _ in range(2)]
        await asyncio.sleep(0)

        first = await dial(client, server.peer_id, PROTOCOL)
        second = await dial(client, server.peer_id, PROTOCOL)
        await first.write(b"1")
        await second.write(b"2")

        accepted = await asyncio.wait_for(asyncio.gather(*accepts), 1.0)
        payloads = {await conn.read() for conn in accepted}
        assert payloads == {b"1", b"2"}

    async def test_other_protocol_not_delivered(
        self, server: MemoryHost, client: MemoryHost
    ) -> None:
        """A listener never sees streams dialed under another protocol."""
        first = listen(server, "/a/1.0.0")
        second = listen(server, "/b/1.0.0")

        await dial(client, server.peer_id, "/b/1.0.0")

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(first.accept(), 0.1)
        conn = await asyncio.wait_for(second.accept(), 1.0)
        assert conn.protocol_id == "/b/1.0.0"

    async def test_cancelled_accept_keeps_stream(
        self, server: MemoryHost, client: MemoryHost
    ) -> None:
        """A stream taken by a cancelled accept() goes to the next accept()."""
        listener = listen(server, PROTOCOL)

        # Cancel at each point of the hand-off, including after the dequeue.
        for yields in range(8):
            accept = asyncio.create_task(listener.accept())
            await asyncio.sleep(0)

            conn = await dial(client, server.peer_id, PROTOCOL)
            await conn.write(bytes([yields]))
            for _ in range(yields):
                await asyncio.sleep(0)
            accept.cancel()

            try:
                accepted = await accept
            except asyncio.CancelledError:
                accepted = await asyncio.wait_for(listener.accept(), 1.0)

            assert await accepted.read() == bytes([yields])
            assert listener._streams.empty()


class TestBackpressure:
    """Tests for the single-slot hand-off."""

    async def test_one_stream_pending_without_accept(
        self, server: MemoryHost, client: MemoryHost
    ) -> None:
        """With nobody accepting, one stream waits and later handlers block."""
        listener = listen(server, PROTOCOL)

        for _ in range(3):
            await dial(client, server.peer_id, PROTOCOL)
        await asyncio.sleep(0.02)

        assert listener._streams.qsize() == 1
        assert len(server._tasks) == 2

    async def test_blocked_handlers_drain_in_order_of_accepts(
        self, server: MemoryHost, client: MemoryHost
    ) -> None:
        """Accepting frees the slot for the next blocked handler."""
        listener = listen(server, PROTOCOL)

        for i in range(3):
            conn = await dial(client, server.peer_id, PROTOCOL)
            await conn.write(bytes([i]))
        await asyncio.sleep(0.02)

        received = []
        for _ in range(3):
            accepted = await asyncio.wait_for(listener.accept(), 1.0)
            received.append(await accepted.read())

        assert sorted(received) == [b"\x00", b"\x01", b"\x02"]
        assert listener._streams.empty()


class TestClose:
    """Tests for Listener.close()."""

    async def test_close_unblocks_accept(self, server: MemoryHost) -> None:
        """A blocked accept returns the cancellation error promptly."""
        listener = listen(server, PROTOCOL)
        accept = asyncio.create_task(listener.accept())
        await asyncio.sleep(0.01)

        await listener.close()

        with pytest.raises(ListenerClosedError):
            await asyncio.wait_for(accept, 0.5)

    async def test_accept_after_close_fails(self, server: MemoryHost, client: MemoryHost) -> None:
        """No accept succeeds once the listener is closed."""
        listener = listen(server, PROTOCOL)
        await listener.close()

        assert listener.closed
        for _ in range(2):
            with pytest.raises(ListenerClosedError):
                await listener.accept()

    async def test_close_unregisters(self, server: MemoryHost, client: MemoryHost) -> None:
        """After close, dials for the protocol are rejected by the host."""
        listener = listen(server, PROTOCOL)
        await listener.close()

        assert PROTOCOL not in server.protocols
        with pytest.raises(ProtocolNotSupportedError):
            await dial(client, server.peer_id, PROTOCOL)

    async def test_protocol_can_be_served_again(
        self, server: MemoryHost, client: MemoryHost
    ) -> None:
        """Closing frees the protocol for a new listener."""
        await listen(server, PROTOCOL).close()
        listener = listen(server, PROTOCOL)

        await dial(client, server.peer_id, PROTOCOL)
        assert await asyncio.wait_for(listener.accept(), 1.0)

    async def test_close_discards_pending_streams(
        self, server: MemoryHost, client: MemoryHost
    ) -> None:
        """Streams nobody accepted are closed, so dialers see end of stream."""
        listener = listen(server, PROTOCOL)
        dialed = [await dial(client, server.peer_id, PROTOCOL) for _ in range(2)]
        await asyncio.sleep(0.02)

        await listener.close()

        for conn in dialed:
            assert await asyncio.wait_for(conn.read(), 1.0) == b""
        assert server.open_streams == 0

    async def test_failing_stream_close_still_unregisters(self, server: MemoryHost) -> None:
        """A pending stream that fails to close neither escapes close() nor keeps the protocol."""
        listener = listen(server, PROTOCOL)
        stranger = IdentityKeypair.generate().to_peer_id()
        listener._streams.put_nowait(FailingCloseStream(server.peer_id, stranger))

        await listener.close()

        assert listener._streams.empty()
        assert PROTOCOL not in server.protocols
        listen(server, PROTOCOL)

    async def test_close_is_repeatable(self, server: MemoryHost) -> None:
        """A second close does nothing."""
        listener = listen(server, PROTOCOL)
        await listener.close()
        await listener.close()

    async def test_unregistration_failure_surfaces(self, server: MemoryHost) -> None:
        """close() reports a failing unregistration, but cancellation still holds."""
        listener = listen(server, PROTOCOL)
        accept = asyncio.create_task(listener.accept())
        await asyncio.sleep(0.01)
        server.remove_stream_handler(PROTOCOL)

        with pytest.raises(RegistrationError):
            await listener.close()

        with pytest.raises(ListenerClosedError):
            await asyncio.wait_for(accept, 0.5)

    async def test_context_manager_closes(self, server: MemoryHost) -> None:
        """Leaving the async with block closes the listener."""
        async with listen(server, PROTOCOL) as listener:
            assert isinstance(listener, Listener)

        assert listener.closed
        assert PROTOCOL not in server.protocols


class TestIteration:
    """Tests for async iteration over a listener."""

    async def test_iteration_ends_on_close(self, server: MemoryHost, client: MemoryHost) -> None:
        """The accept loop yields connections and stops cleanly on close."""
        listener = listen(server, PROTOCOL)
        seen: list[Conn] = []

        async def serve() -> None:
            async for conn in listener:
                seen.append(conn)

        task = asyncio.create_task(serve())
        for _ in range(2):
            await dial(client, server.peer_id, PROTOCOL)
        await asyncio.sleep(0.02)

        await listener.close()
        await asyncio.wait_for(task, 0.5)

        assert len(seen) == 2
