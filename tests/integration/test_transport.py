"""
Integration tests: real asyncio channels against a loopback signaling server.
"""

import asyncio
import errno
import socket

from signaling_client.config import ClientSettings
from signaling_client.session import SignalingClient
from signaling_client.state import ConnectionState, ServerAddress
from signaling_client.transport import Channel, ChannelState

from conftest import FakeSignalingServer, RecordingObserver, wait_for


def closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestChannel:
    def test_refused_connection_reports_errno(self):
        events = []

        async def scenario():
            channel = Channel(
                "control",
                on_connect=lambda ch: events.append("connect"),
                on_read=lambda ch, data: events.append(data),
                on_close=lambda ch, err: events.append(err),
            )
            assert channel.connect(ServerAddress("127.0.0.1", closed_port())) is True
            assert channel.state is ChannelState.CONNECTING
            assert channel.connect(ServerAddress("127.0.0.1", 1)) is False
            await wait_for(lambda: bool(events))
            assert channel.is_closed

        asyncio.run(scenario())
        assert events == [errno.ECONNREFUSED]

    def test_invalid_port_reports_close_event(self):
        events = []

        async def scenario():
            channel = Channel(
                "control",
                on_connect=lambda ch: events.append("connect"),
                on_read=lambda ch, data: events.append(data),
                on_close=lambda ch, err: events.append(err),
            )
            assert channel.connect(ServerAddress("127.0.0.1", 70000)) is True
            await wait_for(lambda: bool(events))
            assert channel.is_closed

        asyncio.run(scenario())
        assert len(events) == 1
        assert events[0] not in (0, "connect")

    def test_connect_outside_event_loop(self):
        channel = Channel("control", lambda ch: None, lambda ch, data: None, lambda ch, err: None)
        assert channel.connect(ServerAddress("127.0.0.1", 8888)) is False
        assert channel.is_closed

    def test_send_read_and_remote_close(self):
        events = []

        async def handle(reader, writer):
            data = await reader.readexactly(4)
            writer.write(data.upper())
            await writer.drain()
            writer.close()

        async def scenario():
            server = await asyncio.start_server(handle, "127.0.0.1", 0)
            port = server.sockets[0].getsockname()[1]
            channel = Channel(
                "control",
                on_connect=lambda ch: ch.send(b"ping"),
                on_read=lambda ch, data: events.append(data),
                on_close=lambda ch, err: events.append(err),
            )
            channel.connect(ServerAddress("127.0.0.1", port))
            await wait_for(lambda: 0 in events)
            server.close()
            await server.wait_closed()

        asyncio.run(scenario())
        assert b"".join(e for e in events if isinstance(e, bytes)) == b"PING"
        assert events[-1] == 0

    def test_local_close_is_silent(self):
        events = []

        async def handle(reader, writer):
            await reader.read(1)
            writer.close()

        async def scenario():
            server = await asyncio.start_server(handle, "127.0.0.1", 0)
            port = server.sockets[0].getsockname()[1]
            channel = Channel(
                "hanging-get",
                on_connect=lambda ch: events.append("connect"),
                on_read=lambda ch, data: events.append(data),
                on_close=lambda ch, err: events.append(err),
            )
            channel.connect(ServerAddress("127.0.0.1", port))
            await wait_for(lambda: "connect" in events)
            channel.close()
            assert channel.is_closed
            await asyncio.sleep(0.05)
            server.close()
            await server.wait_closed()

        asyncio.run(scenario())
        assert events == ["connect"]


class TestSession:
    def test_sign_in_message_and_sign_out(self):
        observer = RecordingObserver()
        server = FakeSignalingServer(my_id=1, roster=b"bob,2,1\n")

        async def scenario():
            await server.start()
            client = SignalingClient(ClientSettings(name="alice", reconnect_delay=0.05))
            client.register_observer(observer)
            try:
                client.connect("127.0.0.1", server.port, "alice")
                await wait_for(lambda: ("message", 2, "hi") in observer.events)
                assert client.id == 1
                assert client.peers() == {2: "bob"}
                assert client.state is ConnectionState.CONNECTED

                await wait_for(lambda: not client.is_sending_message())
                assert client.send_to_peer(2, "offer") is True
                await wait_for(lambda: len(server.messages) == 1)
                await wait_for(lambda: not client.is_sending_message())

                assert client.sign_out() is True
                await wait_for(lambda: ("disconnected",) in observer.events)
                assert client.state is ConnectionState.NOT_CONNECTED
            finally:
                client.close()
                await server.stop()

        asyncio.run(scenario())
        assert server.requests[0] == "GET /sign_in?alice HTTP/1.0"
        assert "GET /wait?peer_id=1 HTTP/1.0" in server.requests
        assert server.messages == [("/message?peer_id=1&to=2", b"offer")]
        assert server.requests[-1] == "GET /sign_out?peer_id=1 HTTP/1.0"
        assert observer.events[:2] == [("peer_connected", 2, "bob"), ("signed_in",)]
        assert observer.count("disconnected") == 1

    def test_refused_server_is_retried(self):
        observer = RecordingObserver()
        port = closed_port()
        server = FakeSignalingServer(my_id=5, roster=b"")

        async def scenario():
            client = SignalingClient(ClientSettings(name="alice", reconnect_delay=0.1))
            client.register_observer(observer)
            try:
                client.connect("127.0.0.1", port, "alice")
                await asyncio.sleep(0.05)
                assert client.state is ConnectionState.SIGNING_IN
                await server.start(port)
                await wait_for(lambda: ("signed_in",) in observer.events)
                assert client.id == 5
            finally:
                client.close()
                await server.stop()

        asyncio.run(scenario())
        assert ("connection_failure",) not in observer.events
