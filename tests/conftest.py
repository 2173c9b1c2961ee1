"""
pytest configuration and fixtures.
"""

import asyncio
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from signaling_client.config import ClientSettings
from signaling_client.observer import SignalingObserver
from signaling_client.session import SignalingClient
from signaling_client.state import ServerAddress


class RecordingObserver(SignalingObserver):
    """Observer that records every callback as a tuple."""

    def __init__(self) -> None:
        self.events: List[Tuple] = []

    def on_server_connection_failure(self) -> None:
        self.events.append(("connection_failure",))

    def on_signed_in(self) -> None:
        self.events.append(("signed_in",))

    def on_disconnected(self) -> None:
        self.events.append(("disconnected",))

    def on_peer_connected(self, peer_id: int, name: str) -> None:
        self.events.append(("peer_connected", peer_id, name))

    def on_peer_disconnected(self, peer_id: int) -> None:
        self.events.append(("peer_disconnected", peer_id))

    def on_message_from_peer(self, peer_id: int, message: str) -> None:
        self.events.append(("message", peer_id, message))

    def on_message_sent(self, err: int) -> None:
        self.events.append(("message_sent", err))

    def count(self, kind: str) -> int:
        return sum(1 for event in self.events if event[0] == kind)


class FakeChannel:
    """Channel double: records calls, lets tests fire connect/read/close events."""

    def __init__(self, name, on_connect, on_read, on_close) -> None:
        self.name = name
        self._on_connect = on_connect
        self._on_read = on_read
        self._on_close = on_close
        self.is_closed = True
        self.fail_connect = False
        self.connect_calls: List[ServerAddress] = []
        self.sent: List[bytes] = []
        self.close_calls = 0

    def connect(self, address: ServerAddress) -> bool:
        if self.fail_connect or not self.is_closed:
            return False
        self.connect_calls.append(ServerAddress(address.host, address.port))
        self.is_closed = False
        return True

    def send(self, data: bytes) -> int:
        self.sent.append(data)
        return len(data)

    def close(self) -> None:
        self.close_calls += 1
        self.is_closed = True

    def fire_connect(self) -> None:
        self._on_connect(self)

    def fire_read(self, data: bytes) -> None:
        self._on_read(self, data)

    def fire_close(self, err: int = 0) -> None:
        self.is_closed = True
        self._on_close(self, err)


class FakeChannelFactory:
    def __init__(self) -> None:
        self.channels: Dict[str, FakeChannel] = {}

    def __call__(self, name, on_connect, on_read, on_close) -> FakeChannel:
        channel = FakeChannel(name, on_connect, on_read, on_close)
        self.channels[name] = channel
        return channel

    @property
    def control(self) -> FakeChannel:
        return self.channels["control"]

    @property
    def hanging_get(self) -> FakeChannel:
        return self.channels["hanging-get"]


def http_response(
    body: bytes = b"",
    pragma: Optional[int] = None,
    status: str = "200 OK",
    close: bool = False,
) -> bytes:
    """Build a server response the way the signaling server frames them."""
    lines = [f"HTTP/1.0 {status}"]
    if pragma is not None:
        lines.append(f"Pragma: {pragma}")
    lines.append(f"Content-Length: {len(body)}")
    if close:
        lines.append("Connection: close")
    return ("\r\n".join(lines) + "\r\n\r\n").encode() + body


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(server="127.0.0.1", port=8888, name="carol", reconnect_delay=0.01)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def channels() -> FakeChannelFactory:
    return FakeChannelFactory()


@pytest.fixture
def client(settings, observer, channels) -> SignalingClient:
    signaling = SignalingClient(settings, channel_factory=channels)
    signaling.register_observer(observer)
    return signaling


@pytest.fixture
def signed_in_client(client, channels, observer) -> SignalingClient:
    """Client signed in as id 3 with dave (2) in the roster and an idle control channel."""
    client.connect("127.0.0.1", 8888, "carol")
    channels.control.fire_connect()
    channels.control.fire_read(http_response(b"dave,2,1\n", pragma=3))
    channels.control.fire_close(0)
    channels.hanging_get.fire_connect()
    observer.events.clear()
    return client


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class FakeSignalingServer:
    """Loopback signaling server answering sign_in, wait, message and sign_out."""

    def __init__(self, my_id: int = 1, roster: bytes = b"bob,2,1\n") -> None:
        self.my_id = my_id
        self.roster = roster
        self.requests: List[str] = []
        self.messages: List[Tuple[str, bytes]] = []
        self.pending_waits: List[bytes] = [http_response(b"hi", pragma=2, close=True)]
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: List[asyncio.StreamWriter] = []
        self.port = 0

    async def start(self, port: int = 0) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", port)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        try:
            head = await reader.readuntil(b"\r\n\r\n")
        except (asyncio.IncompleteReadError, ConnectionError):
            writer.close()
            return
        request_line = head.split(b"\r\n", 1)[0].decode()
        self.requests.append(request_line)
        path = request_line.split(" ")[1]

        if path.startswith("/sign_in"):
            response = http_response(self.roster, pragma=self.my_id, close=True)
        elif path.startswith("/wait"):
            if not self.pending_waits:
                # long-poll sem eventos: segura até o cliente fechar
                await reader.read(1)
                writer.close()
                return
            response = self.pending_waits.pop(0)
        elif path.startswith("/message"):
            length = 0
            for line in head.split(b"\r\n"):
                if line.startswith(b"Content-Length: "):
                    length = int(line.split(b": ", 1)[1])
            body = await reader.readexactly(length)
            self.messages.append((path, body))
            response = http_response(pragma=self.my_id, close=True)
        elif path.startswith("/sign_out"):
            response = http_response(pragma=self.my_id, close=True)
        else:
            response = http_response(status="404 Not Found", close=True)

        writer.write(response)
        await writer.drain()
        writer.close()
