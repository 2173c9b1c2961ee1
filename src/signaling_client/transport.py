"""Non-blocking byte channels backing the control and long-poll connections."""
from __future__ import annotations

import asyncio
import logging
import socket
from enum import Enum
from typing import Callable, Optional

from .state import ServerAddress


logger = logging.getLogger(__name__)


class ChannelState(Enum):
    CLOSED = "CLOSED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


class _ChannelProtocol(asyncio.Protocol):
    """Repassa os eventos do asyncio para o ``Channel`` dono."""

    def __init__(self, channel: "Channel") -> None:
        self._channel: Optional[Channel] = channel

    def detach(self) -> None:
        self._channel = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        if self._channel is None:
            transport.close()
            return
        self._channel._connection_made(transport)

    def data_received(self, data: bytes) -> None:
        if self._channel is not None:
            self._channel._data_received(data)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            channel._connection_lost(exc)


def error_code(exc: Optional[BaseException]) -> int:
    """0 para fechamento normal, ``errno`` para erros de socket."""

    if exc is None:
        return 0
    if isinstance(exc, OSError) and exc.errno:
        return exc.errno
    return -1


class Channel:
    """Conexão TCP com três eventos: conectado, dados recebidos e fechado.

    ``close()`` é silencioso: nenhum evento de fechamento é entregue para um
    fechamento iniciado localmente. Falhas de conexão (inclusive
    ``ECONNREFUSED``) chegam pelo evento de fechamento com o ``errno``.
    """

    def __init__(
        self,
        name: str,
        on_connect: Callable[["Channel"], None],
        on_read: Callable[["Channel", bytes], None],
        on_close: Callable[["Channel", int], None],
    ) -> None:
        self.name = name
        self._on_connect = on_connect
        self._on_read = on_read
        self._on_close = on_close
        self._state = ChannelState.CLOSED
        self._transport: Optional[asyncio.Transport] = None
        self._protocol: Optional[_ChannelProtocol] = None
        self._connect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is ChannelState.CLOSED

    def connect(self, address: ServerAddress) -> bool:
        """Inicia a conexão; o resultado chega via ``on_connect``/``on_close``.

        Retorna False se o canal não está fechado ou o socket não pôde ser criado.
        """
        if self._state is not ChannelState.CLOSED:
            logger.warning("[%s] connect com canal em %s", self.name, self._state.value)
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("[%s] connect fora de um event loop", self.name)
            return False
        try:
            sock = socket.socket(address.family, socket.SOCK_STREAM)
            sock.setblocking(False)
        except OSError as exc:
            logger.warning("[%s] não foi possível criar socket: %s", self.name, exc)
            return False

        self._state = ChannelState.CONNECTING
        self._connect_task = loop.create_task(self._open(loop, sock, address))
        return True

    async def _open(self, loop: asyncio.AbstractEventLoop, sock: socket.socket, address: ServerAddress) -> None:
        protocol = _ChannelProtocol(self)
        self._protocol = protocol
        try:
            await loop.sock_connect(sock, (address.host, address.port))
            await loop.create_connection(lambda: protocol, sock=sock)
        except asyncio.CancelledError:
            sock.close()
            raise
        except (OSError, OverflowError, ValueError) as exc:
            sock.close()
            if self._protocol is not protocol:
                return
            self._connect_task = None
            self._protocol = None
            self._state = ChannelState.CLOSED
            logger.debug("[%s] falha ao conectar em %s: %s", self.name, address, exc)
            self._on_close(self, error_code(exc))
            return
        self._connect_task = None

    def send(self, data: bytes) -> int:
        if self._state is not ChannelState.CONNECTED or self._transport is None:
            logger.warning("[%s] send com canal em %s", self.name, self._state.value)
            return -1
        self._transport.write(data)
        return len(data)

    def close(self) -> None:
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
        protocol, self._protocol = self._protocol, None
        if protocol is not None:
            protocol.detach()
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()
        self._state = ChannelState.CLOSED

    def _connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]
        self._state = ChannelState.CONNECTED
        logger.debug("[%s] conectado", self.name)
        self._on_connect(self)

    def _data_received(self, data: bytes) -> None:
        self._on_read(self, data)

    def _connection_lost(self, exc: Optional[Exception]) -> None:
        self._transport = None
        self._protocol = None
        self._connect_task = None
        self._state = ChannelState.CLOSED
        logger.debug("[%s] conexão encerrada: %s", self.name, exc)
        self._on_close(self, error_code(exc))
