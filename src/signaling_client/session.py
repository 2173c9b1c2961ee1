"""Connection state machine for the signaling server session.

O cliente mantém dois canais com o servidor:

- ``control``: ações iniciadas localmente (sign-in, relay de mensagens,
  sign-out). Cada ação abre uma conexão, envia o buffer pendente em
  ``on_connect`` e espera uma única resposta.
- ``hanging-get``: long-poll que reenvia ``/wait`` sempre que a resposta
  anterior termina, para receber eventos empurrados pelo servidor.

Tudo roda na thread do event loop; nenhum método bloqueia.
"""
from __future__ import annotations

import asyncio
import errno
import logging
import socket
from typing import Awaitable, Callable, Dict, Optional

from .config import ClientSettings
from .framing import (
    MalformedResponseError,
    ServerResponse,
    SignalingError,
    is_response_complete,
    parse_server_response,
)
from .observer import SignalingObserver
from .peer_table import PeerTable, parse_entry, parse_roster_body
from .protocol import (
    BYE_MESSAGE,
    DEFAULT_SERVER_PORT,
    MAX_PORT,
    build_message,
    build_sign_in,
    build_sign_out,
    build_wait,
    is_hang_up,
)
from .state import ConnectionState, SafetyFlag, ServerAddress
from .transport import Channel


logger = logging.getLogger(__name__)

Resolver = Callable[[str, int], Awaitable[Optional[str]]]
ChannelFactory = Callable[..., Channel]


async def resolve_ipv4(host: str, port: int) -> Optional[str]:
    """Primeiro endereço IPv4 de ``host`` ou None."""

    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, family=socket.AF_INET, type=socket.SOCK_STREAM)
    for family, _, _, _, sockaddr in infos:
        if family == socket.AF_INET:
            return sockaddr[0]
    return None


class SignalingClient:
    """Sessão com o servidor de sinalização e relay de mensagens opacas."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        channel_factory: ChannelFactory = Channel,
        resolver: Optional[Resolver] = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self._observer: SignalingObserver = SignalingObserver()
        self._observer_registered = False
        self._resolver = resolver or resolve_ipv4
        self._state = ConnectionState.NOT_CONNECTED
        self._my_id = -1
        self._peers = PeerTable()
        self._server_address: Optional[ServerAddress] = None
        self._client_name = ""
        self._onconnect_data = b""
        self._control_data = bytearray()
        self._notification_data = bytearray()
        self._resolve_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._safety = SafetyFlag()

        self._control = channel_factory("control", self._on_connect, self._on_read, self._on_close)
        self._hanging_get = channel_factory(
            "hanging-get",
            self._on_hanging_get_connect,
            self._on_hanging_get_read,
            self._on_close,
        )

    # ------------------------------------------------------------------
    # Acessores
    # ------------------------------------------------------------------
    @property
    def id(self) -> int:
        return self._my_id

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def server_address(self) -> Optional[ServerAddress]:
        return self._server_address

    def is_connected(self) -> bool:
        return self._my_id != -1

    def peers(self) -> Dict[int, str]:
        return self._peers.snapshot()

    def is_sending_message(self) -> bool:
        return self._state is ConnectionState.CONNECTED and not self._control.is_closed

    def register_observer(self, observer: SignalingObserver) -> None:
        if self._observer_registered:
            raise RuntimeError("Observer já registrado")
        self._observer = observer
        self._observer_registered = True

    # ------------------------------------------------------------------
    # Comandos
    # ------------------------------------------------------------------
    def connect(self, server: str, port: int, client_name: str) -> None:
        """Inicia o sign-in; o resultado chega pelos callbacks do observer."""

        if self._state is not ConnectionState.NOT_CONNECTED:
            logger.warning("connect() chamado com o cliente em %s", self._state.value)
            self._observer.on_server_connection_failure()
            return

        if not server or not client_name:
            logger.warning("connect() exige servidor e nome")
            self._observer.on_server_connection_failure()
            return

        if port <= 0:
            port = DEFAULT_SERVER_PORT
        elif port > MAX_PORT:
            logger.warning("connect() com porta fora do intervalo: %s", port)
            self._observer.on_server_connection_failure()
            return

        address = ServerAddress(server, port)
        if address.is_unresolved():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.error("connect() precisa de um event loop para resolver %s", server)
                self._observer.on_server_connection_failure()
                return
            self._server_address = address
            self._client_name = client_name
            self._state = ConnectionState.RESOLVING
            logger.info("Resolvendo %s", server)
            self._resolve_task = loop.create_task(self._resolve(address))
        else:
            self._server_address = address
            self._client_name = client_name
            self._do_connect()

    def send_to_peer(self, peer_id: int, message: str) -> bool:
        if self._state is not ConnectionState.CONNECTED:
            logger.warning("send_to_peer() com o cliente em %s", self._state.value)
            return False
        if not self.is_connected() or peer_id < 0:
            logger.warning("send_to_peer() com peer inválido: %s", peer_id)
            return False
        if not self._control.is_closed:
            logger.warning("Canal de controle ocupado; mensagem para %s recusada", peer_id)
            return False

        self._onconnect_data = build_message(self._my_id, peer_id, message)
        if not self._connect_control_socket():
            self._fail_session(SignalingError(f"não foi possível enviar para {peer_id}"))
            return False
        return True

    def send_hang_up(self, peer_id: int) -> bool:
        return self.send_to_peer(peer_id, BYE_MESSAGE)

    def sign_out(self) -> bool:
        if self._state in (ConnectionState.NOT_CONNECTED, ConnectionState.SIGNING_OUT):
            return True

        if not self._hanging_get.is_closed:
            self._hanging_get.close()

        if not self._control.is_closed:
            # O sign-out sai quando o canal de controle fechar.
            self._state = ConnectionState.SIGNING_OUT_WAITING
            logger.info("Sign-out adiado: canal de controle ocupado")
            return True

        if self._my_id == -1:
            # Sign-in nunca completou; não há sessão no servidor.
            logger.info("Sign-out antes do sign-in; encerrando localmente")
            self.close()
            return True

        self._state = ConnectionState.SIGNING_OUT
        self._onconnect_data = build_sign_out(self._my_id)
        if not self._connect_control_socket():
            self._fail_session(SignalingError("não foi possível enviar sign-out"))
            return False
        return True

    def close(self) -> None:
        self._safety.invalidate()
        self._safety = SafetyFlag()
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        if self._resolve_task is not None:
            self._resolve_task.cancel()
            self._resolve_task = None

        self._control.close()
        self._hanging_get.close()
        self._onconnect_data = b""
        self._control_data.clear()
        self._notification_data.clear()
        self._peers.clear()
        self._my_id = -1
        self._state = ConnectionState.NOT_CONNECTED

    # ------------------------------------------------------------------
    # Conexão
    # ------------------------------------------------------------------
    async def _resolve(self, address: ServerAddress) -> None:
        try:
            resolved = await self._resolver(address.host, address.port)
        except (OSError, ValueError) as exc:
            logger.warning("Falha ao resolver %s: %s", address.host, exc)
            resolved = None
        self._resolve_task = None
        self._on_resolve_result(address, resolved)

    def _on_resolve_result(self, address: ServerAddress, resolved: Optional[str]) -> None:
        if self._state is not ConnectionState.RESOLVING or address is not self._server_address:
            return
        if not resolved:
            logger.warning("Nenhum endereço IPv4 para %s", address.host)
            self._state = ConnectionState.NOT_CONNECTED
            self._observer.on_server_connection_failure()
            return
        logger.info("%s resolvido para %s", address.host, resolved)
        address.host = resolved
        self._do_connect()

    def _do_connect(self) -> None:
        self._control.close()
        self._hanging_get.close()
        self._control_data.clear()
        self._notification_data.clear()
        self._onconnect_data = build_sign_in(self._client_name)

        logger.info("Conectando em %s como %s", self._server_address, self._client_name)
        if self._connect_control_socket():
            self._state = ConnectionState.SIGNING_IN
        else:
            self.close()
            self._observer.on_server_connection_failure()

    def _connect_control_socket(self) -> bool:
        assert self._server_address is not None
        return self._control.connect(self._server_address)

    def _schedule_reconnect(self) -> None:
        loop = asyncio.get_running_loop()
        delay = self.settings.reconnect_delay
        logger.warning("Conexão recusada; nova tentativa em %.1f segundos", delay)
        self._retry_handle = loop.call_later(delay, self._retry_connect, self._safety)

    def _retry_connect(self, safety: SafetyFlag) -> None:
        if not safety.alive:
            return
        self._retry_handle = None
        self._do_connect()

    def _rearm_hanging_get(self) -> None:
        assert self._server_address is not None
        if not self._hanging_get.is_closed:
            return
        if not self._hanging_get.connect(self._server_address):
            logger.error("Não foi possível reabrir o long-poll")
            self._fail_session(SignalingError("long-poll indisponível"))

    def _fail_session(self, exc: SignalingError) -> None:
        logger.error("Sessão encerrada: %s", exc)
        self.close()
        self._observer.on_disconnected()

    # ------------------------------------------------------------------
    # Eventos do canal de controle
    # ------------------------------------------------------------------
    def _on_connect(self, channel: Channel) -> None:
        if not self._onconnect_data:
            logger.warning("[%s] conectado sem requisição pendente", channel.name)
            return
        data, self._onconnect_data = self._onconnect_data, b""
        logger.debug("[%s] -> %r", channel.name, data.split(b"\r\n", 1)[0])
        channel.send(data)

    def _on_read(self, channel: Channel, data: bytes) -> None:
        self._control_data += data
        if not is_response_complete(self._control_data):
            return
        raw = bytes(self._control_data)
        self._control_data.clear()

        try:
            response = parse_server_response(raw)
        except MalformedResponseError as exc:
            self._fail_session(exc)
            return

        if self._my_id == -1:
            if not self._handle_sign_in_response(response):
                return
        elif self._state is ConnectionState.SIGNING_OUT:
            logger.info("Sign-out confirmado pelo servidor")
            self.close()
            self._observer.on_disconnected()
            return

        if self._state is ConnectionState.SIGNING_IN:
            self._enter_connected()

        if response.should_close and not channel.is_closed:
            channel.close()
            # Fechamento local não gera evento; avisamos a nós mesmos.
            self._on_close(channel, 0)

    def _handle_sign_in_response(self, response: ServerResponse) -> bool:
        if response.peer_id < 0:
            self._fail_session(MalformedResponseError("Resposta de sign-in sem Pragma"))
            return False

        self._my_id = response.peer_id
        logger.info("Sign-in aceito; id local %d", self._my_id)
        body = response.body.decode("utf-8", errors="replace")
        for entry in parse_roster_body(body):
            if entry.peer_id == self._my_id:
                continue
            self._peers.upsert_peer(entry.peer_id, entry.name)
            self._observer.on_peer_connected(entry.peer_id, entry.name)

        if self._state is ConnectionState.SIGNING_IN:
            self._enter_connected()
        self._observer.on_signed_in()
        return True

    def _enter_connected(self) -> None:
        self._state = ConnectionState.CONNECTED
        self._rearm_hanging_get()

    # ------------------------------------------------------------------
    # Eventos do long-poll
    # ------------------------------------------------------------------
    def _on_hanging_get_connect(self, channel: Channel) -> None:
        channel.send(build_wait(self._my_id))

    def _on_hanging_get_read(self, channel: Channel, data: bytes) -> None:
        self._notification_data += data
        if not is_response_complete(self._notification_data):
            return
        raw = bytes(self._notification_data)
        self._notification_data.clear()

        try:
            response = parse_server_response(raw)
        except MalformedResponseError as exc:
            self._fail_session(exc)
            return

        body = response.body.decode("utf-8", errors="replace")
        if response.peer_id == self._my_id:
            self._on_roster_notification(body)
        else:
            self._on_message_from_peer(response.peer_id, body)

        if response.should_close and not channel.is_closed:
            channel.close()
            self._on_close(channel, 0)
        elif self._state is ConnectionState.CONNECTED:
            self._rearm_hanging_get()

    def _on_roster_notification(self, body: str) -> None:
        entry = parse_entry(body)
        if entry is None or entry.peer_id == self._my_id:
            return
        if entry.connected:
            self._peers.upsert_peer(entry.peer_id, entry.name)
            self._observer.on_peer_connected(entry.peer_id, entry.name)
        else:
            self._peers.remove(entry.peer_id)
            self._observer.on_peer_disconnected(entry.peer_id)

    def _on_message_from_peer(self, peer_id: int, message: str) -> None:
        if is_hang_up(message):
            self._observer.on_peer_disconnected(peer_id)
        else:
            self._observer.on_message_from_peer(peer_id, message)

    # ------------------------------------------------------------------
    # Fechamento (ambos os canais)
    # ------------------------------------------------------------------
    def _on_close(self, channel: Channel, err: int) -> None:
        channel.close()

        if err != errno.ECONNREFUSED:
            if channel is self._hanging_get:
                if self._state is ConnectionState.CONNECTED:
                    self._rearm_hanging_get()
            else:
                self._observer.on_message_sent(err)
                if self._state is ConnectionState.SIGNING_OUT_WAITING:
                    self.sign_out()
        elif channel is self._control:
            if self._state is ConnectionState.SIGNING_OUT_WAITING:
                self.sign_out()
            else:
                self._schedule_reconnect()
        else:
            self._fail_session(SignalingError("long-poll recusado pelo servidor"))
