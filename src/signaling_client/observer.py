"""Callbacks the signaling client invokes on the call layer."""
from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Callable, Deque, Optional, Tuple

from .state import ConnectionState

if TYPE_CHECKING:
    from .session import SignalingClient


logger = logging.getLogger(__name__)


class SignalingObserver:
    """Interface do consumidor de eventos (camada de chamada).

    Todos os métodos são no-op; implementações sobrescrevem só o que usam.
    São chamados na thread do event loop e não devem bloquear.
    """

    def on_server_connection_failure(self) -> None:
        pass

    def on_signed_in(self) -> None:
        pass

    def on_disconnected(self) -> None:
        pass

    def on_peer_connected(self, peer_id: int, name: str) -> None:
        pass

    def on_peer_disconnected(self, peer_id: int) -> None:
        pass

    def on_message_from_peer(self, peer_id: int, message: str) -> None:
        pass

    def on_message_sent(self, err: int) -> None:
        pass


class ConsoleObserver(SignalingObserver):
    """Observer usado pelo ``main``: imprime roster e mensagens recebidas.

    Mantém uma fila de saída porque o cliente aceita um relay por vez; a fila
    anda quando o canal de controle é liberado (``on_message_sent``).
    """

    def __init__(
        self,
        client: Optional["SignalingClient"] = None,
        output: Optional[Callable[[str], None]] = None,
        greeting: Optional[str] = None,
    ) -> None:
        self.client = client
        self.greeting = greeting
        self._output = output or print
        self._outbox: Deque[Tuple[int, str]] = deque()
        self._greeted = False

    def queue_message(self, peer_id: int, message: str) -> None:
        self._outbox.append((peer_id, message))
        self._flush()

    def _flush(self) -> None:
        client = self.client
        if client is None or not self._outbox:
            return
        if client.state is not ConnectionState.CONNECTED or client.is_sending_message():
            return
        peer_id, message = self._outbox.popleft()
        if not client.send_to_peer(peer_id, message):
            logger.warning("Mensagem para %d descartada", peer_id)

    def on_server_connection_failure(self) -> None:
        self._outbox.clear()
        self._output("Falha ao conectar no servidor de sinalização")

    def on_signed_in(self) -> None:
        self._output("Sign-in concluído")

    def on_disconnected(self) -> None:
        self._outbox.clear()
        self._output("Desconectado do servidor de sinalização")

    def on_peer_connected(self, peer_id: int, name: str) -> None:
        self._output(f"+ [{peer_id}] {name}")
        if self.greeting and not self._greeted:
            self._greeted = True
            self.queue_message(peer_id, self.greeting)

    def on_peer_disconnected(self, peer_id: int) -> None:
        self._output(f"- [{peer_id}]")

    def on_message_from_peer(self, peer_id: int, message: str) -> None:
        self._output(f"[{peer_id}] {message}")

    def on_message_sent(self, err: int) -> None:
        if err:
            logger.warning("Envio terminou com erro %d", err)
        self._flush()
