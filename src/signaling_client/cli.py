"""Command-line interface for the signaling client."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, List, Optional

from .config import LOG_LEVELS, ConfigValidationError, log_level_value
from .session import SignalingClient

logger = logging.getLogger(__name__)


class CommandLineInterface:
    """Responsável pelos comandos `/connect`, `/peers`, `/msg`, etc.

    O ``input()`` roda numa thread dedicada; cada comando é repassado ao
    event loop com ``call_soon_threadsafe``, único ponto em que outra thread
    toca no cliente.
    """

    def __init__(
        self,
        client: SignalingClient,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        on_quit: Optional[Callable[[], None]] = None,
        prompt: str = "signaling> ",
    ) -> None:
        self.client = client
        self.loop = loop
        self.on_quit = on_quit
        self.prompt = prompt
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._output_callback: Optional[Callable[[str], None]] = None

    def attach_output(self, callback: Callable[[str], None]) -> None:
        """Permite redirecionar mensagens da CLI para testes/UI."""

        self._output_callback = callback

    def start(self) -> None:
        """Inicia o loop interativo em uma thread dedicada."""
        if self._thread and self._thread.is_alive():
            return

        def _loop() -> None:
            while not self._stop_event.is_set():
                try:
                    user_input = input(self.prompt)
                except (EOFError, KeyboardInterrupt):
                    self._dispatch("/quit")
                    break
                self._dispatch(user_input.strip())

        self._stop_event.clear()
        self._thread = threading.Thread(target=_loop, name="cli", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._thread = None

    def _dispatch(self, raw_command: str) -> None:
        if self.loop is None:
            self.handle_command(raw_command)
        else:
            self.loop.call_soon_threadsafe(self.handle_command, raw_command)

    def handle_command(self, raw_command: str) -> None:
        """Executa um comando; precisa rodar na thread do event loop."""
        if not raw_command or not raw_command.startswith("/"):
            return

        parts = raw_command.split()
        command = parts[0].lower()
        args = parts[1:]

        if command == "/connect":
            self._cmd_connect(args)
        elif command == "/peers":
            self._cmd_peers()
        elif command == "/msg":
            self._cmd_msg(raw_command.split(maxsplit=2)[1:])
        elif command == "/hangup":
            self._cmd_hangup(args)
        elif command == "/signout":
            self._cmd_signout()
        elif command == "/status":
            self._cmd_status()
        elif command == "/log":
            self._cmd_log(args)
        elif command == "/quit":
            self._cmd_quit()
        elif command == "/help":
            self._cmd_help()
        else:
            self._emit(f"Comando desconhecido: {command}")

    def _cmd_connect(self, args: List[str]) -> None:
        settings = self.client.settings
        server = args[0] if args else settings.server
        try:
            port = int(args[1]) if len(args) > 1 else settings.port
        except ValueError:
            self._emit(f"Porta inválida: {args[1]}")
            return
        name = args[2] if len(args) > 2 else settings.name
        self._emit(f"Conectando em {server}:{port} como {name}...")
        self.client.connect(server, port, name)

    def _cmd_peers(self) -> None:
        peers = self.client.peers()
        if not peers:
            self._emit("Nenhum peer conhecido")
            return
        for peer_id, name in peers.items():
            self._emit(f"  [{peer_id}] {name}")
        self._emit(f"\nTotal: {len(peers)} peers")

    def _parse_peer_id(self, raw: str) -> Optional[int]:
        try:
            return int(raw)
        except ValueError:
            self._emit(f"Peer inválido: {raw}")
            return None

    def _cmd_msg(self, args: List[str]) -> None:
        if len(args) < 2:
            self._emit("Uso: /msg <peer_id> <mensagem>")
            return
        peer_id = self._parse_peer_id(args[0])
        if peer_id is None:
            return
        message_text = args[1]
        if self.client.send_to_peer(peer_id, message_text):
            self._emit(f"-> [{peer_id}] {message_text}")
        else:
            self._emit(f"Erro: Falha ao enviar mensagem para {peer_id}")

    def _cmd_hangup(self, args: List[str]) -> None:
        if not args:
            self._emit("Uso: /hangup <peer_id>")
            return
        peer_id = self._parse_peer_id(args[0])
        if peer_id is None:
            return
        if not self.client.send_hang_up(peer_id):
            self._emit(f"Erro: Falha ao desligar {peer_id}")

    def _cmd_signout(self) -> None:
        self.client.sign_out()

    def _cmd_status(self) -> None:
        """Exibe estado da sessão e configurações atuais."""
        settings = self.client.settings
        config_file = settings.config_file if settings.config_file else "(padrão)"
        address = self.client.server_address or f"{settings.server}:{settings.port}"
        self._emit(f"Arquivo de config: {config_file}")
        self._emit(f"Servidor:          {address}")
        self._emit(f"Nome:              {settings.name}")
        self._emit(f"Estado:            {self.client.state.value}")
        self._emit(f"Id local:          {self.client.id}")
        self._emit(f"Peers:             {len(self.client.peers())}")

    def _cmd_log(self, args: List[str]) -> None:
        if not args:
            current_level = logging.getLevelName(logging.getLogger().getEffectiveLevel())
            self._emit(f"Nível de log atual: {current_level}")
            self._emit(f"Uso: /log <{'|'.join(LOG_LEVELS)}>")
            return

        try:
            level = log_level_value(args[0])
        except ConfigValidationError:
            self._emit(f"Nível inválido: {args[0]}. Use: {', '.join(LOG_LEVELS)}")
            return
        logging.getLogger().setLevel(level)
        self._emit(f"Nível de log alterado para: {args[0].upper()}")

    def _cmd_quit(self) -> None:
        self._emit("Encerrando cliente...")
        self.stop()
        if self.on_quit:
            self.on_quit()

    def _cmd_help(self) -> None:
        help_text = """
SESSÃO:
  /connect [host] [porta] [nome] - Sign-in no servidor
  /signout                       - Sign-out
  /status                        - Estado da sessão

PEERS & MENSAGENS:
  /peers                         - Listar peers do roster
  /msg <id> <texto>              - Enviar mensagem via servidor
  /hangup <id>                   - Enviar BYE

SISTEMA:
  /log <nível>                   - Ajustar nível de log
  /help                          - Mostrar esta ajuda
  /quit                          - Encerrar aplicação
"""
        self._emit(help_text)

    def _emit(self, message: str) -> None:
        if self._output_callback:
            self._output_callback(message)
        else:
            print(message)
