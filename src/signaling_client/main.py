"""Entry-point helper for running the signaling client."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .cli import CommandLineInterface
from .config import ClientSettings, ConfigValidationError
from .observer import ConsoleObserver
from .session import SignalingClient
from .state import ConnectionState


logger = logging.getLogger(__name__)

GREETING = "hello"
SIGN_OUT_TIMEOUT = 2.0


def find_default_config() -> Path | None:
    """Procura config.json no diretório atual."""
    config_in_cwd = Path.cwd() / "config.json"
    if config_in_cwd.exists():
        return config_in_cwd
    return None


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Signaling client")
    parser.add_argument("--config", type=Path, help="Caminho para arquivo de configuração", default=None)
    parser.add_argument("--server", help="Host do servidor de sinalização", default=None)
    parser.add_argument("--port", type=int, help="Porta do servidor de sinalização", default=None)
    parser.add_argument("--name", help="Nome exibido no roster", default=None)
    parser.add_argument("--log-level", help="Override de nível de log", default=None)
    parser.add_argument("--autoconnect", action="store_true", help="Conecta ao iniciar")
    parser.add_argument("--autocall", action="store_true", help="Envia saudação ao primeiro peer")
    return parser


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def load_settings(argv: Optional[List[str]] = None) -> ClientSettings:
    args = build_arg_parser().parse_args(argv)

    config_path = args.config if args.config else find_default_config()
    settings = ClientSettings.from_file(config_path)
    if args.server:
        settings.server = args.server
    if args.port is not None:
        settings.port = args.port
    if args.name:
        settings.name = args.name
    if args.log_level:
        settings.log_level = args.log_level.upper()
    settings.autoconnect = settings.autoconnect or args.autoconnect
    settings.autocall = settings.autocall or args.autocall
    settings.validate()
    return settings


async def wait_for_sign_out(client: SignalingClient, timeout: float = SIGN_OUT_TIMEOUT) -> None:
    """Faz sign-out e espera o servidor confirmar, até ``timeout`` segundos."""

    if client.is_connected():
        client.sign_out()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while client.state is not ConnectionState.NOT_CONNECTED and loop.time() < deadline:
            await asyncio.sleep(0.05)
    client.close()


async def run(settings: ClientSettings) -> None:
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    client = SignalingClient(settings)
    observer = ConsoleObserver(client, greeting=GREETING if settings.autocall else None)
    client.register_observer(observer)
    cli = CommandLineInterface(client, loop=loop, on_quit=shutdown_event.set)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except (NotImplementedError, RuntimeError):
            pass

    logger.debug("Configuração efetiva: %s", settings.to_dict())
    if settings.autoconnect:
        client.connect(settings.server, settings.port, settings.name)

    cli.start()
    print("Digite /help para ver os comandos disponíveis.\n")
    try:
        await shutdown_event.wait()
    finally:
        cli.stop()
        await wait_for_sign_out(client)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        settings = load_settings(argv)
    except (ConfigValidationError, ValueError) as exc:
        print(f"Configuração inválida: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
