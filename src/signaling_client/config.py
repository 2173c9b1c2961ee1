"""Configuration helpers for the signaling client.

Responsabilidades:
- Carregar ``config.json`` e aplicar defaults seguros.
- Permitir overrides vindos da linha de comando (servidor, porta, nome).
- Validar limites (porta, atraso de reconexão, nível de log).
"""
from __future__ import annotations

import json
import logging
import os
import socket
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .protocol import DEFAULT_SERVER_PORT, MAX_PORT, RECONNECT_DELAY_SECONDS


MAX_NAME_LENGTH = 256
MIN_PORT = 1
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidationError(ValueError):
    """Erro de validação de configuração."""
    pass


def default_peer_name() -> str:
    """``usuario@host``, usado quando nenhum nome é configurado."""

    user = os.environ.get("USER") or os.environ.get("USERNAME") or "user"
    return f"{user}@{socket.gethostname()}"


def validate_server(server: str) -> str:
    if not isinstance(server, str):
        raise ConfigValidationError(f"server deve ser string, recebido: {type(server).__name__}")
    if not server:
        raise ConfigValidationError("server não pode ser vazio")
    return server


def validate_name(name: str) -> str:
    """Valida o nome exibido no roster (não vazio, sem quebra de linha)."""
    if not isinstance(name, str):
        raise ConfigValidationError(f"name deve ser string, recebido: {type(name).__name__}")
    if len(name) == 0:
        raise ConfigValidationError("name não pode ser vazio")
    if len(name) > MAX_NAME_LENGTH:
        raise ConfigValidationError(f"name excede {MAX_NAME_LENGTH} caracteres: {len(name)}")
    if any(ch in name for ch in "\r\n, "):
        raise ConfigValidationError(f"name contém caracteres inválidos: {name!r}")
    return name


def validate_port(port: int) -> int:
    """Valida o campo port (1-65535)."""
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigValidationError(f"port deve ser inteiro, recebido: {type(port).__name__}")
    if port < MIN_PORT or port > MAX_PORT:
        raise ConfigValidationError(f"port deve estar entre {MIN_PORT} e {MAX_PORT}, recebido: {port}")
    return port


def validate_reconnect_delay(delay: float) -> float:
    if isinstance(delay, bool) or not isinstance(delay, (int, float)):
        raise ConfigValidationError(f"reconnect_delay deve ser numérico, recebido: {type(delay).__name__}")
    if delay <= 0:
        raise ConfigValidationError(f"reconnect_delay deve ser positivo, recebido: {delay}")
    return float(delay)


def validate_log_level(level: str) -> str:
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        raise ConfigValidationError(f"log_level inválido: {level!r}")
    return level.upper()


@dataclass(slots=True)
class ClientSettings:
    """Conjunto de parâmetros do cliente de sinalização.

    Os defaults apontam para um servidor local na porta padrão; ``port <= 0``
    passado a ``connect`` também cai na porta padrão.
    """

    server: str = "localhost"
    port: int = DEFAULT_SERVER_PORT
    name: str = field(default_factory=default_peer_name)
    reconnect_delay: float = RECONNECT_DELAY_SECONDS  # segundos entre tentativas com ECONNREFUSED
    autoconnect: bool = False
    autocall: bool = False  # envia saudação ao primeiro peer que aparecer
    log_level: str = "INFO"
    config_file: Optional[Path] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """Valida todos os campos.

        Raises:
            ConfigValidationError: Se algum campo estiver fora dos limites.
        """
        validate_server(self.server)
        validate_port(self.port)
        validate_name(self.name)
        validate_reconnect_delay(self.reconnect_delay)
        self.log_level = validate_log_level(self.log_level)

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "ClientSettings":
        """Carrega configurações de um arquivo JSON, se existir."""

        if path is None or not path.exists():
            return cls(config_file=path)

        with path.open("r", encoding="utf-8") as fp:
            raw_data = json.load(fp)
        if not isinstance(raw_data, dict):
            raise ConfigValidationError(f"{path} deve conter um objeto JSON")

        known_fields = {f.name for f in fields(cls)} - {"config_file", "extra"}
        init_kwargs: Dict[str, Any] = {
            key: value for key, value in raw_data.items() if key in known_fields
        }
        extra = {key: value for key, value in raw_data.items() if key not in known_fields}
        settings = cls(**init_kwargs, config_file=path)
        settings.extra.update(extra)
        settings.validate()  # Valida após carregar
        return settings

    def to_dict(self) -> Dict[str, Any]:
        """Exporta a configuração atual (útil para logs e debug)."""

        return {
            "server": self.server,
            "port": self.port,
            "name": self.name,
            "reconnect_delay": self.reconnect_delay,
            "autoconnect": self.autoconnect,
            "autocall": self.autocall,
            "log_level": self.log_level,
            "config_file": str(self.config_file) if self.config_file else None,
            "extra": self.extra,
        }


def log_level_value(level: str) -> int:
    return getattr(logging, validate_log_level(level))
