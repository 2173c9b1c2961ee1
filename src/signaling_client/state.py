"""Shared state models for the signaling client runtime."""
from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from enum import Enum


class ConnectionState(Enum):
    NOT_CONNECTED = "NOT_CONNECTED"
    RESOLVING = "RESOLVING"
    SIGNING_IN = "SIGNING_IN"
    CONNECTED = "CONNECTED"
    SIGNING_OUT = "SIGNING_OUT"
    # sign-out pedido com o canal de controle ocupado
    SIGNING_OUT_WAITING = "SIGNING_OUT_WAITING"


@dataclass(slots=True)
class ServerAddress:
    """Endereço do servidor de sinalização, reaproveitado durante a sessão."""

    host: str
    port: int

    def is_unresolved(self) -> bool:
        """True quando ``host`` não é um IP literal e precisa de DNS."""

        try:
            ipaddress.ip_address(self.host)
        except ValueError:
            return True
        return False

    @property
    def family(self) -> int:
        if not self.is_unresolved() and ipaddress.ip_address(self.host).version == 6:
            return socket.AF_INET6
        return socket.AF_INET

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(slots=True)
class RosterEntry:
    """Registro ``name,id[,connected]`` vindo do servidor."""

    name: str
    peer_id: int
    connected: bool = False


class SafetyFlag:
    """Token de vida associado a uma instância do cliente.

    Tarefas adiadas (retry de conexão) guardam o token vigente e só executam
    se ele ainda estiver vivo quando o timer disparar.
    """

    __slots__ = ("_alive",)

    def __init__(self) -> None:
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def invalidate(self) -> None:
        self._alive = False
