"""Minimal HTTP/1.0 response framing used by both signaling channels."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"
CONTENT_LENGTH_HEADER = "\r\nContent-Length: "
CONNECTION_HEADER = "\r\nConnection: "
PRAGMA_HEADER = "\r\nPragma: "

_LEADING_INT = re.compile(rb"\s*([+-]?\d+)")


class SignalingError(RuntimeError):
    """Erro genérico envolvendo o servidor de sinalização."""


class MalformedResponseError(SignalingError):
    """Resposta do servidor com status diferente de 200 ou sem cabeçalhos completos."""

    def __init__(self, message: str, status: int = -1) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True)
class ServerResponse:
    """Resposta já delimitada: status, id do ``Pragma`` e corpo bruto."""

    status: int
    peer_id: int
    end_of_headers: int
    content_length: int
    body: bytes
    should_close: bool = False


def parse_int_prefix(raw: bytes, default: int = 0) -> int:
    """Interpreta os dígitos iniciais de ``raw`` (semântica de ``atoi``)."""

    match = _LEADING_INT.match(raw)
    if not match:
        return default
    return int(match.group(1))


def find_end_of_headers(data: bytes) -> int:
    """Offset de ``\\r\\n\\r\\n`` ou -1 se os cabeçalhos ainda não chegaram."""

    return data.find(HEADER_TERMINATOR)


def get_header_value(data: bytes, eoh: int, pattern: str) -> Optional[str]:
    """Busca literal de ``pattern`` antes de ``eoh``.

    Retorna o texto após o padrão até a próxima quebra de linha (ou até o fim
    dos cabeçalhos), sem espaços ao redor. ``None`` quando o cabeçalho não
    aparece na área de cabeçalhos.
    """

    needle = pattern.encode("ascii")
    found = data.find(needle)
    if found == -1 or found >= eoh:
        return None
    begin = found + len(needle)
    end = data.find(b"\r\n", begin)
    if end == -1 or end > eoh:
        end = eoh
    return data[begin:end].decode("latin-1").strip()


def get_header_int(data: bytes, eoh: int, pattern: str) -> Optional[int]:
    value = get_header_value(data, eoh, pattern)
    if value is None:
        return None
    return parse_int_prefix(value.encode("latin-1"))


def get_content_length(data: bytes, eoh: int) -> Optional[int]:
    return get_header_int(data, eoh, CONTENT_LENGTH_HEADER)


def should_close_connection(data: bytes, eoh: int) -> bool:
    value = get_header_value(data, eoh, CONNECTION_HEADER)
    return value is not None and value.lower() == "close"


def is_response_complete(data: bytes) -> bool:
    """Indica se ``data`` já contém uma resposta inteira.

    Sem ``Content-Length`` a resposta termina nos cabeçalhos; com ele, é
    preciso acumular ``eoh + 4 + Content-Length`` bytes.
    """

    eoh = find_end_of_headers(data)
    if eoh == -1:
        return False
    content_length = get_content_length(data, eoh)
    if content_length is None:
        return True
    total_size = eoh + len(HEADER_TERMINATOR) + content_length
    if len(data) < total_size:
        logger.debug("Resposta parcial: %d de %d bytes", len(data), total_size)
        return False
    return True


def get_response_status(data: bytes) -> int:
    """Inteiro após o primeiro espaço da linha de status, ou -1."""

    first_line = data.split(b"\r\n", 1)[0]
    pos = first_line.find(b" ")
    if pos == -1:
        return -1
    return parse_int_prefix(first_line[pos + 1 :], default=-1)


def parse_server_response(data: bytes) -> ServerResponse:
    """Valida o status e extrai ``Pragma`` e o corpo de uma resposta completa.

    Raises:
        MalformedResponseError: status diferente de 200 ou cabeçalhos incompletos.
    """

    status = get_response_status(data)
    if status != 200:
        raise MalformedResponseError(f"Servidor respondeu com status {status}", status)

    eoh = find_end_of_headers(data)
    if eoh == -1:
        raise MalformedResponseError("Resposta sem fim de cabeçalhos", status)

    peer_id = get_header_int(data, eoh, PRAGMA_HEADER)
    content_length = get_content_length(data, eoh) or 0
    body_start = eoh + len(HEADER_TERMINATOR)
    return ServerResponse(
        status=status,
        peer_id=-1 if peer_id is None else peer_id,
        end_of_headers=eoh,
        content_length=content_length,
        body=data[body_start : body_start + content_length],
        should_close=should_close_connection(data, eoh),
    )
