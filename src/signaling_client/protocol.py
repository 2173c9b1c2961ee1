"""Request lines understood by the signaling server."""
from __future__ import annotations

DEFAULT_SERVER_PORT = 8888
MAX_PORT = 65535
RECONNECT_DELAY_SECONDS = 2.0

# Corpo reservado que sinaliza hangup em vez de payload de aplicação.
BYE_MESSAGE = "BYE"


def build_sign_in(client_name: str) -> bytes:
    return f"GET /sign_in?{client_name} HTTP/1.0\r\n\r\n".encode("utf-8")


def build_wait(my_id: int) -> bytes:
    return f"GET /wait?peer_id={my_id} HTTP/1.0\r\n\r\n".encode("ascii")


def build_sign_out(my_id: int) -> bytes:
    return f"GET /sign_out?peer_id={my_id} HTTP/1.0\r\n\r\n".encode("ascii")


def build_message(my_id: int, peer_id: int, message: str) -> bytes:
    """Monta o POST de relay; ``Content-Length`` conta bytes, não caracteres."""

    body = message.encode("utf-8")
    headers = (
        f"POST /message?peer_id={my_id}&to={peer_id} HTTP/1.0\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Content-Type: text/plain\r\n"
        "\r\n"
    )
    return headers.encode("ascii") + body


def is_hang_up(message: str) -> bool:
    return message == BYE_MESSAGE
