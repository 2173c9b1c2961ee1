"""In-memory roster of the peers announced by the signaling server."""
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .framing import parse_int_prefix
from .state import RosterEntry


def parse_entry(entry: str) -> Optional[RosterEntry]:
    """Interpreta uma linha ``name,id[,connected]``.

    Sem vírgula não há nome nem id e o registro é descartado (``None``). O id
    assume 0 quando não é numérico; a flag ausente vale "desconectado".
    """

    separator = entry.find(",")
    if separator == -1:
        return None
    name = entry[:separator]
    if not name:
        return None

    remainder = entry[separator + 1 :]
    peer_id = parse_int_prefix(remainder.encode("utf-8"))
    connected = False
    flag_separator = remainder.find(",")
    if flag_separator != -1:
        connected = parse_int_prefix(remainder[flag_separator + 1 :].encode("utf-8")) != 0
    return RosterEntry(name=name, peer_id=peer_id, connected=connected)


def parse_roster_body(body: str) -> List[RosterEntry]:
    """Uma entrada por linha; a última linha sem ``\\n`` é ignorada."""

    entries: List[RosterEntry] = []
    pos = 0
    while pos < len(body):
        eol = body.find("\n", pos)
        if eol == -1:
            break
        entry = parse_entry(body[pos:eol])
        if entry is not None:
            entries.append(entry)
        pos = eol + 1
    return entries


class PeerTable:
    """Mapeia id de peer para nome, preservando a ordem de chegada.

    Só é alterada pela máquina de estados, sempre na thread do event loop,
    por isso não há lock.
    """

    def __init__(self) -> None:
        self._peers: Dict[int, str] = {}

    def upsert_peer(self, peer_id: int, name: str) -> bool:
        """Adiciona ou renomeia um peer.

        Returns:
            True se é um peer novo, False se já existia.
        """
        is_new = peer_id not in self._peers
        self._peers[peer_id] = name
        return is_new

    def remove(self, peer_id: int) -> bool:
        return self._peers.pop(peer_id, None) is not None

    def get(self, peer_id: int) -> Optional[str]:
        return self._peers.get(peer_id)

    def clear(self) -> None:
        self._peers.clear()

    def items(self) -> Iterable[Tuple[int, str]]:
        return list(self._peers.items())

    def snapshot(self) -> Dict[int, str]:
        return dict(self._peers)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._peers))
