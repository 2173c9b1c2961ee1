"""Client runtime package for the signaling server.

Módulos do cliente:
- ``config`` carrega parâmetros de arquivo JSON e da linha de comando.
- ``session`` é a máquina de estados (sign-in, relay, sign-out, retry).
- ``transport`` contém os canais TCP não bloqueantes (controle e long-poll).
- ``framing`` delimita e interpreta as respostas HTTP/1.0 do servidor.
- ``protocol`` monta as requisições ``/sign_in``, ``/wait``, ``/message`` e ``/sign_out``.
- ``peer_table`` e ``state`` modelam o roster e o estado da sessão.
- ``observer`` define os callbacks entregues à camada de chamada.
- ``cli`` expõe a interface interativa de comandos.
"""

from .observer import SignalingObserver
from .session import SignalingClient
from .state import ConnectionState

__all__ = ["ConnectionState", "SignalingClient", "SignalingObserver"]
