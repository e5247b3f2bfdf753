"""A single live transport session and its lifecycle."""
import logging
import uuid
from typing import Any, Optional, Set

from .schemas import ConnectionState, DeclaredIdentity, Identity, VerifiedIdentity, describe

logger = logging.getLogger(__name__)


class Connection:
    """One accepted WebSocket plus the state the coordinator keeps for it.

    Attributes:
        id: Server-generated connection id; the fallback userId for clients
            that declare none.
        websocket: Anything with an async ``send_json`` (a Starlette WebSocket
            in production).
        principal: Identity recovered from a verified token at handshake.
        identity: Identity bound by ``user_connected``. Set at most once.
        rooms: Rooms this connection receives room-scoped events for.
        state: Current lifecycle state.
    """

    def __init__(self, websocket: Any, principal: Optional[VerifiedIdentity] = None) -> None:
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.principal = principal
        self.identity: Optional[Identity] = None
        self.rooms: Set[str] = set()
        self.state = ConnectionState.CONNECTING

    def __repr__(self) -> str:
        who = describe(self.identity) if self.identity else "unbound"
        return f"<Connection {self.id[:8]} {who} {self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state != ConnectionState.DISCONNECTED

    def bind(self, user_id: Optional[str], username: Optional[str]) -> Optional[Identity]:
        """Bind the connection's identity. Returns None if already bound.

        A verified principal always wins over what the client declares.
        """
        if self.identity is not None:
            logger.info(f"[Conn] {self.id[:8]} already bound to {describe(self.identity)}; ignoring rebind")
            return None
        if self.principal is not None:
            self.identity = self.principal
        else:
            self.identity = DeclaredIdentity(user_id=user_id or self.id, username=username or "")
        if self.state == ConnectionState.CONNECTING:
            self.state = ConnectionState.AUTHENTICATED
        return self.identity

    def resolve(self, user_id: Optional[str] = None, username: Optional[str] = None) -> Identity:
        """Identity to act as for one event: the bound one, else the declared payload."""
        if self.identity is not None:
            return self.identity
        if self.principal is not None:
            return self.principal
        return DeclaredIdentity(user_id=user_id or self.id, username=username or "")

    def knows_user_id(self, user_id: Optional[str] = None) -> bool:
        """False when ``resolve`` would have to make up the userId from ``self.id``."""
        return self.identity is not None or self.principal is not None or bool(user_id)

    def subscribe(self, room_id: str) -> None:
        if not self.is_open:
            return
        self.rooms.add(room_id)
        self.state = ConnectionState.IN_ROOM

    def unsubscribe(self, room_id: str) -> None:
        self.rooms.discard(room_id)
        if self.is_open and not self.rooms:
            self.state = ConnectionState.NO_ROOM

    def close(self) -> None:
        self.rooms.clear()
        self.state = ConnectionState.DISCONNECTED

    async def send(self, message: dict) -> bool:
        """Send a frame. Returns False instead of raising if the socket is gone."""
        if not self.is_open:
            return False
        try:
            await self.websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {self.id[:8]}: {e}")
            return False
