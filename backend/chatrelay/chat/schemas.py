"""Wire schemas and identity types for the chat relay.

Inbound frames are JSON objects carrying a ``type`` field plus a camelCase
payload. Each inbound event has a pydantic model below; a frame that fails
validation is treated as protocol misuse and ignored by the coordinator.

Outbound frames use the same layout: ``{"type": <event>, **payload}``.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field


class InboundEvent(str, Enum):
    """Events a client may send."""
    USER_CONNECTED = "user_connected"
    GET_ROOMS = "get_rooms"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    SEND_MESSAGE = "send_message"
    LOAD_MORE_MESSAGES = "load_more_messages"
    TYPING = "typing"
    STOP_TYPING = "stop_typing"


class OutboundEvent(str, Enum):
    """Events the coordinator emits."""
    AVAILABLE_ROOMS = "available_rooms"
    ROOM_HISTORY = "room_history"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    ROOM_USERS_UPDATED = "room_users_updated"
    TYPING_UPDATE = "typing_update"
    NEW_MESSAGE = "new_message"
    MORE_MESSAGES = "more_messages"
    USER_STATUS_CHANGED = "user_status_changed"
    ERROR = "error"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class ConnectionState(str, Enum):
    """Lifecycle of a single transport session.

    CONNECTING -> AUTHENTICATED -> (IN_ROOM <-> NO_ROOM) -> DISCONNECTED
    """
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    IN_ROOM = "in_room"
    NO_ROOM = "no_room"
    DISCONNECTED = "disconnected"


# =============================================================================
# Identities
# =============================================================================


@dataclass(frozen=True)
class VerifiedIdentity:
    """Identity taken from a verified token."""
    user_id: str
    username: str

    @property
    def verified(self) -> bool:
        return True


@dataclass(frozen=True)
class DeclaredIdentity:
    """Identity the client declared about itself. Carries no authenticity."""
    user_id: str
    username: str

    @property
    def verified(self) -> bool:
        return False


Identity = Union[VerifiedIdentity, DeclaredIdentity]


def describe(identity: Identity) -> str:
    """Short log form, e.g. ``alice (u-1, verified)``."""
    kind = "verified" if identity.verified else "declared"
    return f"{identity.username} ({identity.user_id}, {kind})"


# =============================================================================
# Data models
# =============================================================================


class ChatMessage(BaseModel):
    """A persisted chat message as delivered to clients.

    Attributes:
        id: Log-assigned identifier, unique across all rooms.
        sender: Display name of the author.
        room: Room the message belongs to.
        content: Message text.
        createdAt: Server-assigned seconds since epoch; the pagination cursor.
    """
    id: str = Field(..., description="Log-assigned message ID")
    sender: str = Field(..., description="Username of the sender")
    room: str = Field(..., description="Room this message belongs to")
    content: str = Field(..., description="Message content")
    createdAt: float = Field(..., description="Server timestamp (seconds since epoch)")


class RoomUser(BaseModel):
    userId: str
    username: str


class RoomSummary(BaseModel):
    """One entry of the room directory."""
    name: str
    userCount: int = 0
    hasHistory: bool = False


# =============================================================================
# Inbound payloads
# =============================================================================


class UserConnectedPayload(BaseModel):
    userId: Optional[str] = None
    username: Optional[str] = None


class JoinRoomPayload(BaseModel):
    roomId: str = Field(..., min_length=1)
    userId: Optional[str] = None
    username: Optional[str] = None


class LeaveRoomPayload(BaseModel):
    roomId: str = Field(..., min_length=1)
    userId: Optional[str] = None
    username: Optional[str] = None


class SendMessagePayload(BaseModel):
    roomId: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    username: Optional[str] = None


class LoadMoreMessagesPayload(BaseModel):
    roomId: str = Field(..., min_length=1)
    before: Optional[float] = Field(
        default=None, description="createdAt of the oldest message the client holds"
    )


class TypingPayload(BaseModel):
    roomId: str = Field(..., min_length=1)
    username: Optional[str] = None


# =============================================================================
# Outbound frames
# =============================================================================


def event(kind: OutboundEvent, **payload) -> dict:
    """Build an outbound frame."""
    return {"type": kind.value, **payload}


def membership_event(kind: OutboundEvent, username: str, room_id: str) -> dict:
    """``user_joined`` / ``user_left`` frame, timestamped in milliseconds."""
    return event(kind, username=username, roomId=room_id, timestamp=int(time.time() * 1000))


def users_updated_event(room_id: str, users: List[RoomUser]) -> dict:
    return event(
        OutboundEvent.ROOM_USERS_UPDATED,
        roomId=room_id,
        users=[u.model_dump() for u in users],
    )


def typing_event(room_id: str, usernames: List[str]) -> dict:
    return event(OutboundEvent.TYPING_UPDATE, roomId=room_id, users=list(usernames))


def status_event(identity: Identity, status: PresenceStatus) -> dict:
    return event(
        OutboundEvent.USER_STATUS_CHANGED,
        userId=identity.user_id,
        username=identity.username,
        status=status.value,
    )
