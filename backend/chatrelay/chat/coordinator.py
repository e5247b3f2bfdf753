"""Room session coordinator.

This module owns all in-memory chat state and turns inbound client events
into state changes and outbound frames.

State owned here (nothing else mutates it):
    - ConnectionRegistry: userId -> live connection, presence
    - RoomMembershipTracker: room -> {userId -> username}
    - TypingAggregator: room -> usernames currently typing
    - live connections and the rooms each one is subscribed to

Concurrency:
    Everything runs on one event loop. Membership and typing mutations are
    synchronous and never await. The only suspension points are message log
    calls (run in a worker thread) and socket sends. A message is broadcast
    only after its append returned, so every createdAt a client can use as a
    cursor refers to committed data. Sends to the same room hold a per-room
    asyncio.Lock from timestamp assignment through broadcast, so clients see
    new_message frames in log order.

Delivery:
    Room-scoped frames go to every connection subscribed to the room,
    including the sender; presence frames go to every live connection.
    Sends run concurrently with asyncio.gather() and a failed send drops
    that connection from delivery without affecting the others.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from chatrelay.history.service import MessageLogError, MessageLogService

from .connection import Connection
from .membership import RoomMembershipTracker
from .pagination import HistoryPage, PaginationEngine
from .registry import ConnectionRegistry
from .typing_state import TypingAggregator
from .schemas import (
    ChatMessage,
    InboundEvent,
    JoinRoomPayload,
    LeaveRoomPayload,
    LoadMoreMessagesPayload,
    OutboundEvent,
    RoomSummary,
    SendMessagePayload,
    TypingPayload,
    UserConnectedPayload,
    describe,
    event,
    membership_event,
    typing_event,
    users_updated_event,
)

logger = logging.getLogger(__name__)

SEND_FAILED_MESSAGE = "Failed to send message."

# Smallest step used to keep createdAt strictly increasing
_CLOCK_STEP = 1e-6


class RoomSessionCoordinator:
    """Single owner of presence, membership and typing state.

    Inbound events are commands: ``dispatch`` validates the payload against
    its schema and runs the matching handler. Protocol misuse (unknown
    event, missing fields, leaving a room never joined) is logged and
    ignored. Unexpected errors are caught at the dispatch boundary so one
    connection's fault never reaches another.

    Args:
        log: Message log to use. Defaults to the MessageLogService singleton,
            looked up on each use so tests can swap it.
        initial_page_size: Messages delivered on join (default from config).
        scrollback_page_size: Messages per load_more_messages (default from config).
        clock: Wall clock used for createdAt.
    """

    def __init__(
        self,
        log: Optional[MessageLogService] = None,
        initial_page_size: Optional[int] = None,
        scrollback_page_size: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._log = log
        self._initial_page_size = initial_page_size
        self._scrollback_page_size = scrollback_page_size
        self._clock = clock
        self._handlers = {
            InboundEvent.USER_CONNECTED: (UserConnectedPayload, self._on_user_connected),
            InboundEvent.GET_ROOMS: (None, self._on_get_rooms),
            InboundEvent.JOIN_ROOM: (JoinRoomPayload, self._on_join_room),
            InboundEvent.LEAVE_ROOM: (LeaveRoomPayload, self._on_leave_room),
            InboundEvent.SEND_MESSAGE: (SendMessagePayload, self._on_send_message),
            InboundEvent.LOAD_MORE_MESSAGES: (LoadMoreMessagesPayload, self._on_load_more_messages),
            InboundEvent.TYPING: (TypingPayload, self._on_typing),
            InboundEvent.STOP_TYPING: (TypingPayload, self._on_stop_typing),
        }
        self.reset()

    def reset(self) -> None:
        """Drop all in-memory state (used by tests)."""
        self.registry = ConnectionRegistry()
        self.membership = RoomMembershipTracker()
        self.typing = TypingAggregator()
        self.connections: Dict[str, Connection] = {}
        # room_id -> lock held from timestamp assignment through broadcast
        self._send_locks: Dict[str, asyncio.Lock] = {}
        self._last_ts = 0.0

    # =========================================================================
    # Collaborators
    # =========================================================================

    @property
    def log(self) -> MessageLogService:
        return self._log or MessageLogService.get_instance()

    @property
    def pagination(self) -> PaginationEngine:
        from chatrelay.config import get_config
        history = get_config().history
        return PaginationEngine(
            self.log,
            initial_page_size=self._initial_page_size or history.initial_page_size,
            scrollback_page_size=self._scrollback_page_size or history.scrollback_page_size,
        )

    def _next_timestamp(self) -> float:
        """Server clock for createdAt, strictly increasing within the process."""
        now = self._clock()
        if now <= self._last_ts:
            now = self._last_ts + _CLOCK_STEP
        self._last_ts = now
        return now

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def connect(self, connection: Connection) -> None:
        """Start tracking an accepted connection."""
        self.connections[connection.id] = connection
        logger.info(
            f"[Coordinator] Connection {connection.id[:8]} opened "
            f"({'token verified' if connection.principal else 'anonymous'}); "
            f"{len(self.connections)} live"
        )

    async def disconnect(self, connection: Connection) -> None:
        """Full cleanup for a closed connection. Safe to call more than once."""
        if not connection.is_open:
            return
        identity = connection.identity
        self.connections.pop(connection.id, None)
        connection.close()

        if identity is None:
            logger.info(f"[Coordinator] Anonymous connection {connection.id[:8]} disconnected")
            return

        current = self.registry.get(identity.user_id)
        if current is not None and current is not connection:
            logger.info(
                f"[Coordinator] {describe(identity)} disconnected on a replaced connection; "
                "membership kept for the newer one"
            )
            return

        logger.info(f"[Coordinator] {describe(identity)} disconnected")
        for room_id, removed in self.membership.leave_all(identity):
            await self._announce_departure(room_id, removed.username)

        offline = self.registry.unregister(identity.user_id, connection)
        if offline is not None:
            await self.broadcast_all(offline)

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, connection: Connection, data: dict) -> None:
        """Route one inbound frame to its handler."""
        if not connection.is_open:
            return
        raw_type = data.get("type") if isinstance(data, dict) else None
        try:
            kind = InboundEvent(raw_type)
        except ValueError:
            logger.warning(f"[Coordinator] Ignoring unknown event {raw_type!r} from {connection!r}")
            return

        schema, handler = self._handlers[kind]
        try:
            if schema is None:
                await handler(connection)
            else:
                await handler(connection, schema.model_validate(data))
        except ValidationError as e:
            logger.warning(
                f"[Coordinator] Ignoring malformed {kind.value} from {connection!r}: "
                f"{e.error_count()} error(s)"
            )
        except Exception:
            logger.exception(f"[Coordinator] Handler for {kind.value} failed on {connection!r}")

    async def _on_user_connected(self, connection: Connection, payload: UserConnectedPayload) -> None:
        if connection.principal is None and not payload.username:
            logger.warning(f"[Coordinator] user_connected without username from {connection!r}")
            return
        identity = connection.bind(payload.userId, payload.username)
        if identity is None:
            return
        await self.broadcast_all(self.registry.register(identity, connection))

    async def _on_get_rooms(self, connection: Connection) -> None:
        rooms = await self.list_rooms()
        await connection.send(event(
            OutboundEvent.AVAILABLE_ROOMS,
            rooms=[r.model_dump() for r in rooms],
        ))

    async def _on_join_room(self, connection: Connection, payload: JoinRoomPayload) -> None:
        identity = connection.resolve(payload.userId, payload.username)
        if not identity.username:
            logger.warning(f"[Coordinator] join_room without username from {connection!r}")
            return
        room_id = payload.roomId

        connection.subscribe(room_id)
        self.membership.join(room_id, identity)

        await self.broadcast_room(
            room_id, membership_event(OutboundEvent.USER_JOINED, identity.username, room_id)
        )
        await self.broadcast_room(
            room_id, users_updated_event(room_id, self.membership.members(room_id))
        )

        page = await self._load_page(room_id, None, initial=True)
        logger.info(f"[Coordinator] Sending {len(page.messages)} history messages for {room_id}")
        await connection.send(event(
            OutboundEvent.ROOM_HISTORY,
            roomId=room_id,
            messages=page.to_wire(),
            hasMore=page.has_more,
        ))

    async def _on_leave_room(self, connection: Connection, payload: LeaveRoomPayload) -> None:
        identity = connection.resolve(payload.userId, payload.username)
        room_id = payload.roomId
        connection.unsubscribe(room_id)

        removed = self.membership.leave(room_id, user_id=identity.user_id)
        # Match by name only when the client never told us who it is
        if removed is None and identity.username and not connection.knows_user_id(payload.userId):
            removed = self.membership.leave(room_id, username=identity.username)
        if removed is None:
            logger.debug(f"[Coordinator] {describe(identity)} not in {room_id}; leave ignored")
            return
        await self._announce_departure(room_id, removed.username)

    async def _on_send_message(self, connection: Connection, payload: SendMessagePayload) -> None:
        identity = connection.resolve(None, payload.username)
        if not identity.username:
            logger.warning(f"[Coordinator] send_message without username from {connection!r}")
            return
        room_id = payload.roomId
        logger.info(f"[Coordinator] Message from {identity.username} in {room_id}: {payload.content[:30]}")

        # Sends to one room are serialized so broadcast order matches log order
        lock = self._send_locks.get(room_id)
        if lock is None:
            lock = self._send_locks[room_id] = asyncio.Lock()
        async with lock:
            try:
                message: ChatMessage = await asyncio.to_thread(
                    self.log.append,
                    room_id,
                    identity.username,
                    payload.content,
                    self._next_timestamp(),
                )
            except MessageLogError as e:
                logger.error(f"[Coordinator] Could not persist message in {room_id}: {e}")
                await connection.send(event(OutboundEvent.ERROR, message=SEND_FAILED_MESSAGE))
                return

            await self.broadcast_room(room_id, event(OutboundEvent.NEW_MESSAGE, **message.model_dump()))

    async def _on_load_more_messages(
        self, connection: Connection, payload: LoadMoreMessagesPayload
    ) -> None:
        page = await self._load_page(payload.roomId, payload.before, initial=False)
        await connection.send(event(
            OutboundEvent.MORE_MESSAGES,
            roomId=payload.roomId,
            messages=page.to_wire(),
            hasMore=page.has_more,
        ))

    async def _on_typing(self, connection: Connection, payload: TypingPayload) -> None:
        identity = connection.resolve(None, payload.username)
        if not identity.username:
            return
        if self.typing.start_typing(payload.roomId, identity.username):
            await self.broadcast_room(
                payload.roomId,
                typing_event(payload.roomId, self.typing.typing_users(payload.roomId)),
            )

    async def _on_stop_typing(self, connection: Connection, payload: TypingPayload) -> None:
        identity = connection.resolve(None, payload.username)
        if not identity.username:
            return
        self.typing.stop_typing(payload.roomId, identity.username)
        # Always re-broadcast on an explicit stop, even if nothing changed
        await self.broadcast_room(
            payload.roomId,
            typing_event(payload.roomId, self.typing.typing_users(payload.roomId)),
        )

    # =========================================================================
    # Shared steps
    # =========================================================================

    async def _announce_departure(self, room_id: str, username: str) -> None:
        was_typing = self.typing.clear(room_id, username)
        await self.broadcast_room(room_id, membership_event(OutboundEvent.USER_LEFT, username, room_id))
        await self.broadcast_room(room_id, users_updated_event(room_id, self.membership.members(room_id)))
        if was_typing:
            await self.broadcast_room(room_id, typing_event(room_id, self.typing.typing_users(room_id)))

    async def _load_page(self, room_id: str, before: Optional[float], initial: bool) -> HistoryPage:
        """Fetch a history page; a persistence failure yields an empty page."""
        engine = self.pagination
        try:
            if initial:
                return await asyncio.to_thread(engine.initial_page, room_id)
            return await asyncio.to_thread(engine.scrollback, room_id, before)
        except MessageLogError as e:
            logger.error(f"[Coordinator] Could not load history for {room_id}: {e}")
            return HistoryPage(room_id=room_id)

    async def history_page(self, room_id: str, before: Optional[float], limit: int) -> HistoryPage:
        """Arbitrary-size page for the HTTP history endpoint."""
        engine = self.pagination
        try:
            return await asyncio.to_thread(engine.page, room_id, before, limit)
        except MessageLogError as e:
            logger.error(f"[Coordinator] Could not load history for {room_id}: {e}")
            return HistoryPage(room_id=room_id)

    async def list_rooms(self) -> List[RoomSummary]:
        """Rooms known from membership or stored history."""
        try:
            history_rooms = await asyncio.to_thread(self.log.distinct_rooms)
        except MessageLogError as e:
            logger.error(f"[Coordinator] Could not list rooms from history: {e}")
            history_rooms = []
        return self.membership.list_rooms(history_rooms)

    # =========================================================================
    # Broadcast
    # =========================================================================

    async def broadcast_room(self, room_id: str, message: dict) -> None:
        """Send to every connection subscribed to ``room_id``."""
        await self._deliver(
            [conn for conn in self.connections.values() if room_id in conn.rooms],
            message,
        )

    async def broadcast_all(self, message: dict) -> None:
        """Send to every live connection."""
        await self._deliver(list(self.connections.values()), message)

    async def _deliver(self, connections: Iterable[Connection], message: dict) -> None:
        connections = list(connections)
        if not connections:
            return
        results = await asyncio.gather(
            *[conn.send(message) for conn in connections],
            return_exceptions=True,
        )
        for conn, ok in zip(connections, results):
            if ok is not True and self.connections.pop(conn.id, None) is not None:
                logger.debug(f"[Coordinator] Dropped dead connection {conn!r} from delivery")


# Global singleton instance used by the WebSocket endpoint
coordinator = RoomSessionCoordinator()
