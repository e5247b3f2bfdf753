"""Room membership: who is present in each room right now.

Members are keyed by ``userId``. Joining twice under the same userId keeps a
single entry (the latest username wins), so the member list never carries
duplicates however often a client rejoins.
"""
import logging
from typing import Dict, Iterable, List, Optional

from .schemas import Identity, RoomSummary, RoomUser, describe

logger = logging.getLogger(__name__)


class RoomMembershipTracker:
    """Per-room ``userId -> username`` maps.

    Rooms are created on first reference and never removed; a room whose last
    member left stays as an empty entry.
    """

    def __init__(self) -> None:
        # room_id -> {userId -> username}
        self._rooms: Dict[str, Dict[str, str]] = {}

    def join(self, room_id: str, identity: Identity) -> bool:
        """Add ``identity`` to the room.

        Returns:
            True if the userId was not present before, False on rejoin.
        """
        members = self._rooms.setdefault(room_id, {})
        is_new = identity.user_id not in members
        members[identity.user_id] = identity.username
        logger.info(
            f"[Membership] {describe(identity)} {'joined' if is_new else 'rejoined'} "
            f"{room_id} ({len(members)} present)"
        )
        return is_new

    def leave(
        self,
        room_id: str,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Optional[RoomUser]:
        """Remove a member by userId, or by username when no userId is known.

        Returns:
            The removed member, or None if nobody matched (already left).
        """
        members = self._rooms.get(room_id)
        if not members:
            return None

        if user_id is not None:
            if user_id not in members:
                return None
            removed_name = members.pop(user_id)
            removed = RoomUser(userId=user_id, username=removed_name)
        elif username is not None:
            match = next((uid for uid, name in members.items() if name == username), None)
            if match is None:
                return None
            members.pop(match)
            removed = RoomUser(userId=match, username=username)
        else:
            return None

        logger.info(f"[Membership] {removed.username} ({removed.userId}) left {room_id} ({len(members)} present)")
        return removed

    def leave_all(self, identity: Identity) -> List[tuple]:
        """Remove ``identity`` from every room it is in.

        Returns:
            ``(room_id, removed_member)`` pairs, one per room left.
        """
        left = []
        for room_id in list(self._rooms):
            removed = self.leave(room_id, user_id=identity.user_id)
            if removed is not None:
                left.append((room_id, removed))
        return left

    def is_member(self, room_id: str, user_id: str) -> bool:
        return user_id in self._rooms.get(room_id, {})

    def members(self, room_id: str) -> List[RoomUser]:
        return [
            RoomUser(userId=uid, username=name)
            for uid, name in self._rooms.get(room_id, {}).items()
        ]

    def member_count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, {}))

    def rooms_for(self, user_id: str) -> List[str]:
        return [room_id for room_id, members in self._rooms.items() if user_id in members]

    def known_rooms(self) -> List[str]:
        return list(self._rooms)

    def list_rooms(self, history_rooms: Iterable[str]) -> List[RoomSummary]:
        """Directory of rooms known from membership or from stored history.

        Args:
            history_rooms: Rooms the message log has messages for.
        """
        with_history = set(history_rooms)
        names = list(self._rooms)
        names.extend(sorted(r for r in with_history if r not in self._rooms))
        return [
            RoomSummary(
                name=name,
                userCount=self.member_count(name),
                hasHistory=name in with_history,
            )
            for name in names
        ]
