"""Typing indicators per room.

There is no server-side expiry. A username stays in a room's typing set
until the client sends ``stop_typing``, leaves the room, or disconnects.
"""
from typing import Dict, List


class TypingAggregator:
    """Per-room ordered sets of usernames currently composing a message."""

    def __init__(self) -> None:
        # room_id -> {username: None}; dict keeps first-typed order
        self._typing: Dict[str, Dict[str, None]] = {}

    def start_typing(self, room_id: str, username: str) -> bool:
        """Mark ``username`` as typing. Returns True only if that is a change."""
        users = self._typing.setdefault(room_id, {})
        if username in users:
            return False
        users[username] = None
        return True

    def stop_typing(self, room_id: str, username: str) -> bool:
        """Clear ``username``. Returns True if it was marked."""
        return self.clear(room_id, username)

    def clear(self, room_id: str, username: str) -> bool:
        users = self._typing.get(room_id)
        if users is None or username not in users:
            return False
        del users[username]
        return True

    def is_typing(self, room_id: str, username: str) -> bool:
        return username in self._typing.get(room_id, {})

    def typing_users(self, room_id: str) -> List[str]:
        return list(self._typing.get(room_id, {}))
