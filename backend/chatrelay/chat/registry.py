"""Connection registry: which connection currently speaks for each userId."""
import logging
from typing import Dict, List, Optional

from .connection import Connection
from .schemas import Identity, PresenceStatus, describe, status_event

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Maps ``userId`` to its live connection.

    One connection per userId: registering again replaces the previous
    handle (last writer wins). Presence notifications are returned to the
    caller, which broadcasts them to every live connection.
    """

    def __init__(self) -> None:
        # userId -> (identity, connection)
        self._online: Dict[str, tuple] = {}

    def register(self, identity: Identity, connection: Connection) -> dict:
        """Bind ``identity.user_id`` to ``connection``.

        Returns:
            The ``user_status_changed`` (online) frame to broadcast.
        """
        previous = self._online.get(identity.user_id)
        if previous is not None and previous[1] is not connection:
            logger.info(f"[Registry] {describe(identity)} reconnected; replacing {previous[1]!r}")
        self._online[identity.user_id] = (identity, connection)
        logger.info(f"[Registry] {describe(identity)} online ({len(self._online)} online)")
        return status_event(identity, PresenceStatus.ONLINE)

    def unregister(self, user_id: str, connection: Optional[Connection] = None) -> Optional[dict]:
        """Remove the binding for ``user_id``.

        Args:
            user_id: The identity to take offline.
            connection: When given, only unregister if this is still the
                current handle; a replaced connection's disconnect is stale.

        Returns:
            The ``user_status_changed`` (offline) frame, or None if nothing
            was registered.
        """
        entry = self._online.get(user_id)
        if entry is None:
            logger.info(f"[Registry] unregister for unknown user {user_id}; ignoring")
            return None
        identity, current = entry
        if connection is not None and current is not connection:
            logger.info(f"[Registry] stale disconnect for {describe(identity)}; newer connection kept")
            return None
        del self._online[user_id]
        logger.info(f"[Registry] {describe(identity)} offline ({len(self._online)} online)")
        return status_event(identity, PresenceStatus.OFFLINE)

    def get(self, user_id: str) -> Optional[Connection]:
        entry = self._online.get(user_id)
        return entry[1] if entry else None

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    def online_users(self) -> List[Identity]:
        return [identity for identity, _ in self._online.values()]
