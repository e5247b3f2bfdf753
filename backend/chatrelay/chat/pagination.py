"""History pagination over the message log.

Clients page backward through a room: the join delivers the most recent
page, and each ``load_more_messages`` passes the createdAt of the oldest
message the client holds as an exclusive cursor.

``has_more`` is ``len(page) == limit``. It is never true when fewer than
``limit`` older messages remain, but when exactly ``limit`` remain it is
true and the next request comes back empty.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from chatrelay.history.service import MessageLogService

from .schemas import ChatMessage

DEFAULT_INITIAL_PAGE_SIZE = 100
DEFAULT_SCROLLBACK_PAGE_SIZE = 50


@dataclass
class HistoryPage:
    room_id: str
    messages: List[ChatMessage] = field(default_factory=list)
    has_more: bool = False

    @property
    def oldest(self) -> Optional[float]:
        """Cursor for the next scrollback request."""
        return self.messages[0].createdAt if self.messages else None

    def to_wire(self) -> List[dict]:
        return [msg.model_dump() for msg in self.messages]


class PaginationEngine:
    """Turns a room and an optional cursor into a bounded, ordered page."""

    def __init__(
        self,
        log: MessageLogService,
        initial_page_size: int = DEFAULT_INITIAL_PAGE_SIZE,
        scrollback_page_size: int = DEFAULT_SCROLLBACK_PAGE_SIZE,
    ) -> None:
        self.log = log
        self.initial_page_size = initial_page_size
        self.scrollback_page_size = scrollback_page_size

    def page(self, room_id: str, before: Optional[float], limit: int) -> HistoryPage:
        messages = self.log.query_range(room_id, before=before, limit=limit)
        return HistoryPage(room_id=room_id, messages=messages, has_more=len(messages) == limit)

    def initial_page(self, room_id: str) -> HistoryPage:
        """Most recent messages of the room, delivered on join."""
        return self.page(room_id, None, self.initial_page_size)

    def scrollback(self, room_id: str, before: Optional[float]) -> HistoryPage:
        """The messages immediately older than ``before``."""
        return self.page(room_id, before, self.scrollback_page_size)
