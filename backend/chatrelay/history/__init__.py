"""Message log module: persisted, time-ordered chat history."""

from .service import MessageLogError, MessageLogService

__all__ = [
    "MessageLogError",
    "MessageLogService",
]
