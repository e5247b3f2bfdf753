"""DuckDB-based message log.

This module provides the append-only, time-ordered store of chat messages.
The service implements the singleton pattern to ensure only one database
connection exists at a time.

Database Schema:
    messages table:
        - id: Auto-incrementing primary key (sequence), globally unique
        - room: Room name
        - sender: Username of the author
        - content: Message text
        - created_at: Server timestamp, seconds since epoch

Ordering:
    Every query orders by (created_at, id). The id breaks ties between
    messages stored with the same timestamp, so pages are a stable slice of
    a total order.

Thread Safety:
    The DuckDB connection is NOT thread-safe. Calls are serialized with a
    lock because the coordinator runs them in worker threads.

Usage:
    service = MessageLogService.get_instance()
    message = service.append("general", "alice", "hi")
    page = service.query_range("general", before=message.createdAt, limit=50)
"""
import logging
import threading
import time
from typing import List, Optional

import duckdb

from chatrelay.chat.schemas import ChatMessage

logger = logging.getLogger(__name__)

_COLUMNS = "id, sender, room, content, created_at"


class MessageLogError(Exception):
    """Raised when the message log cannot persist or read messages."""


class MessageLogService:
    """Singleton service for storing chat messages in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["MessageLogService"] = None
    _db_path: str = "chat_messages.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Initialize the message log.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: Path to DuckDB file, or ":memory:".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "MessageLogService":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call). When
                omitted, the configured ``storage.db_path`` is used.

        Returns:
            The singleton MessageLogService instance.
        """
        if cls._instance is None:
            if db_path is None:
                from chatrelay.config import get_config
                db_path = get_config().storage.db_path
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the database connection and clear the instance.

        Primarily used for testing to ensure a clean state.
        """
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
            logger.info("[MessageLog] Opened %s", self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the messages table and sequence. Idempotent."""
        conn = self._get_connection()
        conn.execute("""
            CREATE SEQUENCE IF NOT EXISTS messages_seq START 1;
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                room VARCHAR NOT NULL,
                sender VARCHAR NOT NULL,
                content VARCHAR NOT NULL,
                created_at DOUBLE NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS messages_room_created_idx
            ON messages (room, created_at)
        """)

    def append(
        self,
        room: str,
        sender: str,
        content: str,
        created_at: Optional[float] = None,
    ) -> ChatMessage:
        """Persist a new message.

        Args:
            room: Room the message belongs to.
            sender: Username of the author.
            content: Message text.
            created_at: Server timestamp; defaults to the current wall clock.

        Returns:
            The stored message with its assigned id.

        Raises:
            MessageLogError: If the insert fails.
        """
        if created_at is None:
            created_at = time.time()
        try:
            with self._lock:
                row = self._get_connection().execute(
                    """
                    INSERT INTO messages (room, sender, content, created_at)
                    VALUES (?, ?, ?, ?)
                    RETURNING id
                    """,
                    [room, sender, content, created_at],
                ).fetchone()
        except duckdb.Error as e:
            raise MessageLogError(f"Failed to append message to room {room}: {e}") from e

        return ChatMessage(
            id=str(row[0]),
            sender=sender,
            room=room,
            content=content,
            createdAt=created_at,
        )

    def query_range(
        self,
        room: str,
        before: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[ChatMessage]:
        """Get the messages of a room closest to a cursor.

        Selects the ``limit`` newest messages with ``created_at < before``
        (newest overall when ``before`` is None, everything when ``limit`` is
        None) and returns them oldest first.

        Args:
            room: Room to read.
            before: Exclusive upper bound on created_at.
            limit: Maximum number of messages.

        Returns:
            Messages ordered by (createdAt, id) ascending.

        Raises:
            MessageLogError: If the query fails.
        """
        sql = f"SELECT {_COLUMNS} FROM messages WHERE room = ?"
        params: list = [room]
        if before is not None:
            sql += " AND created_at < ?"
            params.append(before)
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        try:
            with self._lock:
                rows = self._get_connection().execute(sql, params).fetchall()
        except duckdb.Error as e:
            raise MessageLogError(f"Failed to query room {room}: {e}") from e

        # Fetched newest first to get the closest page; deliver oldest first
        rows.reverse()
        return [
            ChatMessage(
                id=str(row[0]),
                sender=row[1],
                room=row[2],
                content=row[3],
                createdAt=row[4],
            )
            for row in rows
        ]

    def distinct_rooms(self) -> List[str]:
        """Names of every room that has ever had a message appended."""
        try:
            with self._lock:
                rows = self._get_connection().execute(
                    "SELECT DISTINCT room FROM messages ORDER BY room"
                ).fetchall()
        except duckdb.Error as e:
            raise MessageLogError(f"Failed to list rooms: {e}") from e
        return [row[0] for row in rows]

    def count(self, room: str) -> int:
        """Number of messages stored for a room."""
        try:
            with self._lock:
                row = self._get_connection().execute(
                    "SELECT COUNT(*) FROM messages WHERE room = ?", [room]
                ).fetchone()
        except duckdb.Error as e:
            raise MessageLogError(f"Failed to count messages in room {room}: {e}") from e
        return row[0]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
