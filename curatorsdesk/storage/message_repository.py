"""
Processed Message Ledger
========================

One row per mailbox message the pipeline has evaluated, extractable or not.
A message with a row is never fetched into the pipeline again.
"""

import sqlite3
from datetime import datetime, timezone
from typing import Optional

from ..database.connection import DatabaseConnection
from ..database.models import ProcessedMessage
from ..utils.exceptions import DatabaseError
from ..utils.logging import get_logger_for_component
from .sqlite_support import from_db_time, to_db_time


class MessageLedgerRepository:
    """Repository for the processed-message ledger."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("message_repository")

    def is_processed(self, message_id: str) -> bool:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT 1 FROM processed_messages WHERE message_id = ?", (message_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to check message {message_id}: {e}") from e
        return row is not None

    def record(self, entry: ProcessedMessage) -> bool:
        """Insert the ledger row unless one exists.

        Returns:
            True if a row was written
        """
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO processed_messages (
                        message_id, user_id, source_id, content_hash, content_id,
                        author, post_url, processed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        entry.message_id,
                        entry.user_id,
                        entry.source_id,
                        entry.content_hash,
                        entry.content_id,
                        entry.author,
                        entry.post_url,
                        to_db_time(entry.processed_at),
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to record message {entry.message_id}: {e}") from e

        if cursor.rowcount == 0:
            self.logger.debug(f"Message {entry.message_id} was already recorded")
            return False
        return True

    def get(self, message_id: str) -> Optional[ProcessedMessage]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM processed_messages WHERE message_id = ?", (message_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to get message {message_id}: {e}") from e

        if not row:
            return None
        return ProcessedMessage(
            message_id=row["message_id"],
            user_id=row["user_id"],
            source_id=row["source_id"],
            content_hash=row["content_hash"],
            content_id=row["content_id"],
            author=row["author"],
            post_url=row["post_url"],
            processed_at=from_db_time(row["processed_at"]) or datetime.now(timezone.utc),
        )

    def count(self, user_id: Optional[str] = None) -> int:
        try:
            with self.db.get_connection() as conn:
                if user_id is None:
                    row = conn.execute("SELECT COUNT(*) FROM processed_messages").fetchone()
                else:
                    row = conn.execute(
                        "SELECT COUNT(*) FROM processed_messages WHERE user_id = ?",
                        (user_id,),
                    ).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to count processed messages: {e}") from e
        return row[0]
