"""
Content Repository
==================

Deduplicated content items. The ``(source_type, content_hash)`` unique
constraint is the last line of defence against double inserts; callers are
expected to look up by hash first.
"""

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from ..database.connection import DatabaseConnection
from ..database.models import ContentItem, SourceType
from ..utils.exceptions import DatabaseError, ErrorCode
from ..utils.logging import get_logger_for_component
from .sqlite_support import from_db_json, from_db_time, to_db_json, to_db_time


class ContentRepository:
    """Repository for managing content items in the database."""

    def __init__(self, db_connection: DatabaseConnection):
        """Initialize content repository.

        Args:
            db_connection: Database connection manager
        """
        self.db = db_connection
        self.logger = get_logger_for_component("content_repository")

    def insert_content(self, item: ContentItem) -> str:
        """Insert a new content item.

        Returns:
            The content item ID

        Raises:
            DatabaseError: On failure, including a duplicate ``content_hash``
        """
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO content_items (
                        id, creator_id, source_type, external_id, title, description,
                        url, content_html, author, published_at, published_at_estimated,
                        content_hash, is_edited, metadata, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        item.id,
                        item.creator_id,
                        item.source_type.value,
                        item.external_id,
                        item.title,
                        item.description,
                        item.url,
                        item.content_html,
                        item.author,
                        to_db_time(item.published_at),
                        item.published_at_estimated,
                        item.content_hash,
                        item.is_edited,
                        to_db_json(item.metadata),
                        to_db_time(item.created_at),
                        to_db_time(item.updated_at),
                    ),
                )
                conn.commit()

            self.logger.debug(f"Inserted content {item.id}: {item.title[:50]}")
            return item.id

        except sqlite3.IntegrityError as e:
            raise DatabaseError(
                f"Content with hash {item.content_hash} already exists: {e}",
                error_code=ErrorCode.DATABASE_CONSTRAINT,
            ) from e
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to insert content: {e}") from e

    def find_by_hash(self, source_type: SourceType, content_hash: str) -> Optional[ContentItem]:
        row = self._fetch_one(
            "SELECT * FROM content_items WHERE source_type = ? AND content_hash = ?",
            (source_type.value, content_hash),
        )
        return self._row_to_content(row) if row else None

    def find_by_external_id(
        self, source_type: SourceType, external_id: str, creator_id: Optional[str] = None
    ) -> Optional[ContentItem]:
        if creator_id is None:
            row = self._fetch_one(
                """
                SELECT * FROM content_items
                WHERE source_type = ? AND external_id = ?
                ORDER BY created_at LIMIT 1
            """,
                (source_type.value, external_id),
            )
        else:
            row = self._fetch_one(
                """
                SELECT * FROM content_items
                WHERE source_type = ? AND external_id = ? AND creator_id = ?
                ORDER BY created_at LIMIT 1
            """,
                (source_type.value, external_id, creator_id),
            )
        return self._row_to_content(row) if row else None

    def update_content(
        self,
        content_id: str,
        title: str,
        description: Optional[str],
        content_hash: str,
        content_html: Optional[str] = None,
        published_at: Optional[datetime] = None,
    ) -> None:
        """Apply an edit in place and flag the item as edited."""
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    """
                    UPDATE content_items
                    SET title = ?, description = ?, content_hash = ?,
                        content_html = COALESCE(?, content_html),
                        published_at = COALESCE(?, published_at),
                        is_edited = 1, updated_at = ?
                    WHERE id = ?
                """,
                    (
                        title,
                        description,
                        content_hash,
                        content_html,
                        to_db_time(published_at),
                        to_db_time(datetime.now(timezone.utc)),
                        content_id,
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise DatabaseError(
                f"Edited content collides with an existing hash: {e}",
                error_code=ErrorCode.DATABASE_CONSTRAINT,
            ) from e
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to update content {content_id}: {e}") from e

        if cursor.rowcount == 0:
            raise DatabaseError(f"Content {content_id} not found for update")
        self.logger.info(f"Updated edited content {content_id}")

    def get_latest_for_user(self, user_id: str, limit: int = 20) -> List[ContentItem]:
        """Newest items from the user's feed creators and subscribed creators."""
        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT ci.* FROM content_items ci
                    WHERE ci.creator_id IN (
                        SELECT c.id FROM creators c
                        JOIN sources s
                          ON s.feed_url = c.external_id AND s.source_type = c.source_type
                        WHERE s.user_id = ? AND s.is_active = 1
                        UNION
                        SELECT creator_id FROM subscriptions WHERE user_id = ?
                    )
                    ORDER BY ci.published_at DESC
                    LIMIT ?
                """,
                    (user_id, user_id, limit),
                ).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to get latest content for {user_id}: {e}") from e

        return [self._row_to_content(row) for row in rows]

    def count(self, source_type: Optional[SourceType] = None) -> int:
        if source_type is None:
            row = self._fetch_one("SELECT COUNT(*) AS total FROM content_items", ())
        else:
            row = self._fetch_one(
                "SELECT COUNT(*) AS total FROM content_items WHERE source_type = ?",
                (source_type.value,),
            )
        return row["total"] if row else 0

    def _fetch_one(self, query: str, params: tuple) -> Optional[sqlite3.Row]:
        try:
            with self.db.get_connection() as conn:
                return conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Content query failed: {e}", query=query) from e

    def _row_to_content(self, row: sqlite3.Row) -> ContentItem:
        return ContentItem(
            id=row["id"],
            creator_id=row["creator_id"],
            source_type=SourceType(row["source_type"]),
            external_id=row["external_id"],
            title=row["title"],
            description=row["description"],
            url=row["url"],
            content_html=row["content_html"],
            author=row["author"],
            published_at=from_db_time(row["published_at"]) or datetime.now(timezone.utc),
            published_at_estimated=bool(row["published_at_estimated"]),
            content_hash=row["content_hash"],
            is_edited=bool(row["is_edited"]),
            metadata=from_db_json(row["metadata"]),
            created_at=from_db_time(row["created_at"]) or datetime.now(timezone.utc),
            updated_at=from_db_time(row["updated_at"]) or datetime.now(timezone.utc),
        )
