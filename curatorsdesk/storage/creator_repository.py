"""
Creator Repository
==================

Creators and the user subscriptions that point at them.
"""

import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..database.connection import DatabaseConnection
from ..database.models import Creator, SourceType, new_id
from ..utils.exceptions import DatabaseError
from ..utils.logging import get_logger_for_component
from .sqlite_support import from_db_json, from_db_time, to_db_json, to_db_time


class CreatorRepository:
    """Repository for creators and subscriptions."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.logger = get_logger_for_component("creator_repository")

    def upsert_creator(
        self,
        source_type: SourceType,
        external_id: str,
        name: str,
        description: Optional[str] = None,
        profile_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create the creator or refresh its display fields.

        Existing description, profile URL and metadata are kept when the new
        values are empty.

        Returns:
            The creator ID
        """
        now = to_db_time(datetime.now(timezone.utc))
        try:
            with self.db.transaction() as conn:
                row = conn.execute(
                    "SELECT id FROM creators WHERE source_type = ? AND external_id = ?",
                    (source_type.value, external_id),
                ).fetchone()

                if row:
                    conn.execute(
                        """
                        UPDATE creators
                        SET name = ?,
                            description = COALESCE(?, description),
                            profile_url = COALESCE(?, profile_url),
                            metadata = CASE WHEN ? = '{}' THEN metadata ELSE ? END,
                            updated_at = ?
                        WHERE id = ?
                    """,
                        (
                            name,
                            description,
                            profile_url,
                            to_db_json(metadata),
                            to_db_json(metadata),
                            now,
                            row["id"],
                        ),
                    )
                    return row["id"]

                creator_id = new_id()
                conn.execute(
                    """
                    INSERT INTO creators (
                        id, source_type, external_id, name, description,
                        profile_url, metadata, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        creator_id,
                        source_type.value,
                        external_id,
                        name,
                        description,
                        profile_url,
                        to_db_json(metadata),
                        now,
                        now,
                    ),
                )

            self.logger.debug(f"Created creator {creator_id} ({source_type.value}:{external_id})")
            return creator_id

        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to upsert creator {external_id}: {e}") from e

    def get_creator(self, creator_id: str) -> Optional[Creator]:
        try:
            with self.db.get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM creators WHERE id = ?", (creator_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to get creator {creator_id}: {e}") from e

        return self._row_to_creator(row) if row else None

    def ensure_subscription(self, user_id: str, creator_id: str) -> None:
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO subscriptions (user_id, creator_id, subscribed_at)
                    VALUES (?, ?, ?)
                """,
                    (user_id, creator_id, to_db_time(datetime.now(timezone.utc))),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to subscribe {user_id} to {creator_id}: {e}") from e

    def list_subscribed_creator_ids(self, user_id: str) -> List[str]:
        try:
            with self.db.get_connection() as conn:
                rows = conn.execute(
                    "SELECT creator_id FROM subscriptions WHERE user_id = ?", (user_id,)
                ).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to list subscriptions for {user_id}: {e}") from e

        return [row["creator_id"] for row in rows]

    def _row_to_creator(self, row: sqlite3.Row) -> Creator:
        return Creator(
            id=row["id"],
            source_type=SourceType(row["source_type"]),
            external_id=row["external_id"],
            name=row["name"],
            description=row["description"],
            profile_url=row["profile_url"],
            metadata=from_db_json(row["metadata"]),
            created_at=from_db_time(row["created_at"]) or datetime.now(timezone.utc),
            updated_at=from_db_time(row["updated_at"]) or datetime.now(timezone.utc),
        )
