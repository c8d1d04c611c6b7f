"""
Source Repository
=================

SQLite access for feed and mailbox sources.
"""

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from ..database.connection import DatabaseConnection
from ..database.models import (
    DiscoveryMethod,
    FeedFormat,
    Source,
    SourceType,
    SyncStatus,
)
from ..utils.exceptions import DatabaseError, ErrorCode
from ..utils.logging import get_logger_for_component
from .sqlite_support import from_db_time, to_db_time


class SourceRepository:
    """Repository for managing sources in the database."""

    def __init__(self, db_connection: DatabaseConnection):
        """Initialize source repository.

        Args:
            db_connection: Database connection manager
        """
        self.db = db_connection
        self.logger = get_logger_for_component("source_repository")

    def create_source(self, source: Source) -> Source:
        """Insert a new source.

        Raises:
            DatabaseError: If database operation fails
        """
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO sources (
                        id, user_id, source_type, site_url, feed_url, feed_type,
                        discovery_method, title, description, etag, last_modified,
                        last_sync_status, last_sync_error, last_checked_at,
                        last_synced_at, added_at, is_active
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        source.id,
                        source.user_id,
                        source.source_type.value,
                        source.site_url,
                        source.feed_url,
                        source.feed_type.value if source.feed_type else None,
                        source.discovery_method.value if source.discovery_method else None,
                        source.title,
                        source.description,
                        source.etag,
                        source.last_modified,
                        source.last_sync_status.value if source.last_sync_status else None,
                        source.last_sync_error,
                        to_db_time(source.last_checked_at),
                        to_db_time(source.last_synced_at),
                        to_db_time(source.added_at),
                        source.is_active,
                    ),
                )
                conn.commit()

            self.logger.info(
                f"Created source {source.id} for user {source.user_id}: "
                f"{source.feed_url or source.site_url}"
            )
            return source

        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to create source: {e}", error_code=ErrorCode.DATABASE_ERROR
            ) from e

    def get_source(self, source_id: str) -> Optional[Source]:
        row = self._fetch_one("SELECT * FROM sources WHERE id = ?", (source_id,))
        return self._row_to_source(row) if row else None

    def list_active_sources(self, user_id: Optional[str] = None) -> List[Source]:
        """Active sources ordered by when they were added."""
        if user_id is None:
            rows = self._fetch_all(
                "SELECT * FROM sources WHERE is_active = 1 ORDER BY added_at", ()
            )
        else:
            rows = self._fetch_all(
                "SELECT * FROM sources WHERE is_active = 1 AND user_id = ? ORDER BY added_at",
                (user_id,),
            )
        return [self._row_to_source(row) for row in rows]

    def find_active_source(
        self, user_id: str, source_type: SourceType, locator: str
    ) -> Optional[Source]:
        column = "site_url" if source_type == SourceType.NEWSLETTER else "feed_url"
        row = self._fetch_one(
            f"""
            SELECT * FROM sources
            WHERE is_active = 1 AND user_id = ? AND source_type = ? AND {column} = ?
            LIMIT 1
        """,
            (user_id, source_type.value, locator),
        )
        return self._row_to_source(row) if row else None

    def update_sync_status(
        self, source_id: str, status: SyncStatus, error: Optional[str] = None
    ) -> None:
        now = to_db_time(datetime.now(timezone.utc))
        if status == SyncStatus.SUCCESS:
            self._execute(
                """
                UPDATE sources
                SET last_sync_status = ?, last_sync_error = NULL,
                    last_checked_at = ?, last_synced_at = ?
                WHERE id = ?
            """,
                (status.value, now, now, source_id),
            )
        else:
            self._execute(
                """
                UPDATE sources
                SET last_sync_status = ?, last_sync_error = ?, last_checked_at = ?
                WHERE id = ?
            """,
                (status.value, error, now, source_id),
            )

    def update_cache_tokens(
        self, source_id: str, etag: Optional[str], last_modified: Optional[str]
    ) -> None:
        self._execute(
            "UPDATE sources SET etag = ?, last_modified = ? WHERE id = ?",
            (etag, last_modified, source_id),
        )

    def deactivate_source(self, source_id: str) -> bool:
        updated = self._execute(
            "UPDATE sources SET is_active = 0 WHERE id = ?", (source_id,)
        )
        if updated:
            self.logger.info(f"Deactivated source {source_id}")
        return updated > 0

    def _fetch_one(self, query: str, params: tuple) -> Optional[sqlite3.Row]:
        try:
            with self.db.get_connection() as conn:
                return conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise DatabaseError(f"Source query failed: {e}", query=query) from e

    def _fetch_all(self, query: str, params: tuple) -> List[sqlite3.Row]:
        try:
            with self.db.get_connection() as conn:
                return conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Source query failed: {e}", query=query) from e

    def _execute(self, query: str, params: tuple) -> int:
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(query, params)
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            raise DatabaseError(f"Source update failed: {e}", query=query) from e

    def _row_to_source(self, row: sqlite3.Row) -> Source:
        return Source(
            id=row["id"],
            user_id=row["user_id"],
            source_type=SourceType(row["source_type"]),
            site_url=row["site_url"],
            feed_url=row["feed_url"],
            feed_type=FeedFormat(row["feed_type"]) if row["feed_type"] else None,
            discovery_method=(
                DiscoveryMethod(row["discovery_method"]) if row["discovery_method"] else None
            ),
            title=row["title"],
            description=row["description"],
            etag=row["etag"],
            last_modified=row["last_modified"],
            last_sync_status=(
                SyncStatus(row["last_sync_status"]) if row["last_sync_status"] else None
            ),
            last_sync_error=row["last_sync_error"],
            last_checked_at=from_db_time(row["last_checked_at"]),
            last_synced_at=from_db_time(row["last_synced_at"]),
            added_at=from_db_time(row["added_at"]) or datetime.now(timezone.utc),
            is_active=bool(row["is_active"]),
        )
