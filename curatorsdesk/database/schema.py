"""
Curator's Desk Database Schema
==============================

SQLite schema for the ingestion store:
- sources: feed and mailbox subscriptions per user
- creators: authors/publications, unique per (source_type, external_id)
- content_items: deduplicated posts, unique per (source_type, content_hash)
- processed_messages: mailbox ledger, one row per evaluated message
- subscriptions: users following creators
"""

import sqlite3
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

EXPECTED_TABLES = {
    "sources",
    "creators",
    "content_items",
    "processed_messages",
    "subscriptions",
}


class DatabaseSchema:
    """Database schema manager for the Curator's Desk SQLite database."""

    def __init__(self, db_path: str = "data/curatorsdesk.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables with indexes."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("PRAGMA foreign_keys = ON")

            # Dependency order
            self._create_sources_table(conn)
            self._create_creators_table(conn)
            self._create_content_items_table(conn)
            self._create_processed_messages_table(conn)
            self._create_subscriptions_table(conn)

            self._create_indexes(conn)

            conn.commit()
            logger.info("Database schema created successfully")

    def _create_sources_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sources (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                source_type TEXT NOT NULL CHECK (source_type IN ('rss', 'newsletter')),
                site_url TEXT NOT NULL,
                feed_url TEXT,
                feed_type TEXT CHECK (feed_type IN ('rss', 'atom', 'json_feed')),
                discovery_method TEXT CHECK (discovery_method IN ('well_known_path', 'html_link_tag', 'manual')),
                title TEXT,
                description TEXT,
                etag TEXT,
                last_modified TEXT,
                last_sync_status TEXT CHECK (last_sync_status IN ('success', 'error')),
                last_sync_error TEXT,
                last_checked_at TIMESTAMP,
                last_synced_at TIMESTAMP,
                added_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                is_active BOOLEAN DEFAULT TRUE
            )
        """
        )

    def _create_creators_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS creators (
                id TEXT PRIMARY KEY,
                source_type TEXT NOT NULL,
                external_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                profile_url TEXT,
                metadata TEXT DEFAULT '{}',  -- JSON object
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(source_type, external_id)
            )
        """
        )

    def _create_content_items_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS content_items (
                id TEXT PRIMARY KEY,
                creator_id TEXT NOT NULL,
                source_type TEXT NOT NULL,
                external_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                url TEXT,
                content_html TEXT,
                author TEXT,
                published_at TIMESTAMP NOT NULL,
                published_at_estimated BOOLEAN DEFAULT FALSE,
                content_hash TEXT NOT NULL,
                is_edited BOOLEAN DEFAULT FALSE,
                metadata TEXT DEFAULT '{}',  -- JSON object
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (creator_id) REFERENCES creators(id) ON DELETE RESTRICT,
                UNIQUE(source_type, content_hash)
            )
        """
        )

    def _create_processed_messages_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS processed_messages (
                message_id TEXT PRIMARY KEY,
                user_id TEXT,
                source_id TEXT,
                content_hash TEXT,
                content_id TEXT,
                author TEXT,
                post_url TEXT,
                processed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (content_id) REFERENCES content_items(id) ON DELETE SET NULL
            )
        """
        )

    def _create_subscriptions_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS subscriptions (
                user_id TEXT NOT NULL,
                creator_id TEXT NOT NULL,
                subscribed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, creator_id),
                FOREIGN KEY (creator_id) REFERENCES creators(id) ON DELETE CASCADE
            )
        """
        )

    def _create_indexes(self, conn: sqlite3.Connection) -> None:
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_sources_user_active ON sources(user_id, is_active)",
            "CREATE INDEX IF NOT EXISTS idx_sources_feed_url ON sources(feed_url)",
            "CREATE INDEX IF NOT EXISTS idx_content_external ON content_items(source_type, external_id)",
            "CREATE INDEX IF NOT EXISTS idx_content_creator_published ON content_items(creator_id, published_at)",
            "CREATE INDEX IF NOT EXISTS idx_processed_messages_user ON processed_messages(user_id)",
        ]

        for index_sql in indexes:
            conn.execute(index_sql)

    def drop_tables(self) -> None:
        """Drop all tables (for testing/reset purposes)."""
        with sqlite3.connect(self.db_path) as conn:
            for table in [
                "subscriptions",
                "processed_messages",
                "content_items",
                "creators",
                "sources",
            ]:
                conn.execute(f"DROP TABLE IF EXISTS {table}")

            conn.commit()
            logger.info("All database tables dropped")

    def verify_schema(self) -> bool:
        """Verify that every expected table exists."""
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                cursor = conn.execute(
                    """
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name NOT LIKE 'sqlite_%'
                """
                )
                tables = {row[0] for row in cursor.fetchall()}
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Schema verification failed: {e}")
            return False

        missing = EXPECTED_TABLES - tables
        if missing:
            logger.error(f"Missing tables: {sorted(missing)}")
            return False

        logger.info("Database schema verification passed")
        return True


def create_tables(db_path: str = "data/curatorsdesk.db") -> None:
    """Convenience function to create database tables."""
    DatabaseSchema(db_path).create_tables()
