"""
SQLite Content Store
====================

Production ``ContentStore`` composed from the per-table repositories.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..database.connection import DatabaseConnection
from ..database.models import (
    ContentItem,
    Creator,
    ProcessedMessage,
    Source,
    SourceType,
    SyncStatus,
)
from .base import ContentStore
from .content_repository import ContentRepository
from .creator_repository import CreatorRepository
from .message_repository import MessageLedgerRepository
from .source_repository import SourceRepository


class SQLiteContentStore(ContentStore):
    """ContentStore backed by the pooled SQLite database."""

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection
        self.sources = SourceRepository(db_connection)
        self.creators = CreatorRepository(db_connection)
        self.content = ContentRepository(db_connection)
        self.messages = MessageLedgerRepository(db_connection)

    def get_source(self, source_id: str) -> Optional[Source]:
        return self.sources.get_source(source_id)

    def list_active_sources(self, user_id: Optional[str] = None) -> List[Source]:
        return self.sources.list_active_sources(user_id)

    def find_active_source(
        self, user_id: str, source_type: SourceType, locator: str
    ) -> Optional[Source]:
        return self.sources.find_active_source(user_id, source_type, locator)

    def create_source(self, source: Source) -> Source:
        return self.sources.create_source(source)

    def update_sync_status(
        self, source_id: str, status: SyncStatus, error: Optional[str] = None
    ) -> None:
        self.sources.update_sync_status(source_id, status, error)

    def update_cache_tokens(
        self, source_id: str, etag: Optional[str], last_modified: Optional[str]
    ) -> None:
        self.sources.update_cache_tokens(source_id, etag, last_modified)

    def deactivate_source(self, source_id: str) -> bool:
        return self.sources.deactivate_source(source_id)

    def upsert_creator(
        self,
        source_type: SourceType,
        external_id: str,
        name: str,
        description: Optional[str] = None,
        profile_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self.creators.upsert_creator(
            source_type, external_id, name, description, profile_url, metadata
        )

    def get_creator(self, creator_id: str) -> Optional[Creator]:
        return self.creators.get_creator(creator_id)

    def find_content_by_hash(
        self, source_type: SourceType, content_hash: str
    ) -> Optional[ContentItem]:
        return self.content.find_by_hash(source_type, content_hash)

    def find_content_by_external_id(
        self, source_type: SourceType, external_id: str, creator_id: Optional[str] = None
    ) -> Optional[ContentItem]:
        return self.content.find_by_external_id(source_type, external_id, creator_id)

    def insert_content(self, item: ContentItem) -> str:
        return self.content.insert_content(item)

    def update_content(
        self,
        content_id: str,
        title: str,
        description: Optional[str],
        content_hash: str,
        content_html: Optional[str] = None,
        published_at: Optional[datetime] = None,
    ) -> None:
        self.content.update_content(
            content_id, title, description, content_hash, content_html, published_at
        )

    def get_latest_content(self, user_id: str, limit: int = 20) -> List[ContentItem]:
        return self.content.get_latest_for_user(user_id, limit)

    def count_content(self, source_type: Optional[SourceType] = None) -> int:
        return self.content.count(source_type)

    def is_message_processed(self, message_id: str) -> bool:
        return self.messages.is_processed(message_id)

    def record_processed_message(
        self,
        message_id: str,
        content_hash: Optional[str],
        content_id: Optional[str] = None,
        user_id: Optional[str] = None,
        source_id: Optional[str] = None,
        author: Optional[str] = None,
        post_url: Optional[str] = None,
    ) -> bool:
        return self.messages.record(
            ProcessedMessage(
                message_id=message_id,
                content_hash=content_hash,
                content_id=content_id,
                user_id=user_id,
                source_id=source_id,
                author=author,
                post_url=post_url,
            )
        )

    def get_processed_message(self, message_id: str) -> Optional[ProcessedMessage]:
        return self.messages.get(message_id)

    def count_processed_messages(self, user_id: Optional[str] = None) -> int:
        return self.messages.count(user_id)

    def ensure_subscription(self, user_id: str, creator_id: str) -> None:
        self.creators.ensure_subscription(user_id, creator_id)
