"""
In-Memory Content Store
=======================

Dict-backed ``ContentStore`` with the same uniqueness rules as the SQLite
schema. Used by unit tests and dry runs.
"""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from ..database.models import (
    ContentItem,
    Creator,
    ProcessedMessage,
    Source,
    SourceType,
    SyncStatus,
    utc_now,
)
from ..utils.exceptions import DatabaseError, ErrorCode
from .base import ContentStore


class InMemoryContentStore(ContentStore):
    """Thread-safe in-process store."""

    def __init__(self):
        self._lock = threading.RLock()
        self.sources: Dict[str, Source] = {}
        self.creators: Dict[str, Creator] = {}
        self.content: Dict[str, ContentItem] = {}
        self.messages: Dict[str, ProcessedMessage] = {}
        self.subscriptions: Set[Tuple[str, str]] = set()

    # Sources

    def get_source(self, source_id: str) -> Optional[Source]:
        with self._lock:
            source = self.sources.get(source_id)
            return source.model_copy() if source else None

    def list_active_sources(self, user_id: Optional[str] = None) -> List[Source]:
        with self._lock:
            sources = [
                s.model_copy()
                for s in self.sources.values()
                if s.is_active and (user_id is None or s.user_id == user_id)
            ]
        return sorted(sources, key=lambda s: s.added_at)

    def find_active_source(
        self, user_id: str, source_type: SourceType, locator: str
    ) -> Optional[Source]:
        with self._lock:
            for source in self.sources.values():
                key = source.site_url if source.is_mailbox else source.feed_url
                if (
                    source.is_active
                    and source.user_id == user_id
                    and source.source_type == source_type
                    and key == locator
                ):
                    return source.model_copy()
        return None

    def create_source(self, source: Source) -> Source:
        with self._lock:
            if source.id in self.sources:
                raise DatabaseError(
                    f"Source {source.id} already exists",
                    error_code=ErrorCode.DATABASE_CONSTRAINT,
                )
            self.sources[source.id] = source.model_copy()
        return source

    def update_sync_status(
        self, source_id: str, status: SyncStatus, error: Optional[str] = None
    ) -> None:
        with self._lock:
            source = self.sources.get(source_id)
            if source is None:
                return
            now = utc_now()
            source.last_sync_status = status
            source.last_checked_at = now
            if status == SyncStatus.SUCCESS:
                source.last_sync_error = None
                source.last_synced_at = now
            else:
                source.last_sync_error = error

    def update_cache_tokens(
        self, source_id: str, etag: Optional[str], last_modified: Optional[str]
    ) -> None:
        with self._lock:
            source = self.sources.get(source_id)
            if source is not None:
                source.etag = etag
                source.last_modified = last_modified

    def deactivate_source(self, source_id: str) -> bool:
        with self._lock:
            source = self.sources.get(source_id)
            if source is None:
                return False
            source.is_active = False
            return True

    # Creators

    def upsert_creator(
        self,
        source_type: SourceType,
        external_id: str,
        name: str,
        description: Optional[str] = None,
        profile_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        with self._lock:
            for creator in self.creators.values():
                if creator.source_type == source_type and creator.external_id == external_id:
                    creator.name = name
                    if description is not None:
                        creator.description = description
                    if profile_url is not None:
                        creator.profile_url = profile_url
                    if metadata:
                        creator.metadata = dict(metadata)
                    creator.updated_at = utc_now()
                    return creator.id

            creator = Creator(
                source_type=source_type,
                external_id=external_id,
                name=name,
                description=description,
                profile_url=profile_url,
                metadata=dict(metadata or {}),
            )
            self.creators[creator.id] = creator
            return creator.id

    def get_creator(self, creator_id: str) -> Optional[Creator]:
        with self._lock:
            creator = self.creators.get(creator_id)
            return creator.model_copy() if creator else None

    # Content

    def find_content_by_hash(
        self, source_type: SourceType, content_hash: str
    ) -> Optional[ContentItem]:
        with self._lock:
            for item in self.content.values():
                if item.source_type == source_type and item.content_hash == content_hash:
                    return item.model_copy()
        return None

    def find_content_by_external_id(
        self, source_type: SourceType, external_id: str, creator_id: Optional[str] = None
    ) -> Optional[ContentItem]:
        with self._lock:
            matches = [
                item
                for item in self.content.values()
                if item.source_type == source_type
                and item.external_id == external_id
                and (creator_id is None or item.creator_id == creator_id)
            ]
        if not matches:
            return None
        return min(matches, key=lambda item: item.created_at).model_copy()

    def insert_content(self, item: ContentItem) -> str:
        with self._lock:
            if item.creator_id not in self.creators:
                raise DatabaseError(
                    f"Unknown creator {item.creator_id}",
                    error_code=ErrorCode.DATABASE_CONSTRAINT,
                )
            if self.find_content_by_hash(item.source_type, item.content_hash):
                raise DatabaseError(
                    f"Content with hash {item.content_hash} already exists",
                    error_code=ErrorCode.DATABASE_CONSTRAINT,
                )
            self.content[item.id] = item.model_copy()
        return item.id

    def update_content(
        self,
        content_id: str,
        title: str,
        description: Optional[str],
        content_hash: str,
        content_html: Optional[str] = None,
        published_at: Optional[datetime] = None,
    ) -> None:
        with self._lock:
            item = self.content.get(content_id)
            if item is None:
                raise DatabaseError(f"Content {content_id} not found for update")
            clash = self.find_content_by_hash(item.source_type, content_hash)
            if clash and clash.id != content_id:
                raise DatabaseError(
                    "Edited content collides with an existing hash",
                    error_code=ErrorCode.DATABASE_CONSTRAINT,
                )
            item.title = title
            item.description = description
            item.content_hash = content_hash
            if content_html is not None:
                item.content_html = content_html
            if published_at is not None:
                item.published_at = published_at
            item.is_edited = True
            item.updated_at = utc_now()

    def get_latest_content(self, user_id: str, limit: int = 20) -> List[ContentItem]:
        with self._lock:
            feed_urls = {
                (s.source_type, s.feed_url)
                for s in self.sources.values()
                if s.is_active and s.user_id == user_id and s.feed_url
            }
            creator_ids = {
                c.id for c in self.creators.values() if (c.source_type, c.external_id) in feed_urls
            }
            creator_ids.update(cid for uid, cid in self.subscriptions if uid == user_id)
            items = [i.model_copy() for i in self.content.values() if i.creator_id in creator_ids]

        items.sort(key=lambda i: i.published_at, reverse=True)
        return items[:limit]

    def count_content(self, source_type: Optional[SourceType] = None) -> int:
        with self._lock:
            return sum(
                1
                for item in self.content.values()
                if source_type is None or item.source_type == source_type
            )

    # Mailbox ledger

    def is_message_processed(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self.messages

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
        with self._lock:
            if message_id in self.messages:
                return False
            self.messages[message_id] = ProcessedMessage(
                message_id=message_id,
                content_hash=content_hash,
                content_id=content_id,
                user_id=user_id,
                source_id=source_id,
                author=author,
                post_url=post_url,
            )
            return True

    def get_processed_message(self, message_id: str) -> Optional[ProcessedMessage]:
        with self._lock:
            entry = self.messages.get(message_id)
            return entry.model_copy() if entry else None

    def count_processed_messages(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1 for m in self.messages.values() if user_id is None or m.user_id == user_id
            )

    # Subscriptions

    def ensure_subscription(self, user_id: str, creator_id: str) -> None:
        with self._lock:
            self.subscriptions.add((user_id, creator_id))
