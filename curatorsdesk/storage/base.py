"""
Content Store Interface
=======================

The repository surface the ingestion pipeline depends on. Pipeline code only
talks to a ``ContentStore``; ``SQLiteContentStore`` is the production
implementation and ``InMemoryContentStore`` backs unit tests.

Implementations raise ``DatabaseError`` when the store itself fails. Those
errors are fatal to a sync cycle, unlike per-source ingestion errors.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..database.models import (
    ContentItem,
    Creator,
    ProcessedMessage,
    Source,
    SourceType,
    SyncStatus,
)


class ContentStore(ABC):
    """Persistence operations used by discovery, dedup and sync."""

    # Sources

    @abstractmethod
    def get_source(self, source_id: str) -> Optional[Source]:
        """Get a source by ID, active or not."""

    @abstractmethod
    def list_active_sources(self, user_id: Optional[str] = None) -> List[Source]:
        """Active sources for one user, or for everyone when ``user_id`` is None."""

    @abstractmethod
    def find_active_source(
        self, user_id: str, source_type: SourceType, locator: str
    ) -> Optional[Source]:
        """Active source of ``user_id`` whose feed URL (or mailbox address) is ``locator``."""

    @abstractmethod
    def create_source(self, source: Source) -> Source:
        """Persist a new source and return it."""

    @abstractmethod
    def update_sync_status(
        self, source_id: str, status: SyncStatus, error: Optional[str] = None
    ) -> None:
        """Record a sync outcome; success clears the error and stamps ``last_synced_at``."""

    @abstractmethod
    def update_cache_tokens(
        self, source_id: str, etag: Optional[str], last_modified: Optional[str]
    ) -> None:
        """Replace the stored conditional-request validators."""

    @abstractmethod
    def deactivate_source(self, source_id: str) -> bool:
        """Soft-delete a source. Returns False when it does not exist."""

    # Creators

    @abstractmethod
    def upsert_creator(
        self,
        source_type: SourceType,
        external_id: str,
        name: str,
        description: Optional[str] = None,
        profile_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create or refresh the creator for (source_type, external_id); return its ID."""

    @abstractmethod
    def get_creator(self, creator_id: str) -> Optional[Creator]:
        """Get a creator by ID."""

    # Content

    @abstractmethod
    def find_content_by_hash(
        self, source_type: SourceType, content_hash: str
    ) -> Optional[ContentItem]:
        """Content item with this hash for this source type."""

    @abstractmethod
    def find_content_by_external_id(
        self, source_type: SourceType, external_id: str, creator_id: Optional[str] = None
    ) -> Optional[ContentItem]:
        """Content item with this identity, optionally limited to one creator."""

    @abstractmethod
    def insert_content(self, item: ContentItem) -> str:
        """Insert a new content item and return its ID."""

    @abstractmethod
    def update_content(
        self,
        content_id: str,
        title: str,
        description: Optional[str],
        content_hash: str,
        content_html: Optional[str] = None,
        published_at: Optional[datetime] = None,
    ) -> None:
        """Apply an edit in place and mark the item as edited."""

    @abstractmethod
    def get_latest_content(self, user_id: str, limit: int = 20) -> List[ContentItem]:
        """Newest content from creators the user follows or has feed sources for."""

    @abstractmethod
    def count_content(self, source_type: Optional[SourceType] = None) -> int:
        """Number of stored content items."""

    # Mailbox ledger

    @abstractmethod
    def is_message_processed(self, message_id: str) -> bool:
        """Whether the message already has a ledger row."""

    @abstractmethod
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
        """Write the ledger row once. Returns False if it already existed."""

    @abstractmethod
    def get_processed_message(self, message_id: str) -> Optional[ProcessedMessage]:
        """The ledger row for a message, if any."""

    @abstractmethod
    def count_processed_messages(self, user_id: Optional[str] = None) -> int:
        """Number of ledger rows."""

    # Subscriptions

    @abstractmethod
    def ensure_subscription(self, user_id: str, creator_id: str) -> None:
        """Subscribe the user to the creator if not already subscribed."""
