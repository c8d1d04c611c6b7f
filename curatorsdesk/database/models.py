"""
Curator's Desk Data Models
==========================

Pydantic models for the entities the ingestion pipeline persists. They mirror
the SQLite schema and are also what the in-memory store keeps.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
import uuid

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class SourceType(str, Enum):
    """Where content comes from. Dedup lookups are always scoped by it."""
    RSS = "rss"
    NEWSLETTER = "newsletter"


class FeedFormat(str, Enum):
    """Closed set of feed formats the parser understands."""
    RSS = "rss"
    ATOM = "atom"
    JSON_FEED = "json_feed"


class DiscoveryMethod(str, Enum):
    """How a feed endpoint was located."""
    WELL_KNOWN_PATH = "well_known_path"
    HTML_LINK_TAG = "html_link_tag"
    MANUAL = "manual"


class SyncStatus(str, Enum):
    """Persisted outcome of the last sync cycle."""
    SUCCESS = "success"
    ERROR = "error"


class Source(BaseModel):
    """One user's subscription to a feed or a mailbox."""
    id: str = Field(default_factory=new_id, description="Source ID")
    user_id: str = Field(..., min_length=1, description="Owning user")
    source_type: SourceType = Field(default=SourceType.RSS, description="Feed or mailbox source")
    site_url: str = Field(..., min_length=1, description="Site URL, or mailbox address for newsletters")
    feed_url: Optional[str] = Field(default=None, description="Resolved feed endpoint")
    feed_type: Optional[FeedFormat] = Field(default=None, description="Feed format")
    discovery_method: Optional[DiscoveryMethod] = Field(default=None, description="How the feed was found")
    title: Optional[str] = Field(default=None, description="Feed title")
    description: Optional[str] = Field(default=None, description="Feed description")
    etag: Optional[str] = Field(default=None, description="Last ETag returned by the server")
    last_modified: Optional[str] = Field(default=None, description="Last Last-Modified returned by the server")
    last_sync_status: Optional[SyncStatus] = Field(default=None, description="Outcome of the last sync")
    last_sync_error: Optional[str] = Field(default=None, description="Error text of the last failed sync")
    last_checked_at: Optional[datetime] = Field(default=None, description="Last sync attempt")
    last_synced_at: Optional[datetime] = Field(default=None, description="Last successful sync")
    added_at: datetime = Field(default_factory=utc_now)
    is_active: bool = Field(default=True, description="False once the user removed the source")

    @property
    def is_mailbox(self) -> bool:
        return self.source_type == SourceType.NEWSLETTER

    def __str__(self) -> str:
        return f"Source({self.source_type.value}:{self.feed_url or self.site_url})"


class Creator(BaseModel):
    """Normalized author or publication."""
    id: str = Field(default_factory=new_id, description="Creator ID")
    source_type: SourceType = Field(..., description="Source type the identity belongs to")
    external_id: str = Field(..., min_length=1, description="Feed URL or sender address")
    name: str = Field(..., description="Display name")
    description: Optional[str] = Field(default=None)
    profile_url: Optional[str] = Field(default=None)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def __str__(self) -> str:
        return f"Creator({self.name})"


class ContentItem(BaseModel):
    """One normalized, deduplicated post."""
    id: str = Field(default_factory=new_id, description="Content ID")
    creator_id: str = Field(..., description="Owning creator")
    source_type: SourceType = Field(..., description="Source type")
    external_id: str = Field(..., min_length=1, description="Item URL, guid or post URL")
    title: str = Field(default="Untitled", description="Item title")
    description: Optional[str] = Field(default=None, description="Plain-text excerpt")
    url: Optional[str] = Field(default=None, description="Canonical URL")
    content_html: Optional[str] = Field(default=None, description="Full HTML body when known")
    author: Optional[str] = Field(default=None)
    published_at: datetime = Field(default_factory=utc_now)
    published_at_estimated: bool = Field(default=False, description="Publish time was missing and set to ingestion time")
    content_hash: str = Field(..., min_length=16, max_length=64, description="Deduplication key")
    is_edited: bool = Field(default=False, description="Updated in place after first ingestion")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        v = (v or "").strip()
        return v or "Untitled"

    def __str__(self) -> str:
        return f"ContentItem({self.title[:50]})"


class ProcessedMessage(BaseModel):
    """Ledger row marking one inbox message as evaluated."""
    message_id: str = Field(..., min_length=1, description="Provider message ID")
    user_id: Optional[str] = Field(default=None)
    source_id: Optional[str] = Field(default=None)
    content_hash: Optional[str] = Field(default=None, description="Null when the message was not extractable")
    content_id: Optional[str] = Field(default=None, description="Resulting or pre-existing content item")
    author: Optional[str] = Field(default=None)
    post_url: Optional[str] = Field(default=None)
    processed_at: datetime = Field(default_factory=utc_now)

    @property
    def was_extracted(self) -> bool:
        return self.content_id is not None
