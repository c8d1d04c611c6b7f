"""
Content Deduplication and Upsert
================================

Decides whether a normalized item is new, an edit of something already stored,
or a duplicate, and writes it through the ``ContentStore`` accordingly.

Lookup order per item:
1. ``(source_type, content_hash)`` hit means duplicate.
2. The creator is resolved (created on first sight).
3. Same external identity under the same creator with a different hash means
   an edit for feed items. Newsletter posts never change once stored.
4. Anything else is inserted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..database.models import ContentItem, SourceType
from ..storage.base import ContentStore
from ..utils.logging import get_logger_for_component
from ..utils.validators import ContentValidator
from ..ingestion.items import NormalizedItem


class ApplyOutcome(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    UPDATED = "updated"


@dataclass
class ApplyResult:
    """What happened to one item."""
    outcome: ApplyOutcome
    content_id: str
    creator_id: str

    @property
    def is_new(self) -> bool:
        return self.outcome == ApplyOutcome.CREATED


@dataclass
class SourceContext:
    """Creator identity and ownership for the items of one source (or one post)."""
    source_type: SourceType
    creator_external_id: str
    creator_name: str
    creator_description: Optional[str] = None
    creator_profile_url: Optional[str] = None
    creator_metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    source_id: Optional[str] = None
    creator_id: Optional[str] = None


class ContentDeduplicator:
    """Idempotent item application against a content store."""

    def __init__(self, store: ContentStore, max_description_length: int = 500):
        self.store = store
        self.max_description_length = max_description_length
        self.logger = get_logger_for_component("deduplicator")

    def apply(self, item: NormalizedItem, context: SourceContext) -> ApplyResult:
        """Store ``item`` unless it is already known.

        Args:
            item: Normalized item from the feed parser or inbox extractor
            context: Creator and ownership information for the item

        Returns:
            ApplyResult with the outcome and the affected content ID

        Raises:
            DatabaseError: If the store fails
        """
        content_hash = item.ensure_hash()

        existing = self.store.find_content_by_hash(item.source_type, content_hash)
        if existing:
            return ApplyResult(ApplyOutcome.DUPLICATE, existing.id, existing.creator_id)

        creator_id = self.resolve_creator(context)
        description = self._description_for(item)

        previous = self.store.find_content_by_external_id(
            item.source_type, item.external_id, creator_id=creator_id
        )
        if previous:
            if item.source_type == SourceType.NEWSLETTER:
                return ApplyResult(ApplyOutcome.DUPLICATE, previous.id, creator_id)

            self.store.update_content(
                previous.id,
                title=item.title,
                description=description,
                content_hash=content_hash,
                content_html=item.content_html,
                published_at=None if item.published_at_estimated else item.published_at,
            )
            self.logger.info(f"Detected edit of {item.external_id}")
            return ApplyResult(ApplyOutcome.UPDATED, previous.id, creator_id)

        content = ContentItem(
            creator_id=creator_id,
            source_type=item.source_type,
            external_id=item.external_id,
            title=item.title,
            description=description,
            url=item.url,
            content_html=item.content_html,
            author=item.author,
            published_at=item.published_at,
            published_at_estimated=item.published_at_estimated,
            content_hash=content_hash,
            metadata=dict(item.metadata),
        )
        content_id = self.store.insert_content(content)
        return ApplyResult(ApplyOutcome.CREATED, content_id, creator_id)

    def resolve_creator(self, context: SourceContext) -> str:
        """Upsert the context's creator once and cache the ID on the context."""
        if context.creator_id is None:
            context.creator_id = self.store.upsert_creator(
                context.source_type,
                context.creator_external_id,
                context.creator_name,
                description=context.creator_description,
                profile_url=context.creator_profile_url,
                metadata=context.creator_metadata or None,
            )
        return context.creator_id

    def _description_for(self, item: NormalizedItem) -> Optional[str]:
        # Newsletter excerpts are provider snippets and stored as given.
        if item.source_type == SourceType.RSS:
            return ContentValidator.truncate_text(item.description, self.max_description_length)
        return item.description
