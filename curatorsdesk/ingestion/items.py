"""
Normalized Items
================

The shape both ingestion paths converge on before deduplication.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..database.models import SourceType
from .content_hash import feed_item_hash


@dataclass
class NormalizedItem:
    """One post as produced by the feed parser or the inbox extractor."""

    source_type: SourceType
    external_id: str
    title: str
    url: Optional[str]
    published_at: datetime
    content_hash: Optional[str] = None
    description: Optional[str] = None
    content_html: Optional[str] = None
    author: Optional[str] = None
    published_at_estimated: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def ensure_hash(self) -> str:
        """Return the attached hash, computing the feed composition if missing."""
        if not self.content_hash:
            self.content_hash = feed_item_hash(
                self.url or self.external_id,
                self.title,
                self.content_html or self.description,
            )
        return self.content_hash


@dataclass
class ParsedFeed:
    """Feed-level metadata plus its items in document order."""

    title: Optional[str] = None
    description: Optional[str] = None
    link: Optional[str] = None
    items: List[NormalizedItem] = field(default_factory=list)

    @property
    def item_count(self) -> int:
        return len(self.items)
