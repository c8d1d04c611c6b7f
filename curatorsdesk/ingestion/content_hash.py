"""
Content Hashing
===============

Deterministic deduplication keys. The two compositions differ on purpose;
lookups are always scoped by source type so the digests never meet.
"""

import hashlib
from typing import Optional

FEED_HASH_LENGTH = 16


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def feed_item_hash(url: str, title: str, content: Optional[str]) -> str:
    """Hash of a feed item: ``sha256(url|title|content)`` truncated to 16 hex chars."""
    return _sha256_hex(f"{url}|{title}|{content or ''}")[:FEED_HASH_LENGTH]


def newsletter_post_hash(post_url: str, title: str, author: str) -> str:
    """Hash of a newsletter post: full ``sha256(post_url:title:author)`` hex digest."""
    return _sha256_hex(f"{post_url}:{title}:{author}")
