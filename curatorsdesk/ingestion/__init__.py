"""
Curator's Desk Ingestion
========================

Getting raw content in: feed discovery, fetching and parsing of RSS, Atom and
JSON Feed documents, and newsletter extraction from mailbox messages.
"""

from .feed_discovery import DiscoveryResult, FeedDiscovery
from .feed_parser import CacheTokens, FeedFetcher, FeedFetchResult, NotModified, parse_feed
from .inbox_extractor import InboxExtractor, NewsletterPost
from .items import NormalizedItem, ParsedFeed

__all__ = [
    "CacheTokens",
    "DiscoveryResult",
    "FeedDiscovery",
    "FeedFetcher",
    "FeedFetchResult",
    "InboxExtractor",
    "NewsletterPost",
    "NormalizedItem",
    "NotModified",
    "ParsedFeed",
    "parse_feed",
]
