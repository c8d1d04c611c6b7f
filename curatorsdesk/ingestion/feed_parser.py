"""
Feed Fetch & Parse
==================

Conditional fetching of feed endpoints and normalization of RSS, Atom and
JSON Feed payloads into ``NormalizedItem`` records.

Format handling is dispatched once, on ``FeedFormat``, through ``_PARSERS``.
RSS and Atom share the feedparser path; JSON Feed is read from its native
fields.
"""

import calendar
import io
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

import aiohttp
import feedparser

from ..config.settings import get_settings
from ..database.models import FeedFormat, SourceType
from ..utils.exceptions import FetchFailure, ParseFailure
from ..utils.logging import get_logger_for_component
from ..utils.validators import ContentValidator
from .content_hash import feed_item_hash
from .http_client import fetch_document
from .items import NormalizedItem, ParsedFeed

logger = get_logger_for_component("feed_parser")

ATOM_NAMESPACE = "http://www.w3.org/2005/Atom"
JSON_FEED_MARKER = "https://jsonfeed.org"

_EXPLICIT_CONTENT_TYPES = {
    "application/rss+xml": FeedFormat.RSS,
    "application/atom+xml": FeedFormat.ATOM,
    "application/feed+json": FeedFormat.JSON_FEED,
}

# Generic types only hint at a format; the body decides when it can.
_GENERIC_CONTENT_TYPES = {
    "application/xml": FeedFormat.RSS,
    "text/xml": FeedFormat.RSS,
    "application/json": FeedFormat.JSON_FEED,
}


@dataclass(frozen=True)
class CacheTokens:
    """Validators stored from the previous successful fetch."""

    etag: Optional[str] = None
    last_modified: Optional[str] = None

    def to_headers(self) -> Dict[str, str]:
        headers = {}
        if self.etag:
            headers["If-None-Match"] = self.etag
        if self.last_modified:
            headers["If-Modified-Since"] = self.last_modified
        return headers


@dataclass(frozen=True)
class NotModified:
    """The server answered 304; nothing was parsed."""

    feed_url: str


@dataclass
class FeedFetchResult:
    """A fetched and parsed feed plus the validators for the next request."""

    feed_url: str
    feed_type: FeedFormat
    feed: ParsedFeed
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def cache_tokens(self) -> CacheTokens:
        return CacheTokens(etag=self.etag, last_modified=self.last_modified)


def format_from_content_type(content_type: Optional[str]) -> Optional[FeedFormat]:
    """Map a Content-Type header to a feed format, ignoring parameters."""
    if not content_type:
        return None
    mime = content_type.split(";")[0].strip().lower()
    return _EXPLICIT_CONTENT_TYPES.get(mime) or _GENERIC_CONTENT_TYPES.get(mime)


def sniff_feed_format(text: str) -> Optional[FeedFormat]:
    """Recognize a feed from its body alone."""
    stripped = text.lstrip("\ufeff \t\r\n")
    if not stripped:
        return None

    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except ValueError:
            return None
        if isinstance(data, dict) and JSON_FEED_MARKER in str(data.get("version", "")):
            return FeedFormat.JSON_FEED
        return None

    if re.search(r"<feed[\s>]", stripped) and ATOM_NAMESPACE in stripped:
        return FeedFormat.ATOM
    if re.search(r"<rss[\s>]", stripped) or re.search(r"<channel[\s>]", stripped):
        return FeedFormat.RSS
    return None


def detect_feed_format(content_type: Optional[str], text: str) -> Optional[FeedFormat]:
    """Classify a response from its Content-Type, falling back to the body.

    Explicit feed MIME types are trusted. Generic XML/JSON types are refined
    by sniffing and fall back to their default mapping. Anything else is
    classified by sniffing only.
    """
    mime = (content_type or "").split(";")[0].strip().lower()

    if mime in _EXPLICIT_CONTENT_TYPES:
        return _EXPLICIT_CONTENT_TYPES[mime]

    sniffed = sniff_feed_format(text)
    if sniffed:
        return sniffed

    return _GENERIC_CONTENT_TYPES.get(mime)


def _struct_to_datetime(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_iso_datetime(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _published_or_now(published: Optional[datetime]) -> tuple:
    if published is not None:
        return published, False
    return datetime.now(timezone.utc), True


def _syndication_content(entry: Any) -> tuple:
    """Return (full content, summary) for a feedparser entry."""
    full_content = None
    contents = entry.get("content") or []
    for part in contents:
        value = part.get("value") if isinstance(part, dict) else None
        if value:
            full_content = value
            break

    summary = entry.get("summary") or entry.get("description")
    return full_content, summary


def _parse_syndication(body: bytes, feed_url: Optional[str]) -> ParsedFeed:
    parsed = feedparser.parse(io.BytesIO(body))

    if not parsed.entries and (parsed.get("bozo") or not parsed.get("version")):
        reason = parsed.get("bozo_exception") or "not an RSS or Atom document"
        raise ParseFailure(f"Feed parse error: {reason}", url=feed_url)

    if parsed.get("bozo"):
        logger.debug(f"Feed has parse warnings but contains entries: {feed_url}")

    channel = parsed.feed
    feed = ParsedFeed(
        title=channel.get("title"),
        description=channel.get("subtitle") or channel.get("description"),
        link=channel.get("link"),
    )

    for entry in parsed.entries:
        identity = entry.get("id") or entry.get("link")
        url = entry.get("link") or entry.get("id")
        if not identity:
            logger.warning(f"Entry without id or link in {feed_url}, skipping")
            continue

        raw_title = entry.get("title") or ""
        full_content, summary = _syndication_content(entry)
        author = (entry.get("author_detail") or {}).get("name") or entry.get("author")

        published = None
        for field_name in ("published_parsed", "updated_parsed", "created_parsed"):
            if entry.get(field_name):
                published = _struct_to_datetime(entry.get(field_name))
                if published:
                    break
        published_at, estimated = _published_or_now(published)

        content_or_summary = full_content or summary
        feed.items.append(
            NormalizedItem(
                source_type=SourceType.RSS,
                external_id=identity,
                title=raw_title or "Untitled",
                url=url,
                published_at=published_at,
                published_at_estimated=estimated,
                content_hash=feed_item_hash(url, raw_title, content_or_summary),
                description=ContentValidator.strip_html(summary or full_content) or None,
                content_html=full_content,
                author=author,
                metadata={"guid": entry.get("id")} if entry.get("id") else {},
            )
        )

    return feed


def _json_text(mapping: Dict[str, Any], key: str) -> Optional[str]:
    """String member of a JSON object; other types count as absent."""
    value = mapping.get(key)
    return value if isinstance(value, str) else None


def _json_feed_author(item: Dict[str, Any]) -> Optional[str]:
    # 1.1 uses an ``authors`` list, 1.0 a single ``author`` object
    candidates = []
    if isinstance(item.get("author"), dict):
        candidates.append(item["author"])
    if isinstance(item.get("authors"), list):
        candidates.extend(item["authors"])

    for candidate in candidates:
        if isinstance(candidate, dict) and _json_text(candidate, "name"):
            return candidate["name"]
    return None


def _parse_json_feed(body: bytes, feed_url: Optional[str]) -> ParsedFeed:
    try:
        data = json.loads(body)
    except ValueError as e:
        raise ParseFailure(f"Invalid JSON feed: {e}", url=feed_url) from e

    if not isinstance(data, dict) or not isinstance(data.get("items", []), list):
        raise ParseFailure("JSON feed must be an object with an items list", url=feed_url)

    feed = ParsedFeed(
        title=_json_text(data, "title"),
        description=_json_text(data, "description"),
        link=_json_text(data, "home_page_url"),
    )

    for position, item in enumerate(data.get("items", [])):
        if not isinstance(item, dict):
            raise ParseFailure(f"JSON feed item {position} is not an object", url=feed_url)

        identity = item.get("id") or item.get("url")
        url = item.get("url") or item.get("id")
        if not identity:
            logger.warning(f"JSON feed item without id or url in {feed_url}, skipping")
            continue
        if not isinstance(identity, (str, int)) or not isinstance(url, (str, int)):
            raise ParseFailure(f"JSON feed item {position} has a non-scalar id or url", url=feed_url)
        identity, url = str(identity), str(url)

        raw_title = _json_text(item, "title") or ""
        content_html = _json_text(item, "content_html")
        content_text = _json_text(item, "content_text")
        summary = _json_text(item, "summary")

        published = _parse_iso_datetime(item.get("date_published")) or _parse_iso_datetime(
            item.get("date_modified")
        )
        published_at, estimated = _published_or_now(published)

        description = summary or ContentValidator.strip_html(content_text or content_html) or None
        feed.items.append(
            NormalizedItem(
                source_type=SourceType.RSS,
                external_id=identity,
                title=raw_title or "Untitled",
                url=url,
                published_at=published_at,
                published_at_estimated=estimated,
                content_hash=feed_item_hash(url, raw_title, content_html or content_text or summary),
                description=description,
                content_html=content_html,
                author=_json_feed_author(item),
                metadata={"guid": identity},
            )
        )

    return feed


_PARSERS: Dict[FeedFormat, Callable[[bytes, Optional[str]], ParsedFeed]] = {
    FeedFormat.RSS: _parse_syndication,
    FeedFormat.ATOM: _parse_syndication,
    FeedFormat.JSON_FEED: _parse_json_feed,
}


def parse_feed(body: bytes, feed_type: FeedFormat, feed_url: Optional[str] = None) -> ParsedFeed:
    """Parse a feed payload of a known format.

    Raises:
        ParseFailure: If the body is not a valid document of that format
    """
    return _PARSERS[FeedFormat(feed_type)](body, feed_url)


class FeedFetcher:
    """Conditional fetch plus parse for one feed endpoint."""

    def __init__(self, timeout: Optional[float] = None):
        settings = get_settings()
        self.timeout = timeout or settings.fetch.request_timeout
        self.logger = get_logger_for_component("feed_fetcher")

    async def fetch_and_parse(
        self,
        session: aiohttp.ClientSession,
        feed_url: str,
        feed_type: Optional[FeedFormat] = None,
        cache_tokens: Optional[CacheTokens] = None,
    ) -> Union[FeedFetchResult, NotModified]:
        """Fetch ``feed_url`` with conditional headers and parse the body.

        Args:
            session: aiohttp session for requests
            feed_url: Feed endpoint
            feed_type: Known format; detected from the response when None
            cache_tokens: Stored ETag/Last-Modified values

        Returns:
            NotModified on 304, otherwise the parsed feed and fresh validators

        Raises:
            FetchFailure: Non-2xx/non-304 response, network error or timeout
            ParseFailure: Body is not a valid feed
        """
        headers = cache_tokens.to_headers() if cache_tokens else {}
        self.logger.debug(
            f"Fetching feed: {feed_url}",
            extra={"conditional": bool(headers)},
        )

        document = await fetch_document(session, feed_url, self.timeout, headers)

        if document.not_modified:
            self.logger.debug(f"Feed not modified: {feed_url}")
            return NotModified(feed_url=feed_url)

        if not document.ok:
            raise FetchFailure(
                f"HTTP {document.status}: {document.reason or 'error'}",
                url=feed_url,
                status_code=document.status,
            )

        if feed_type is None:
            feed_type = detect_feed_format(document.content_type, document.text)
            if feed_type is None:
                raise ParseFailure("Response is not a recognizable feed", url=feed_url)

        feed = parse_feed(document.body, feed_type, feed_url)
        self.logger.info(f"Fetched {feed.item_count} items from {feed_url}")

        return FeedFetchResult(
            feed_url=feed_url,
            feed_type=FeedFormat(feed_type),
            feed=feed,
            etag=document.etag,
            last_modified=document.last_modified,
        )
