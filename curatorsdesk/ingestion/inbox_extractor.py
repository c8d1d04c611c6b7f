"""
Inbox Extractor
===============

Turns one raw mailbox message (Gmail API ``format=full`` shape) into a
newsletter post, or ``None`` when the message is not an extractable post.

The canonical post URL is chosen by ``DEFAULT_URL_RULES``, an ordered list of
reject/accept/fallback rules. Provider quirks are added as new rules rather
than as branches in the extractor.
"""

import base64
import binascii
import html as html_lib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple, Union
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from ..database.models import SourceType
from ..utils.logging import get_logger_for_component
from .content_hash import newsletter_post_hash
from .items import NormalizedItem

URL_PATTERN = re.compile(r"https?://[^\s\"'<>]+")
FROM_PATTERN = re.compile(r"^(.*?)\s*<(.+?)>$")

NEWSLETTER_HOST_SUFFIX = ".substack.com"
_NON_PUBLICATION_HOSTS = {"substack.com", "www.substack.com", "open.substack.com"}


# ---------------------------------------------------------------------------
# Raw message shape
# ---------------------------------------------------------------------------


class MessageHeader(BaseModel):
    name: str
    value: str = ""


class MessageBody(BaseModel):
    data: Optional[str] = None
    size: Optional[int] = None


class MessagePart(BaseModel):
    """A MIME part; ``payload`` itself is the root part."""
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    headers: List[MessageHeader] = Field(default_factory=list)
    body: MessageBody = Field(default_factory=MessageBody)
    parts: List["MessagePart"] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "extra": "ignore"}


MessagePart.model_rebuild()


class InboxMessage(BaseModel):
    """A mailbox message as returned by the provider API."""
    id: str = Field(..., min_length=1)
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    snippet: Optional[str] = None
    internal_date: Optional[Union[int, str]] = Field(default=None, alias="internalDate")
    payload: MessagePart = Field(default_factory=MessagePart)

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for header in self.payload.headers:
            if header.name.lower() == wanted:
                return header.value
        return None


# ---------------------------------------------------------------------------
# URL rules
# ---------------------------------------------------------------------------


class RuleAction(str, Enum):
    REJECT = "reject"
    ACCEPT = "accept"
    FALLBACK = "fallback"


def _keep(url: str) -> str:
    return url


def _strip_query(url: str) -> str:
    return url.split("?", 1)[0].split("#", 1)[0]


@dataclass(frozen=True)
class UrlRule:
    """One step of post URL selection.

    REJECT rules drop candidate URLs, ACCEPT rules pick the first surviving
    candidate they match, FALLBACK rules search the raw HTML.
    """

    name: str
    action: RuleAction
    pattern: Pattern
    normalize: Callable[[str], str] = _keep

    def matches(self, url: str) -> bool:
        return bool(self.pattern.search(url))


DEFAULT_URL_RULES: List[UrlRule] = [
    UrlRule("cdn", RuleAction.REJECT, re.compile(re.escape("substackcdn.com"))),
    UrlRule("image", RuleAction.REJECT, re.compile(re.escape("/image/"))),
    UrlRule("profile", RuleAction.REJECT, re.compile(re.escape("substack.com/@"))),
    UrlRule("live_stream", RuleAction.REJECT, re.compile(re.escape("open.substack.com/live-stream"))),
    UrlRule(
        "direct_post",
        RuleAction.ACCEPT,
        re.compile(r"https?://[^/]+\.substack\.com/p/[^?&#]+"),
        normalize=_strip_query,
    ),
    # Query string must survive: the app link resolves the post from post_id.
    UrlRule(
        "app_link",
        RuleAction.ACCEPT,
        re.compile(r"substack\.com/app-link/post\?.*post_id="),
    ),
    UrlRule(
        "redirect",
        RuleAction.FALLBACK,
        re.compile(r"https://substack\.com/redirect/\d+/[A-Za-z0-9+/=]+"),
    ),
]


def select_post_url(html: str, rules: Optional[List[UrlRule]] = None) -> Optional[str]:
    """Apply ``rules`` to the absolute URLs found in ``html``."""
    rules = DEFAULT_URL_RULES if rules is None else rules

    urls: List[str] = []
    for raw in URL_PATTERN.findall(html):
        url = html_lib.unescape(raw)
        if url not in urls:
            urls.append(url)

    reject_rules = [r for r in rules if r.action == RuleAction.REJECT]
    candidates = [u for u in urls if not any(r.matches(u) for r in reject_rules)]

    for rule in rules:
        if rule.action == RuleAction.ACCEPT:
            for url in candidates:
                if rule.matches(url):
                    return rule.normalize(url)

    for rule in rules:
        if rule.action == RuleAction.FALLBACK:
            match = rule.pattern.search(html)
            if match:
                return rule.normalize(match.group(0))

    return None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


@dataclass
class NewsletterPost:
    """A newsletter post extracted from one message."""

    message_id: str
    author_name: str
    author_email: str
    title: str
    post_url: str
    published_at: datetime
    html: str
    excerpt: Optional[str] = None
    published_at_estimated: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    # Header values as received; the hash is computed over these, not the display fallbacks
    subject: Optional[str] = None
    sender_name: Optional[str] = None

    @property
    def content_hash(self) -> str:
        title = self.title if self.subject is None else self.subject
        author = self.author_name if self.sender_name is None else self.sender_name
        return newsletter_post_hash(self.post_url, title, author)

    @property
    def handle(self) -> str:
        """Publication handle: the post URL's subdomain, else the sender's local part."""
        host = (urlparse(self.post_url).hostname or "").lower()
        if host.endswith(NEWSLETTER_HOST_SUFFIX) and host not in _NON_PUBLICATION_HOSTS:
            return host[: -len(NEWSLETTER_HOST_SUFFIX)].split(".")[-1]
        return self.author_email.split("@", 1)[0].lower()

    @property
    def profile_url(self) -> str:
        return f"https://{self.handle}{NEWSLETTER_HOST_SUFFIX}"

    def to_item(self) -> NormalizedItem:
        return NormalizedItem(
            source_type=SourceType.NEWSLETTER,
            external_id=self.post_url,
            title=self.title,
            url=self.post_url,
            published_at=self.published_at,
            published_at_estimated=self.published_at_estimated,
            content_hash=self.content_hash,
            description=self.excerpt,
            content_html=self.html,
            author=self.author_name,
            metadata={
                "message_id": self.message_id,
                "sender_email": self.author_email,
                "handle": self.handle,
                **self.metadata,
            },
        )


def parse_from_header(value: Optional[str]) -> Tuple[str, str]:
    """Split ``Name <address>`` into (name, address); unparseable values fill both."""
    value = (value or "").strip()
    match = FROM_PATTERN.match(value)
    if not match:
        return value, value

    name = match.group(1).strip().strip('"').strip()
    address = match.group(2).strip()
    return name or address, address


def sender_hash_name(value: Optional[str]) -> str:
    """Author component of the post hash: the raw display name, quotes included.

    ``<address>`` alone yields an empty string; an unparseable header is used whole.
    """
    value = value or ""
    match = FROM_PATTERN.match(value)
    return match.group(1).strip() if match else value


def decode_body(data: Optional[str]) -> Optional[str]:
    """Decode a base64url (or standard base64) body payload."""
    if not data:
        return None
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError):
        return None
    return raw.decode("utf-8", errors="replace")


def find_html_part(part: MessagePart) -> Optional[MessagePart]:
    """Depth-first search for the first ``text/html`` part carrying data."""
    for child in part.parts:
        if (child.mime_type or "").lower() == "text/html" and child.body.data:
            return child
        nested = find_html_part(child)
        if nested:
            return nested
    return None


def _parse_date_header(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _internal_date(value: Optional[Union[int, str]]) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


class InboxExtractor:
    """Newsletter post extraction from raw mailbox messages."""

    def __init__(self, rules: Optional[List[UrlRule]] = None):
        self.rules = list(rules) if rules is not None else list(DEFAULT_URL_RULES)
        self.logger = get_logger_for_component("inbox_extractor")

    def extract(self, message: Union[Dict[str, Any], InboxMessage]) -> Optional[NewsletterPost]:
        """Extract a post from ``message``; never raises for a single bad message."""
        message_id = message.get("id") if isinstance(message, dict) else message.id
        try:
            if not isinstance(message, InboxMessage):
                message = InboxMessage.model_validate(message)
            return self._extract(message)
        except PydanticValidationError as e:
            self.logger.warning(
                f"Malformed mailbox message {message_id}: {e.error_count()} validation errors"
            )
        except Exception as e:
            self.logger.warning(f"Failed to extract message {message_id}: {e}", exc_info=True)
        return None

    def _extract(self, message: InboxMessage) -> Optional[NewsletterPost]:
        author_name, author_email = parse_from_header(message.header("From"))
        subject = message.header("Subject") or "Untitled"
        title = subject.strip() or "Untitled"

        html_part = find_html_part(message.payload)
        html = decode_body(html_part.body.data if html_part else message.payload.body.data)
        if not html:
            self.logger.debug(f"Message {message.id} has no HTML body")
            return None

        post_url = select_post_url(html, self.rules)
        if not post_url:
            self.logger.debug(f"No post URL found in message {message.id}")
            return None

        published = _internal_date(message.internal_date) or _parse_date_header(message.header("Date"))
        estimated = published is None

        return NewsletterPost(
            message_id=message.id,
            author_name=author_name or "Unknown",
            author_email=author_email.lower(),
            title=title,
            post_url=post_url,
            published_at=published or datetime.now(timezone.utc),
            published_at_estimated=estimated,
            html=html,
            excerpt=html_lib.unescape(message.snippet) if message.snippet else None,
            subject=subject,
            sender_name=sender_hash_name(message.header("From")),
        )
