"""
HTTP Client
===========

Shared aiohttp session factory and a single GET helper used by discovery,
feed fetching and the mailbox API client. Every request carries the fixed
user agent and an explicit timeout; timeouts and connection errors surface
as ``FetchFailure`` and are never retried inline.
"""

import asyncio
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional

import aiohttp
import certifi

from ..config.settings import get_settings
from ..utils.exceptions import ErrorCode, FetchFailure

ACCEPT_FEEDS = (
    "application/rss+xml, application/atom+xml, application/feed+json, "
    "application/xml;q=0.9, text/xml;q=0.9, text/html;q=0.8, */*;q=0.5"
)


@dataclass
class FetchedDocument:
    """A completed HTTP response with its body already read."""

    url: str
    status: int
    body: bytes = b""
    content_type: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    charset: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def not_modified(self) -> bool:
        return self.status == 304

    @property
    def text(self) -> str:
        try:
            return self.body.decode(self.charset or "utf-8", errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


@asynccontextmanager
async def create_session(
    max_connections: Optional[int] = None, user_agent: Optional[str] = None
) -> AsyncIterator[aiohttp.ClientSession]:
    """Open a configured aiohttp session.

    Args:
        max_connections: Connection pool limit (default from config)
        user_agent: User-Agent header (default from config)
    """
    settings = get_settings()
    limit = max_connections or settings.fetch.parallel_sources * 2

    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(
        ssl=ssl_context,
        limit=limit,
        limit_per_host=5,
        enable_cleanup_closed=True,
    )

    headers = {
        "User-Agent": user_agent or settings.fetch.user_agent,
        "Accept": ACCEPT_FEEDS,
    }

    async with aiohttp.ClientSession(connector=connector, headers=headers) as session:
        yield session


async def fetch_document(
    session: aiohttp.ClientSession,
    url: str,
    timeout: float,
    headers: Optional[Dict[str, str]] = None,
) -> FetchedDocument:
    """GET ``url`` and read the body unless the server answered 304.

    Raises:
        FetchFailure: On timeout or connection errors; HTTP status codes are
            returned to the caller, not raised
    """
    try:
        async with session.get(
            url,
            headers=headers or {},
            timeout=aiohttp.ClientTimeout(total=timeout),
            allow_redirects=True,
        ) as response:
            body = b"" if response.status == 304 else await response.read()
            return FetchedDocument(
                url=str(response.url),
                status=response.status,
                body=body,
                content_type=response.headers.get("Content-Type"),
                etag=response.headers.get("ETag"),
                last_modified=response.headers.get("Last-Modified"),
                charset=response.charset,
                reason=response.reason,
            )
    except asyncio.TimeoutError as e:
        raise FetchFailure(
            f"Request timeout after {timeout}s",
            url=url,
            error_code=ErrorCode.FEED_FETCH_TIMEOUT,
        ) from e
    except aiohttp.ClientError as e:
        raise FetchFailure(f"Network error: {e}", url=url) from e
