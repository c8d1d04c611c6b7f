"""
Feed Discovery
==============

Locates the feed behind a bare site URL. Well-known paths are probed first,
in order; only when none of them yields a feed is the site's HTML scanned for
``<link rel="alternate">`` tags. A caller-supplied feed URL skips discovery
and is validated by fetching and parsing it once.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import aiohttp
from bs4 import BeautifulSoup

from ..config.settings import get_settings
from ..database.models import DiscoveryMethod, FeedFormat
from ..utils.exceptions import DiscoveryFailure, FetchFailure, ParseFailure
from ..utils.logging import get_logger_for_component
from ..utils.validators import URLValidator
from .feed_parser import detect_feed_format, parse_feed
from .http_client import fetch_document

FEED_LINK_TYPES = {
    "application/rss+xml",
    "application/atom+xml",
    "application/feed+json",
}


@dataclass
class FeedProbe:
    """A candidate URL that answered 200 with a classifiable feed body."""

    url: str
    feed_type: FeedFormat
    body: bytes


@dataclass
class DiscoveryResult:
    """Where a site's feed lives and how it was found."""

    feed_url: str
    feed_type: FeedFormat
    discovery_method: DiscoveryMethod
    site_url: str
    title: Optional[str] = None
    description: Optional[str] = None


def extract_feed_metadata(body: bytes, feed_type: FeedFormat) -> Tuple[Optional[str], Optional[str]]:
    """Read (title, description) from a verified feed body.

    JSON Feed uses its ``title``/``description`` fields, Atom ``feed>title`` and
    ``feed>subtitle``, RSS ``channel>title`` and ``channel>description``.
    """
    try:
        feed = parse_feed(body, feed_type)
    except ParseFailure:
        return None, None
    return feed.title, feed.description


def find_alternate_links(html: str, base_url: str) -> List[str]:
    """Absolute hrefs of feed ``<link rel="alternate">`` tags, in document order."""
    soup = BeautifulSoup(html, "html.parser")
    candidates = []

    for link in soup.find_all("link", rel="alternate"):
        link_type = (link.get("type") or "").split(";")[0].strip().lower()
        href = (link.get("href") or "").strip()
        if link_type not in FEED_LINK_TYPES or not href:
            continue

        absolute = urljoin(base_url, href)
        if absolute not in candidates:
            candidates.append(absolute)

    return candidates


class FeedDiscovery:
    """Feed endpoint discovery for blog sources."""

    def __init__(self, timeout: Optional[float] = None, well_known_paths: Optional[List[str]] = None):
        """Initialize discovery.

        Args:
            timeout: Seconds allowed per probe (default from config)
            well_known_paths: Ordered paths to probe (default from config)
        """
        settings = get_settings()
        self.timeout = timeout or settings.fetch.discovery_timeout
        self.well_known_paths = well_known_paths or list(settings.discovery.well_known_paths)
        self.logger = get_logger_for_component("feed_discovery")

    async def discover(
        self, session: aiohttp.ClientSession, site_url: str, timeout: Optional[float] = None
    ) -> DiscoveryResult:
        """Find the feed for ``site_url``.

        Args:
            session: aiohttp session for requests
            site_url: Site URL as entered by the user, scheme optional
            timeout: Per-request timeout override

        Returns:
            DiscoveryResult describing the first verified feed

        Raises:
            DiscoveryFailure: If no well-known path or link tag yields a feed
            ValidationError: If ``site_url`` is not a usable URL
        """
        normalized = URLValidator.normalize_site_url(site_url)
        timeout = timeout or self.timeout

        for path in self.well_known_paths:
            candidate = urljoin(normalized, path)
            probe = await self.probe(session, candidate, timeout)
            if probe:
                self.logger.info(f"Discovered feed at well-known path: {candidate}")
                return self._result(probe, DiscoveryMethod.WELL_KNOWN_PATH, normalized)

        for candidate in await self._html_candidates(session, normalized, timeout):
            probe = await self.probe(session, candidate, timeout)
            if probe:
                self.logger.info(f"Discovered feed via link tag: {candidate}")
                return self._result(probe, DiscoveryMethod.HTML_LINK_TAG, normalized)

        self.logger.warning(f"No feed found for {site_url}")
        raise DiscoveryFailure(site_url)

    async def probe(
        self, session: aiohttp.ClientSession, url: str, timeout: Optional[float] = None
    ) -> Optional[FeedProbe]:
        """Fetch ``url`` and classify it; None when it is not a reachable feed."""
        try:
            document = await fetch_document(session, url, timeout or self.timeout)
        except FetchFailure as e:
            self.logger.debug(f"Probe failed for {url}: {e}")
            return None

        if document.status != 200:
            return None

        feed_type = detect_feed_format(document.content_type, document.text)
        if feed_type is None:
            return None

        return FeedProbe(url=url, feed_type=feed_type, body=document.body)

    async def _html_candidates(
        self, session: aiohttp.ClientSession, site_url: str, timeout: float
    ) -> List[str]:
        try:
            document = await fetch_document(session, site_url, timeout)
        except FetchFailure as e:
            self.logger.debug(f"Could not load site HTML for {site_url}: {e}")
            return []

        if not document.ok:
            return []

        return find_alternate_links(document.text, site_url)

    def _result(self, probe: FeedProbe, method: DiscoveryMethod, site_url: str) -> DiscoveryResult:
        title, description = extract_feed_metadata(probe.body, probe.feed_type)
        return DiscoveryResult(
            feed_url=probe.url,
            feed_type=probe.feed_type,
            discovery_method=method,
            site_url=site_url,
            title=title,
            description=description,
        )

    async def validate_manual_feed(
        self,
        session: aiohttp.ClientSession,
        feed_url: str,
        site_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> DiscoveryResult:
        """Validate a user-supplied feed URL by fetching and parsing it once.

        Raises:
            FetchFailure: If the URL cannot be fetched or does not answer 2xx
            ParseFailure: If the body is not a recognizable feed
        """
        feed_url = URLValidator.validate_url(feed_url)
        document = await fetch_document(session, feed_url, timeout or self.timeout)

        if not document.ok:
            raise FetchFailure(
                f"HTTP {document.status}: {document.reason or 'error'}",
                url=feed_url,
                status_code=document.status,
            )

        feed_type = detect_feed_format(document.content_type, document.text)
        if feed_type is None:
            raise ParseFailure("URL does not point to an RSS, Atom or JSON feed", url=feed_url)

        feed = parse_feed(document.body, feed_type, feed_url)

        if site_url:
            canonical_site = URLValidator.normalize_site_url(site_url)
        elif feed.link:
            canonical_site = URLValidator.normalize_site_url(feed.link)
        else:
            parsed = urlparse(feed_url)
            canonical_site = f"{parsed.scheme}://{parsed.netloc}"

        return DiscoveryResult(
            feed_url=feed_url,
            feed_type=feed_type,
            discovery_method=DiscoveryMethod.MANUAL,
            site_url=canonical_site,
            title=feed.title,
            description=feed.description,
        )
