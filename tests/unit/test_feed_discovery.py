"""
Unit Tests for Feed Discovery
=============================

Well-known path probing, the HTML link-tag fallback and manual feed URL
validation.
"""

import asyncio

import pytest

from curatorsdesk.database.models import DiscoveryMethod, FeedFormat
from curatorsdesk.ingestion.feed_discovery import FeedDiscovery, find_alternate_links
from curatorsdesk.utils.exceptions import DiscoveryFailure, FetchFailure, ParseFailure, ValidationError

SITE = "https://example.com"


@pytest.fixture
def discovery():
    return FeedDiscovery(timeout=5)


class TestFindAlternateLinks:
    def test_resolves_relative_links(self, site_html_with_feed_link):
        assert find_alternate_links(site_html_with_feed_link, SITE) == ["https://example.com/custom/feed"]

    def test_filters_and_deduplicates(self):
        html = """
        <html><head>
            <link rel="alternate" type="application/atom+xml" href="https://cdn.example.com/atom">
            <link rel="alternate" type="text/html" href="/fr/">
            <link rel="alternate" type="application/feed+json; charset=utf-8" href="/feed.json">
            <link rel="alternate" type="application/atom+xml" href="https://cdn.example.com/atom">
            <link rel="icon" type="application/rss+xml" href="/not-alternate">
        </head></html>
        """
        assert find_alternate_links(html, SITE) == [
            "https://cdn.example.com/atom",
            "https://example.com/feed.json",
        ]


class TestDiscover:
    """Probe ordering and fallbacks."""

    @pytest.mark.asyncio
    async def test_well_known_path_beats_link_tag(
        self, discovery, fake_session, sample_rss_feed, site_html_with_feed_link, sample_atom_feed
    ):
        fake_session.add(f"{SITE}/rss.xml", sample_rss_feed, content_type="application/rss+xml")
        fake_session.add(SITE, site_html_with_feed_link, content_type="text/html")
        fake_session.add(f"{SITE}/custom/feed", sample_atom_feed, content_type="application/atom+xml")

        result = await discovery.discover(fake_session, "example.com")

        assert result.feed_url == "https://example.com/rss.xml"
        assert result.feed_type == FeedFormat.RSS
        assert result.discovery_method == DiscoveryMethod.WELL_KNOWN_PATH
        assert result.site_url == SITE
        assert result.title == "Example Engineering Blog"
        assert result.description == "Notes from the example engineering team"

        requested = [url for url, _ in fake_session.requests]
        assert requested == ["https://example.com/feed.xml", "https://example.com/rss.xml"]

    @pytest.mark.asyncio
    async def test_link_tag_fallback(self, discovery, fake_session, site_html_with_feed_link, sample_atom_feed):
        fake_session.add(SITE, site_html_with_feed_link, content_type="text/html")
        fake_session.add(f"{SITE}/custom/feed", sample_atom_feed, content_type="application/atom+xml")

        result = await discovery.discover(fake_session, "example.com/")

        assert result.feed_url == "https://example.com/custom/feed"
        assert result.feed_type == FeedFormat.ATOM
        assert result.discovery_method == DiscoveryMethod.HTML_LINK_TAG
        assert result.title == "Atom Example"

        # Every well-known path was tried first
        requested = [url for url, _ in fake_session.requests]
        assert requested.index(SITE) == len(discovery.well_known_paths)

    @pytest.mark.asyncio
    async def test_html_at_well_known_path_is_skipped(
        self, discovery, fake_session, site_html_with_feed_link, sample_json_feed
    ):
        fake_session.add(f"{SITE}/feed.xml", "<html><body>Not here</body></html>", content_type="text/html")
        fake_session.add(f"{SITE}/feed.json", sample_json_feed, content_type="application/json")

        result = await discovery.discover(fake_session, SITE)

        assert result.feed_url == "https://example.com/feed.json"
        assert result.feed_type == FeedFormat.JSON_FEED

    @pytest.mark.asyncio
    async def test_probe_timeout_is_tolerated(self, discovery, fake_session, sample_rss_feed):
        fake_session.add_error(f"{SITE}/feed.xml", asyncio.TimeoutError())
        fake_session.add(f"{SITE}/rss.xml", sample_rss_feed, content_type="text/xml")

        result = await discovery.discover(fake_session, SITE)

        assert result.feed_url == "https://example.com/rss.xml"

    @pytest.mark.asyncio
    async def test_no_feed_found(self, discovery, fake_session):
        fake_session.add(SITE, "<html><head></head><body>No feeds</body></html>", content_type="text/html")

        with pytest.raises(DiscoveryFailure) as exc_info:
            await discovery.discover(fake_session, "example.com")

        assert str(exc_info.value.message) == (
            "No feed found for example.com. Please provide the feed URL manually."
        )

    @pytest.mark.asyncio
    async def test_custom_well_known_paths(self, fake_session, sample_rss_feed):
        fake_session.add(f"{SITE}/blog/rss", sample_rss_feed, content_type="application/rss+xml")

        result = await FeedDiscovery(timeout=5, well_known_paths=["/blog/rss"]).discover(fake_session, SITE)

        assert result.feed_url == "https://example.com/blog/rss"

    @pytest.mark.asyncio
    async def test_invalid_site_url(self, discovery, fake_session):
        with pytest.raises(ValidationError):
            await discovery.discover(fake_session, "")


class TestValidateManualFeed:
    """User-supplied feed URLs skip discovery."""

    @pytest.mark.asyncio
    async def test_valid_feed(self, discovery, fake_session, sample_rss_feed):
        feed_url = "https://blog.example.com/custom.rss"
        fake_session.add(feed_url, sample_rss_feed, content_type="application/rss+xml")

        result = await discovery.validate_manual_feed(fake_session, feed_url)

        assert result.discovery_method == DiscoveryMethod.MANUAL
        assert result.feed_type == FeedFormat.RSS
        assert result.site_url == "https://blog.example.com"
        assert result.title == "Example Engineering Blog"
        assert len(fake_session.requests) == 1

    @pytest.mark.asyncio
    async def test_explicit_site_url_wins(self, discovery, fake_session, sample_rss_feed):
        feed_url = "https://feeds.example.net/blog"
        fake_session.add(feed_url, sample_rss_feed, content_type="application/rss+xml")

        result = await discovery.validate_manual_feed(fake_session, feed_url, site_url="example.org")

        assert result.site_url == "https://example.org"

    @pytest.mark.asyncio
    async def test_http_error(self, discovery, fake_session):
        with pytest.raises(FetchFailure) as exc_info:
            await discovery.validate_manual_feed(fake_session, "https://example.com/missing.xml")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_not_a_feed(self, discovery, fake_session, site_html_with_feed_link):
        fake_session.add(f"{SITE}/page", site_html_with_feed_link, content_type="text/html")

        with pytest.raises(ParseFailure):
            await discovery.validate_manual_feed(fake_session, f"{SITE}/page")
