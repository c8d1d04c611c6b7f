"""
Unit Tests for Validators and Content Hashing
=============================================
"""

import hashlib

import pytest

from curatorsdesk.ingestion.content_hash import feed_item_hash, newsletter_post_hash
from curatorsdesk.utils.exceptions import ErrorCode, ValidationError
from curatorsdesk.utils.validators import ContentValidator, URLValidator


class TestURLValidator:
    """URL normalization used by discovery."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("example.com", "https://example.com"),
            ("example.com/", "https://example.com"),
            ("  https://Blog.Example.com/  ", "https://blog.example.com"),
            ("http://example.com/blog/", "http://example.com/blog"),
        ],
    )
    def test_normalize_site_url(self, raw, expected):
        assert URLValidator.normalize_site_url(raw) == expected

    def test_empty_url(self):
        with pytest.raises(ValidationError) as exc_info:
            URLValidator.normalize_site_url("   ")
        assert exc_info.value.error_code == ErrorCode.VALIDATION_REQUIRED_FIELD

    @pytest.mark.parametrize("url", ["javascript:alert(1)", "ftp://example.com/feed", "https://"])
    def test_invalid_urls(self, url):
        with pytest.raises(ValidationError):
            URLValidator.validate_url(url)

    def test_validate_drops_fragment(self):
        assert URLValidator.validate_url("HTTPS://Example.com/feed#top") == "https://example.com/feed"


class TestContentValidator:
    """Text cleanup before storage."""

    def test_truncate_long_text(self):
        text = "x" * 600
        truncated = ContentValidator.truncate_text(text)

        assert len(truncated) == 500
        assert truncated == "x" * 497 + "..."

    def test_truncate_keeps_short_text(self):
        assert ContentValidator.truncate_text("x" * 500) == "x" * 500
        assert ContentValidator.truncate_text(None) is None

    def test_strip_html(self):
        html = "<p>Hello <strong>world</strong></p><script>evil()</script>\n\n<p>again</p>"
        assert ContentValidator.strip_html(html) == "Hello world again"

    def test_strip_html_plain_text(self):
        assert ContentValidator.strip_html("  plain\n text ") == "plain text"
        assert ContentValidator.strip_html(None) == ""


class TestContentHash:
    """Deduplication keys."""

    def test_feed_item_hash_composition(self):
        expected = hashlib.sha256(b"https://x/1|Title|Body").hexdigest()[:16]

        assert feed_item_hash("https://x/1", "Title", "Body") == expected
        assert len(feed_item_hash("https://x/1", "Title", None)) == 16

    @pytest.mark.parametrize(
        "changed",
        [
            ("https://x/2", "Title", "v1"),
            ("https://x/1", "Title (edited)", "v1"),
            ("https://x/1", "Title", "v2"),
            ("https://x/1", "Title", None),
        ],
    )
    def test_feed_item_hash_changes_with_any_field(self, changed):
        assert feed_item_hash(*changed) != feed_item_hash("https://x/1", "Title", "v1")

    @pytest.mark.parametrize(
        "changed",
        [
            ("https://a.substack.com/p/other", "Post", "Ann"),
            ("https://a.substack.com/p/post", "Post, revised", "Ann"),
            ("https://a.substack.com/p/post", "Post", "Bob"),
        ],
    )
    def test_newsletter_hash_changes_with_any_field(self, changed):
        assert newsletter_post_hash(*changed) != newsletter_post_hash("https://a.substack.com/p/post", "Post", "Ann")

    def test_newsletter_hash_composition(self):
        expected = hashlib.sha256(b"https://a.substack.com/p/post:Post:Ann").hexdigest()

        digest = newsletter_post_hash("https://a.substack.com/p/post", "Post", "Ann")
        assert digest == expected
        assert len(digest) == 64
