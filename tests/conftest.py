"""
PyTest Configuration and Fixtures
=================================

Shared fixtures for Curator's Desk tests: environment isolation, database
fixtures, an in-memory store, a fake aiohttp session and sample payloads.
"""

import json
import os
import sys
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from multidict import CIMultiDict

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment variables before any imports
_TEST_DIR = Path(tempfile.gettempdir()) / "curatorsdesk_tests"
os.environ["CURATORSDESK_DATABASE__PATH"] = str(_TEST_DIR / "curatorsdesk_test.db")
os.environ["CURATORSDESK_LOGGING__FILE_PATH"] = str(_TEST_DIR / "curatorsdesk_test.log")
os.environ["CURATORSDESK_LOGGING__CONSOLE_LOGGING"] = "false"
os.environ["CURATORSDESK_MAILBOX__ENABLED"] = "true"

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ============================================================================
# Sample payloads
# ============================================================================

SAMPLE_RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/">
    <channel>
        <title>Example Engineering Blog</title>
        <link>https://blog.example.com</link>
        <description>Notes from the example engineering team</description>
        <item>
            <title>Scaling Postgres Reads</title>
            <link>https://blog.example.com/posts/scaling-reads</link>
            <guid>https://blog.example.com/posts/scaling-reads</guid>
            <description>How we moved &lt;strong&gt;read traffic&lt;/strong&gt; to replicas.</description>
            <dc:creator>Ada Lovelace</dc:creator>
            <pubDate>Thu, 05 Sep 2024 12:00:00 GMT</pubDate>
        </item>
        <item>
            <title>Incident Review: DNS</title>
            <link>https://blog.example.com/posts/dns-incident</link>
            <guid>https://blog.example.com/posts/dns-incident</guid>
            <description>What went wrong with DNS last week.</description>
            <pubDate>Wed, 04 Sep 2024 15:30:00 GMT</pubDate>
        </item>
    </channel>
</rss>"""

SAMPLE_ATOM_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
    <title>Atom Example</title>
    <subtitle>An Atom feed for tests</subtitle>
    <link href="https://atom.example.com/"/>
    <id>https://atom.example.com/feed</id>
    <updated>2024-09-07T00:00:01Z</updated>
    <entry>
        <title>Atom Test Article</title>
        <link href="https://atom.example.com/article"/>
        <id>tag:atom.example.com,2024:article</id>
        <updated>2024-09-05T12:00:00Z</updated>
        <published>2024-09-05T12:00:00Z</published>
        <summary>Short Atom summary</summary>
        <content type="html">&lt;p&gt;Full content with &lt;em&gt;formatting&lt;/em&gt;&lt;/p&gt;</content>
        <author>
            <name>Atom Author</name>
        </author>
    </entry>
</feed>"""

SAMPLE_JSON_FEED = json.dumps(
    {
        "version": "https://jsonfeed.org/version/1.1",
        "title": "JSON Example",
        "description": "A JSON feed for tests",
        "home_page_url": "https://json.example.com/",
        "items": [
            {
                "id": "1",
                "url": "https://json.example.com/posts/1",
                "title": "First JSON Post",
                "content_html": "<p>Hello from JSON Feed</p>",
                "summary": "Hello summary",
                "date_published": "2024-09-05T12:00:00Z",
                "authors": [{"name": "Jason Feed"}],
            },
            {
                "id": "2",
                "url": "https://json.example.com/posts/2",
                "title": "Undated JSON Post",
                "content_text": "Plain text body",
            },
        ],
    }
)

SITE_HTML_WITH_FEED_LINK = """<!DOCTYPE html>
<html>
<head>
    <title>Example Site</title>
    <link rel="stylesheet" href="/style.css">
    <link rel="alternate" type="application/rss+xml" title="RSS" href="/custom/feed">
</head>
<body><p>Welcome</p></body>
</html>"""


def rss_feed(title: str, items) -> str:
    """Build an RSS document from ``(guid, title, description)`` tuples."""
    entries = "".join(
        f"""
        <item>
            <title>{item_title}</title>
            <link>{guid}</link>
            <guid>{guid}</guid>
            <description>{description}</description>
            <pubDate>Thu, 05 Sep 2024 12:00:00 GMT</pubDate>
        </item>"""
        for guid, item_title, description in items
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>{title}</title><link>https://example.com</link>
<description>{title} description</description>{entries}
</channel></rss>"""


# ============================================================================
# Fake aiohttp session
# ============================================================================


class FakeResponse:
    """Enough of ``aiohttp.ClientResponse`` for ``fetch_document``."""

    def __init__(self, url, status=200, body=b"", headers=None, charset="utf-8", reason=None):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.url = url
        self.status = status
        self.headers = CIMultiDict(headers or {})
        self.charset = charset
        self.reason = reason or ("OK" if status < 400 else "Error")
        self.read = AsyncMock(return_value=body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Routes GETs by exact URL; unknown URLs answer 404.

    A route is a FakeResponse, an exception instance to raise, or a callable
    ``(url, headers) -> FakeResponse``.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, body="", status=200, content_type=None, headers=None):
        response_headers = dict(headers or {})
        if content_type:
            response_headers["Content-Type"] = content_type
        self.routes[url] = FakeResponse(url, status=status, body=body, headers=response_headers)

    def add_error(self, url, error):
        self.routes[url] = error

    def add_handler(self, url, handler):
        self.routes[url] = handler

    def requested(self, url):
        return [headers for requested_url, headers in self.requests if requested_url == url]

    def get(self, url, headers=None, timeout=None, allow_redirects=True):
        self.requests.append((url, dict(headers or {})))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(url, status=404, body=b"Not Found", reason="Not Found")
        if isinstance(route, BaseException):
            raise route
        if callable(route) and not isinstance(route, FakeResponse):
            return route(url, headers or {})
        return route


def session_factory_for(session):
    """Session factory for the orchestrator that always yields ``session``."""

    @asynccontextmanager
    async def factory():
        yield session

    return factory


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def session_factory(fake_session):
    return session_factory_for(fake_session)


@pytest.fixture
def fake_response():
    """Factory for one-off responses used by request handlers."""
    return FakeResponse


@pytest.fixture
def sample_rss_feed():
    return SAMPLE_RSS_FEED


@pytest.fixture
def sample_atom_feed():
    return SAMPLE_ATOM_FEED


@pytest.fixture
def sample_json_feed():
    return SAMPLE_JSON_FEED


@pytest.fixture
def site_html_with_feed_link():
    return SITE_HTML_WITH_FEED_LINK


@pytest.fixture
def make_rss_feed():
    return rss_feed


# ============================================================================
# Settings and stores
# ============================================================================


@pytest.fixture
def settings():
    from curatorsdesk.config.settings import get_settings

    return get_settings(reload=True)


@pytest.fixture
def memory_store():
    from curatorsdesk.storage.memory_store import InMemoryContentStore

    return InMemoryContentStore()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def session_test_db():
    """Session-scoped test database, schema created once."""
    from curatorsdesk.database.schema import DatabaseSchema

    _TEST_DIR.mkdir(exist_ok=True)
    db_path = _TEST_DIR / "curatorsdesk_repo_test.db"
    if db_path.exists():
        db_path.unlink()

    DatabaseSchema(str(db_path)).create_tables()

    yield str(db_path)

    try:
        db_path.unlink()
    except FileNotFoundError:
        pass


@pytest.fixture
def clean_db(session_test_db):
    """Database path with all rows cleared (order matters for foreign keys)."""
    from curatorsdesk.database.connection import DatabaseConnection

    conn = DatabaseConnection(session_test_db, pool_size=1)
    with conn.get_connection() as db:
        db.execute("DELETE FROM subscriptions")
        db.execute("DELETE FROM processed_messages")
        db.execute("DELETE FROM content_items")
        db.execute("DELETE FROM creators")
        db.execute("DELETE FROM sources")
        db.commit()
    conn.close_all_connections()

    yield session_test_db


@pytest.fixture
def db_connection(clean_db):
    from curatorsdesk.database.connection import DatabaseConnection

    connection = DatabaseConnection(clean_db, pool_size=2)
    yield connection
    connection.close_all_connections()


@pytest.fixture
def sqlite_store(db_connection):
    from curatorsdesk.storage.sqlite_store import SQLiteContentStore

    return SQLiteContentStore(db_connection)


# ============================================================================
# Sample entities
# ============================================================================


@pytest.fixture
def rss_source():
    from curatorsdesk.database.models import DiscoveryMethod, FeedFormat, Source

    return Source(
        user_id="user-1",
        site_url="https://blog.example.com",
        feed_url="https://blog.example.com/feed.xml",
        feed_type=FeedFormat.RSS,
        discovery_method=DiscoveryMethod.WELL_KNOWN_PATH,
        title="Example Engineering Blog",
    )


@pytest.fixture
def newsletter_messages_path():
    return str(FIXTURES_DIR / "newsletter_messages.json")
