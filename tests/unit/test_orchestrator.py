"""
Unit Tests for the Ingestion Orchestrator
=========================================

Sync cycles, batch behaviour and source management against the in-memory
store and a fake aiohttp session.
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from curatorsdesk.database.models import FeedFormat, Source, SourceType, SyncStatus
from curatorsdesk.ingestion.mailbox import FixtureMessageSource, MessageSource
from curatorsdesk.processing.orchestrator import IngestionOrchestrator, SyncState
from curatorsdesk.utils.exceptions import (
    DatabaseError,
    DiscoveryFailure,
    ErrorCode,
    MailboxError,
    SourceManagementError,
    ValidationError,
)


def make_source(index, user_id="user-1", **kwargs):
    return Source(
        user_id=user_id,
        site_url=f"https://site{index}.example.com",
        feed_url=f"https://site{index}.example.com/feed.xml",
        feed_type=FeedFormat.RSS,
        title=f"Site {index}",
        **kwargs,
    )


class RevokedMailbox(MessageSource):
    async def list_messages(self, session):
        raise MailboxError(
            "Mailbox access denied (HTTP 401)",
            error_code=ErrorCode.MAILBOX_ACCESS_DENIED,
        )


@pytest.fixture
def orchestrator(memory_store, settings, session_factory):
    return IngestionOrchestrator(memory_store, settings=settings, session_factory=session_factory)


@pytest.fixture
def fixture_orchestrator(memory_store, settings, session_factory, newsletter_messages_path):
    return IngestionOrchestrator(
        memory_store,
        settings=settings,
        session_factory=session_factory,
        mailbox_factory=lambda source: FixtureMessageSource(newsletter_messages_path),
    )


class TestAddFeedSource:
    """Discovery plus the initial sync."""

    @pytest.mark.asyncio
    async def test_discovers_and_syncs(self, orchestrator, memory_store, fake_session, sample_rss_feed):
        fake_session.add(
            "https://blog.example.com/feed.xml",
            sample_rss_feed,
            content_type="application/rss+xml",
            headers={"ETag": '"v1"'},
        )

        source, result = await orchestrator.add_feed_source("user-1", "blog.example.com")

        assert source.feed_url == "https://blog.example.com/feed.xml"
        assert source.site_url == "https://blog.example.com"
        assert source.title == "Example Engineering Blog"
        assert source.last_sync_status == SyncStatus.SUCCESS
        assert source.etag == '"v1"'
        assert result.state == SyncState.SUCCESS
        assert result.items_created == 2

        creator = next(iter(memory_store.creators.values()))
        assert creator.external_id == "https://blog.example.com/feed.xml"
        assert creator.name == "Example Engineering Blog"
        assert creator.profile_url == "https://blog.example.com"
        assert creator.metadata == {"feed_type": "rss"}

    @pytest.mark.asyncio
    async def test_duplicate_source_rejected(self, orchestrator, memory_store, fake_session, sample_rss_feed):
        fake_session.add("https://blog.example.com/feed.xml", sample_rss_feed, content_type="application/rss+xml")
        await orchestrator.add_feed_source("user-1", "blog.example.com")

        with pytest.raises(SourceManagementError) as exc_info:
            await orchestrator.add_feed_source("user-1", "https://blog.example.com/")

        assert exc_info.value.error_code == ErrorCode.DUPLICATE_RESOURCE
        assert len(memory_store.sources) == 1

    @pytest.mark.asyncio
    async def test_other_user_may_add_same_feed(self, orchestrator, memory_store, fake_session, sample_rss_feed):
        fake_session.add("https://blog.example.com/feed.xml", sample_rss_feed, content_type="application/rss+xml")
        await orchestrator.add_feed_source("user-1", "blog.example.com")

        _, result = await orchestrator.add_feed_source("user-2", "blog.example.com")

        assert result.items_created == 0
        assert result.items_duplicate == 2
        assert len(memory_store.creators) == 1

    @pytest.mark.asyncio
    async def test_manual_feed_url(self, orchestrator, fake_session, sample_atom_feed):
        feed_url = "https://atom.example.com/custom/atom"
        fake_session.add(feed_url, sample_atom_feed, content_type="application/atom+xml")

        source, result = await orchestrator.add_feed_source("user-1", "atom.example.com", feed_url=feed_url)

        assert source.discovery_method.value == "manual"
        assert source.feed_type == FeedFormat.ATOM
        assert source.site_url == "https://atom.example.com"
        assert result.items_created == 1

    @pytest.mark.asyncio
    async def test_discovery_failure_creates_nothing(self, orchestrator, memory_store):
        with pytest.raises(DiscoveryFailure):
            await orchestrator.add_feed_source("user-1", "nothing.example.com")

        assert memory_store.sources == {}

    @pytest.mark.asyncio
    async def test_initial_sync_failure_keeps_source(
        self, orchestrator, memory_store, fake_session, fake_response, sample_rss_feed
    ):
        calls = []

        def flaky(url, headers):
            calls.append(url)
            if len(calls) == 1:
                return fake_response(url, body=sample_rss_feed, headers={"Content-Type": "application/rss+xml"})
            return fake_response(url, status=503, reason="Service Unavailable")

        fake_session.add_handler("https://blog.example.com/feed.xml", flaky)

        source, result = await orchestrator.add_feed_source("user-1", "blog.example.com")

        assert source.id in memory_store.sources
        assert result.state == SyncState.ERROR
        assert result.error == "HTTP 503: Service Unavailable"
        assert source.last_sync_status == SyncStatus.ERROR


class TestFeedSync:
    """One feed cycle."""

    @pytest.mark.asyncio
    async def test_batch_survives_one_timeout(self, orchestrator, memory_store, fake_session, make_rss_feed):
        sources = [memory_store.create_source(make_source(i)) for i in range(1, 6)]
        for i in range(1, 6):
            fake_session.add(
                f"https://site{i}.example.com/feed.xml",
                make_rss_feed(f"Site {i}", [(f"https://site{i}.example.com/p/1", "Post", f"Body {i}")]),
                content_type="application/rss+xml",
            )
        fake_session.add_error("https://site3.example.com/feed.xml", asyncio.TimeoutError())

        report = await orchestrator.sync_all()

        assert report.sources_total == 5
        assert report.processed == 4
        assert report.errors == 1
        assert report.items_created == 4
        assert [r.source_id for r in report.failed_sources] == [sources[2].id]

        failed = memory_store.get_source(sources[2].id)
        assert failed.last_sync_status == SyncStatus.ERROR
        assert "timeout" in failed.last_sync_error.lower()
        assert failed.last_synced_at is None
        for index in (0, 1, 3, 4):
            assert memory_store.get_source(sources[index].id).last_sync_status == SyncStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_not_modified(self, orchestrator, memory_store, fake_session):
        source = memory_store.create_source(
            make_source(1, etag='"v1"', last_modified="Thu, 05 Sep 2024 12:00:00 GMT")
        )
        fake_session.add(source.feed_url, "", status=304)

        result = await orchestrator.sync_source(source.id)

        assert result.state == SyncState.NOT_MODIFIED
        sent = fake_session.requested(source.feed_url)[0]
        assert sent["If-None-Match"] == '"v1"'
        assert sent["If-Modified-Since"] == "Thu, 05 Sep 2024 12:00:00 GMT"

        stored = memory_store.get_source(source.id)
        assert stored.etag == '"v1"'
        assert stored.last_modified == "Thu, 05 Sep 2024 12:00:00 GMT"
        assert stored.last_sync_status == SyncStatus.SUCCESS
        assert memory_store.count_content() == 0

    @pytest.mark.asyncio
    async def test_tokens_replaced_on_200(self, orchestrator, memory_store, fake_session, make_rss_feed):
        source = memory_store.create_source(make_source(1, etag='"old"'))
        fake_session.add(
            source.feed_url,
            make_rss_feed("Site 1", [("https://site1.example.com/p/1", "Post", "Body")]),
            content_type="application/rss+xml",
            headers={"Last-Modified": "Fri, 06 Sep 2024 08:00:00 GMT"},
        )

        await orchestrator.sync_source(source.id)

        stored = memory_store.get_source(source.id)
        assert stored.etag is None
        assert stored.last_modified == "Fri, 06 Sep 2024 08:00:00 GMT"

    @pytest.mark.asyncio
    async def test_edit_detected_on_second_sync(self, orchestrator, memory_store, fake_session, make_rss_feed):
        source = memory_store.create_source(make_source(1))
        first = make_rss_feed(
            "Site 1",
            [
                ("https://site1.example.com/p/1", "Post One", "Original body"),
                ("https://site1.example.com/p/2", "Post Two", "Second body"),
            ],
        )
        fake_session.add(source.feed_url, first, content_type="application/rss+xml")
        initial = await orchestrator.sync_source(source.id)
        assert initial.items_created == 2

        edited = first.replace("Original body", "Corrected body")
        fake_session.add(source.feed_url, edited, content_type="application/rss+xml")
        result = await orchestrator.sync_source(source.id)

        assert result.items_created == 0
        assert result.items_updated == 1
        assert result.items_duplicate == 1
        assert memory_store.count_content() == 2

        edited_item = memory_store.find_content_by_external_id(SourceType.RSS, "https://site1.example.com/p/1")
        assert edited_item.is_edited
        assert edited_item.description == "Corrected body"

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, orchestrator, memory_store, fake_session, sample_rss_feed):
        source = memory_store.create_source(make_source(1))
        fake_session.add(source.feed_url, sample_rss_feed, content_type="application/rss+xml")

        await orchestrator.sync_source(source.id)
        snapshot = {cid: item.content_hash for cid, item in memory_store.content.items()}
        second = await orchestrator.sync_source(source.id)

        assert second.items_created == 0
        assert second.items_duplicate == 2
        assert {cid: item.content_hash for cid, item in memory_store.content.items()} == snapshot

    @pytest.mark.asyncio
    async def test_repeated_guid_in_one_payload(self, orchestrator, memory_store, fake_session, make_rss_feed):
        source = memory_store.create_source(make_source(1))
        homepage = "https://site1.example.com/"
        fake_session.add(
            source.feed_url,
            make_rss_feed("Site 1", [(homepage, "First", "body a"), (homepage, "Second", "body b")]),
            content_type="application/rss+xml",
        )

        first = await orchestrator.sync_source(source.id)
        stored = memory_store.find_content_by_external_id(SourceType.RSS, homepage)
        second = await orchestrator.sync_source(source.id)

        assert (first.items_created, first.items_updated, first.items_duplicate) == (1, 0, 1)
        assert (second.items_created, second.items_updated, second.items_duplicate) == (0, 0, 2)
        assert len(memory_store.content) == 1
        assert stored.title == "First"
        assert not memory_store.content[stored.id].is_edited
        assert memory_store.content[stored.id].description == "body a"

    @pytest.mark.asyncio
    async def test_http_error_recorded(self, orchestrator, memory_store, fake_session):
        source = memory_store.create_source(make_source(1))

        result = await orchestrator.sync_source(source.id)

        assert result.state == SyncState.ERROR
        assert result.error == "HTTP 404: Not Found"
        assert memory_store.get_source(source.id).last_sync_error == "HTTP 404: Not Found"

    @pytest.mark.asyncio
    async def test_parse_error_recorded(self, orchestrator, memory_store, fake_session):
        source = memory_store.create_source(make_source(1))
        fake_session.add(source.feed_url, "not a feed at all", content_type="application/rss+xml")

        result = await orchestrator.sync_source(source.id)

        assert result.state == SyncState.ERROR
        assert memory_store.get_source(source.id).last_sync_status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, orchestrator, memory_store, fake_session, sample_rss_feed):
        source = memory_store.create_source(make_source(1))
        await orchestrator.sync_source(source.id)
        assert memory_store.get_source(source.id).last_sync_error

        fake_session.add(source.feed_url, sample_rss_feed, content_type="application/rss+xml")
        await orchestrator.sync_source(source.id)

        stored = memory_store.get_source(source.id)
        assert stored.last_sync_status == SyncStatus.SUCCESS
        assert stored.last_sync_error is None
        assert stored.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_database_error_aborts_batch(self, orchestrator, memory_store, fake_session, make_rss_feed):
        for i in (1, 2):
            source = memory_store.create_source(make_source(i))
            fake_session.add(
                source.feed_url,
                make_rss_feed(f"Site {i}", [(f"https://site{i}.example.com/p/1", "Post", "Body")]),
                content_type="application/rss+xml",
            )

        with patch.object(memory_store, "insert_content", side_effect=DatabaseError("disk I/O error")):
            with pytest.raises(DatabaseError):
                await orchestrator.sync_all()

        assert all(s.last_sync_status is None for s in memory_store.sources.values())

    @pytest.mark.asyncio
    async def test_sync_user_scope(self, orchestrator, memory_store, fake_session, sample_rss_feed):
        mine = memory_store.create_source(make_source(1))
        memory_store.create_source(make_source(2, user_id="user-2"))
        fake_session.add(mine.feed_url, sample_rss_feed, content_type="application/rss+xml")

        report = await orchestrator.sync_user("user-1")

        assert report.sources_total == 1
        assert [url for url, _ in fake_session.requests] == [mine.feed_url]

    @pytest.mark.asyncio
    async def test_empty_batch(self, orchestrator):
        report = await orchestrator.sync_all()

        assert report.sources_total == 0
        assert report.results == []

    @pytest.mark.asyncio
    async def test_sync_with_caller_session(self, orchestrator, memory_store, fake_session, sample_rss_feed):
        source = memory_store.create_source(make_source(1))
        fake_session.add(source.feed_url, sample_rss_feed, content_type="application/rss+xml")

        result = await orchestrator.sync_source(source.id, session=fake_session)

        assert result.items_created == 2


class TestMailboxSync:
    """Newsletter ingestion through the processed-message ledger."""

    @pytest.mark.asyncio
    async def test_fixture_mailbox(self, fixture_orchestrator, memory_store):
        source = fixture_orchestrator.add_mailbox_source("user-1", "Reader@Example.com")
        assert source.site_url == "reader@example.com"

        result = await fixture_orchestrator.sync_source(source.id)

        assert result.state == SyncState.SUCCESS
        assert result.messages_processed == 3
        assert result.messages_rejected == 1
        assert result.items_created == 2

        rejected = memory_store.get_processed_message("mock-msg-003")
        assert rejected.content_hash is None
        assert not rejected.was_extracted

        accepted = memory_store.get_processed_message("mock-msg-001")
        assert accepted.post_url == "https://janedoe.substack.com/p/how-to-build-better-software"
        assert accepted.author == "Jane Doe"
        assert accepted.content_id in memory_store.content

        assert len(memory_store.subscriptions) == 2
        titles = [item.title for item in memory_store.get_latest_content("user-1")]
        assert titles == ["The Future of AI", "How to Build Better Software"]

    @pytest.mark.asyncio
    async def test_second_run_skips_ledgered_messages(self, fixture_orchestrator, memory_store):
        source = fixture_orchestrator.add_mailbox_source("user-1", "reader@example.com")
        await fixture_orchestrator.sync_source(source.id)

        result = await fixture_orchestrator.sync_source(source.id)

        assert result.messages_processed == 0
        assert result.messages_skipped == 3
        assert memory_store.count_content(SourceType.NEWSLETTER) == 2
        assert memory_store.count_processed_messages() == 3

    @pytest.mark.asyncio
    async def test_same_post_in_two_messages(self, memory_store, settings, session_factory, newsletter_messages_path):
        with open(newsletter_messages_path, encoding="utf-8") as f:
            original = json.load(f)["messages"][0]
        resent = dict(original, id="mock-msg-001-resent")

        class TwoCopies(MessageSource):
            async def list_messages(self, session):
                return [original, resent]

        orchestrator = IngestionOrchestrator(
            memory_store,
            settings=settings,
            session_factory=session_factory,
            mailbox_factory=lambda source: TwoCopies(),
        )
        source = orchestrator.add_mailbox_source("user-1", "reader@example.com")

        result = await orchestrator.sync_source(source.id)

        assert result.items_created == 1
        assert result.items_duplicate == 1
        first = memory_store.get_processed_message("mock-msg-001")
        second = memory_store.get_processed_message("mock-msg-001-resent")
        assert first.content_id == second.content_id

    @pytest.mark.asyncio
    async def test_message_without_id_is_ignored(self, memory_store, settings, session_factory):
        class NoIds(MessageSource):
            async def list_messages(self, session):
                return [{"snippet": "orphan"}]

        orchestrator = IngestionOrchestrator(
            memory_store, settings=settings, session_factory=session_factory, mailbox_factory=lambda s: NoIds()
        )
        source = orchestrator.add_mailbox_source("user-1", "reader@example.com")

        result = await orchestrator.sync_source(source.id)

        assert result.state == SyncState.SUCCESS
        assert result.messages_processed == 0
        assert memory_store.count_processed_messages() == 0

    @pytest.mark.asyncio
    async def test_unconfigured_mailbox_is_skipped(self, orchestrator, memory_store, settings):
        assert not settings.has_mailbox_credentials()
        source = orchestrator.add_mailbox_source("user-1", "reader@example.com")

        report = await orchestrator.sync_all()

        assert report.skipped == 1
        assert report.results[0].state == SyncState.SKIPPED
        assert memory_store.get_source(source.id).last_sync_status is None

    @pytest.mark.asyncio
    async def test_revoked_mailbox_recorded(self, memory_store, settings, session_factory):
        orchestrator = IngestionOrchestrator(
            memory_store,
            settings=settings,
            session_factory=session_factory,
            mailbox_factory=lambda source: RevokedMailbox(),
        )
        source = orchestrator.add_mailbox_source("user-1", "reader@example.com")

        result = await orchestrator.sync_source(source.id)

        assert result.state == SyncState.ERROR
        stored = memory_store.get_source(source.id)
        assert stored.last_sync_status == SyncStatus.ERROR
        assert stored.last_sync_error == "Mailbox access denied (HTTP 401)"


class TestSourceManagement:
    def test_invalid_mailbox_address(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.add_mailbox_source("user-1", "not-an-address")

    def test_duplicate_mailbox(self, orchestrator):
        orchestrator.add_mailbox_source("user-1", "reader@example.com")

        with pytest.raises(SourceManagementError) as exc_info:
            orchestrator.add_mailbox_source("user-1", " READER@example.com ")
        assert exc_info.value.error_code == ErrorCode.DUPLICATE_RESOURCE

    @pytest.mark.asyncio
    async def test_remove_source(self, orchestrator, memory_store):
        source = memory_store.create_source(make_source(1))

        orchestrator.remove_source(source.id)

        assert memory_store.list_active_sources("user-1") == []
        assert memory_store.get_source(source.id).is_active is False
        with pytest.raises(SourceManagementError):
            await orchestrator.sync_source(source.id)

    def test_remove_unknown_source(self, orchestrator):
        with pytest.raises(SourceManagementError) as exc_info:
            orchestrator.remove_source("missing")
        assert exc_info.value.error_code == ErrorCode.RESOURCE_NOT_FOUND
