"""
Ingestion Orchestrator
======================

Drives sync cycles for feed and mailbox sources and manages the source
lifecycle (add, remove, initial sync).

One cycle per source moves ``idle -> fetching -> success | not_modified |
error``. The outcome is written to the store only once the cycle is over, so a
cancelled cycle leaves the source's previous status in place. Batches run the
cycles concurrently on one aiohttp session; a failing source never aborts the
batch, a failing store always does.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp

from ..config.settings import CuratorsDeskSettings, get_settings
from ..database.models import Source, SourceType, SyncStatus
from ..ingestion.feed_discovery import DiscoveryResult, FeedDiscovery
from ..ingestion.feed_parser import CacheTokens, FeedFetcher, NotModified
from ..ingestion.http_client import create_session
from ..ingestion.inbox_extractor import InboxExtractor, NewsletterPost
from ..ingestion.mailbox import (
    FixtureMessageSource,
    GmailMessageSource,
    MessageSource,
    StaticCredentialProvider,
)
from ..storage.base import ContentStore
from ..utils.exceptions import (
    CuratorsDeskError,
    DatabaseError,
    ErrorCode,
    SourceManagementError,
    ValidationError,
)
from ..utils.logging import PerformanceLogger, get_logger_for_component
from .deduplicator import ApplyOutcome, ApplyResult, ContentDeduplicator, SourceContext

MailboxFactory = Callable[[Source], Optional[MessageSource]]


class SyncState(str, Enum):
    """Where a source is within one sync cycle."""
    IDLE = "idle"
    FETCHING = "fetching"
    SUCCESS = "success"
    NOT_MODIFIED = "not_modified"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class SourceSyncResult:
    """Outcome of one source's sync cycle."""
    source_id: str
    state: SyncState = SyncState.IDLE
    items_created: int = 0
    items_updated: int = 0
    items_duplicate: int = 0
    messages_processed: int = 0
    messages_skipped: int = 0
    messages_rejected: int = 0
    error: Optional[str] = None

    def count(self, applied: ApplyResult) -> None:
        if applied.outcome == ApplyOutcome.CREATED:
            self.items_created += 1
        elif applied.outcome == ApplyOutcome.UPDATED:
            self.items_updated += 1
        else:
            self.items_duplicate += 1


@dataclass
class BatchSyncReport:
    """Aggregate tally of a batch sync."""
    sources_total: int = 0
    processed: int = 0
    not_modified: int = 0
    errors: int = 0
    skipped: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_duplicate: int = 0
    duration_seconds: float = 0.0
    results: List[SourceSyncResult] = field(default_factory=list)

    def add(self, result: SourceSyncResult) -> None:
        self.results.append(result)
        if result.state == SyncState.SUCCESS:
            self.processed += 1
        elif result.state == SyncState.NOT_MODIFIED:
            self.not_modified += 1
        elif result.state == SyncState.ERROR:
            self.errors += 1
        else:
            self.skipped += 1

        self.items_created += result.items_created
        self.items_updated += result.items_updated
        self.items_duplicate += result.items_duplicate

    @property
    def failed_sources(self) -> List[SourceSyncResult]:
        return [r for r in self.results if r.state == SyncState.ERROR]


def _error_text(error: Exception) -> str:
    if isinstance(error, CuratorsDeskError):
        return error.message
    return str(error) or error.__class__.__name__


class IngestionOrchestrator:
    """Sync cycles and source management on top of a ``ContentStore``."""

    def __init__(
        self,
        store: ContentStore,
        settings: Optional[CuratorsDeskSettings] = None,
        fetcher: Optional[FeedFetcher] = None,
        discovery: Optional[FeedDiscovery] = None,
        extractor: Optional[InboxExtractor] = None,
        mailbox_factory: Optional[MailboxFactory] = None,
        session_factory: Callable[[], Any] = create_session,
    ):
        """Initialize orchestrator.

        Args:
            store: Content store used for every read and write
            settings: Application settings (default: global settings)
            fetcher: Feed fetcher (default built from settings)
            discovery: Feed discovery (default built from settings)
            extractor: Inbox extractor with the default URL rules
            mailbox_factory: Returns the message source for a mailbox Source,
                or None when the mailbox cannot be read
            session_factory: Async context manager factory yielding an
                aiohttp session
        """
        self.store = store
        self.settings = settings or get_settings()
        self.fetcher = fetcher or FeedFetcher(timeout=self.settings.fetch.request_timeout)
        self.discovery = discovery or FeedDiscovery(
            timeout=self.settings.fetch.discovery_timeout,
            well_known_paths=self.settings.discovery.well_known_paths,
        )
        self.extractor = extractor or InboxExtractor()
        self.mailbox_factory = mailbox_factory or self._default_mailbox_factory
        self.session_factory = session_factory
        self.deduplicator = ContentDeduplicator(
            store, max_description_length=self.settings.fetch.max_description_length
        )
        self.logger = get_logger_for_component("orchestrator")

    # ------------------------------------------------------------------
    # Source management
    # ------------------------------------------------------------------

    async def add_feed_source(
        self, user_id: str, site_url: str, feed_url: Optional[str] = None
    ) -> Tuple[Source, SourceSyncResult]:
        """Subscribe ``user_id`` to a blog and run its first sync.

        Args:
            user_id: Subscribing user
            site_url: Site URL; discovery starts here unless ``feed_url`` is given
            feed_url: Feed URL supplied by the user, validated instead of discovered

        Returns:
            The stored source and the result of its initial sync

        Raises:
            DiscoveryFailure: If no feed could be found
            FetchFailure, ParseFailure: If a manual feed URL does not validate
            SourceManagementError: If the user already has this feed
        """
        async with self.session_factory() as session:
            if feed_url:
                found = await self.discovery.validate_manual_feed(session, feed_url, site_url or None)
            else:
                found = await self.discovery.discover(session, site_url)

            existing = self.store.find_active_source(user_id, SourceType.RSS, found.feed_url)
            if existing:
                raise SourceManagementError(
                    f"User {user_id} already follows {found.feed_url}",
                    source_id=existing.id,
                    error_code=ErrorCode.DUPLICATE_RESOURCE,
                    user_message="You are already subscribed to this feed.",
                )

            source = self.store.create_source(self._source_from_discovery(user_id, found))
            self.deduplicator.resolve_creator(self._feed_context(source))
            self.logger.info(
                f"Added {found.feed_type.value} source {source.id} via "
                f"{found.discovery_method.value}: {found.feed_url}"
            )

            result = await self._sync(source, session)

        return self.store.get_source(source.id) or source, result

    def add_mailbox_source(self, user_id: str, address: str) -> Source:
        """Register a newsletter mailbox for ``user_id``."""
        address = (address or "").strip().lower()
        if "@" not in address or address.startswith("@") or address.endswith("@"):
            raise ValidationError(f"Not an email address: {address!r}", field_name="address")

        existing = self.store.find_active_source(user_id, SourceType.NEWSLETTER, address)
        if existing:
            raise SourceManagementError(
                f"Mailbox {address} is already connected",
                source_id=existing.id,
                error_code=ErrorCode.DUPLICATE_RESOURCE,
            )

        source = self.store.create_source(
            Source(
                user_id=user_id,
                source_type=SourceType.NEWSLETTER,
                site_url=address,
                title=f"Newsletters for {address}",
            )
        )
        self.logger.info(f"Added mailbox source {source.id} for {user_id}")
        return source

    def remove_source(self, source_id: str) -> None:
        """Deactivate a source. Its content stays in the store."""
        if not self.store.deactivate_source(source_id):
            raise SourceManagementError(f"Source {source_id} not found", source_id=source_id)

    # ------------------------------------------------------------------
    # Sync entry points
    # ------------------------------------------------------------------

    async def sync_source(
        self, source_id: str, session: Optional[aiohttp.ClientSession] = None
    ) -> SourceSyncResult:
        """Run one cycle for a single active source."""
        source = self.store.get_source(source_id)
        if source is None or not source.is_active:
            raise SourceManagementError(f"Active source {source_id} not found", source_id=source_id)

        if session is not None:
            return await self._sync(source, session)

        async with self.session_factory() as own_session:
            return await self._sync(source, own_session)

    async def sync_user(self, user_id: str) -> BatchSyncReport:
        """Sync every active source of one user."""
        return await self.sync_sources(self.store.list_active_sources(user_id))

    async def sync_all(self) -> BatchSyncReport:
        """Sync every active source in the store."""
        return await self.sync_sources(self.store.list_active_sources())

    async def sync_sources(self, sources: List[Source]) -> BatchSyncReport:
        """Run cycles for ``sources`` concurrently, bounded by ``fetch.parallel_sources``.

        Raises:
            DatabaseError: If the store fails; outstanding cycles are cancelled
        """
        report = BatchSyncReport(sources_total=len(sources))
        if not sources:
            self.logger.info("No active sources to sync")
            return report

        semaphore = asyncio.Semaphore(self.settings.fetch.parallel_sources)

        with PerformanceLogger(self.logger, "batch_sync", source_count=len(sources)) as perf:
            async with self.session_factory() as session:

                async def sync_with_semaphore(source: Source) -> SourceSyncResult:
                    async with semaphore:
                        return await self._sync(source, session)

                tasks = [asyncio.ensure_future(sync_with_semaphore(s)) for s in sources]
                try:
                    for completed_task in asyncio.as_completed(tasks):
                        report.add(await completed_task)
                except (Exception, asyncio.CancelledError):
                    for task in tasks:
                        task.cancel()
                    await asyncio.gather(*tasks, return_exceptions=True)
                    raise

        report.duration_seconds = perf.duration or 0.0
        self.logger.info(
            f"Batch sync complete: {report.processed} processed, "
            f"{report.not_modified} not modified, {report.errors} errors, "
            f"{report.skipped} skipped; items {report.items_created} new, "
            f"{report.items_updated} updated, {report.items_duplicate} duplicate"
        )
        return report

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def _sync(self, source: Source, session: aiohttp.ClientSession) -> SourceSyncResult:
        if source.is_mailbox:
            return await self._sync_mailbox(source, session)
        return await self._sync_feed(source, session)

    async def _sync_feed(self, source: Source, session: aiohttp.ClientSession) -> SourceSyncResult:
        log = self.logger.bind(source_id=source.id, user_id=source.user_id)
        result = SourceSyncResult(source_id=source.id, state=SyncState.FETCHING)

        if not source.feed_url:
            return self._fail(source, result, "Source has no feed URL", log)

        try:
            fetched = await self.fetcher.fetch_and_parse(
                session,
                source.feed_url,
                source.feed_type,
                CacheTokens(etag=source.etag, last_modified=source.last_modified),
            )

            if isinstance(fetched, NotModified):
                self.store.update_sync_status(source.id, SyncStatus.SUCCESS)
                result.state = SyncState.NOT_MODIFIED
                log.debug(f"Feed unchanged: {source.feed_url}")
                return result

            context = self._feed_context(source, fetched.feed.title, fetched.feed.description)
            self.deduplicator.resolve_creator(context)
            # First occurrence of an identity wins; later ones in the same payload are duplicates
            applied = {}
            for item in fetched.feed.items:
                first = applied.get(item.external_id)
                if first is not None:
                    log.debug(f"Repeated entry {item.external_id} in {source.feed_url}")
                    result.count(ApplyResult(ApplyOutcome.DUPLICATE, first.content_id, first.creator_id))
                    continue
                applied[item.external_id] = self.deduplicator.apply(item, context)
                result.count(applied[item.external_id])

            self.store.update_cache_tokens(source.id, fetched.etag, fetched.last_modified)
            self.store.update_sync_status(source.id, SyncStatus.SUCCESS)
            result.state = SyncState.SUCCESS
            log.info(
                f"Synced {source.feed_url}: {result.items_created} new, "
                f"{result.items_updated} updated, {result.items_duplicate} duplicate"
            )
            return result

        except DatabaseError:
            raise
        except Exception as e:
            return self._fail(source, result, _error_text(e), log)

    async def _sync_mailbox(self, source: Source, session: aiohttp.ClientSession) -> SourceSyncResult:
        log = self.logger.bind(source_id=source.id, user_id=source.user_id)
        result = SourceSyncResult(source_id=source.id)

        mailbox = self.mailbox_factory(source)
        if mailbox is None:
            log.info(f"Skipping mailbox {source.site_url}: no mailbox access configured")
            result.state = SyncState.SKIPPED
            return result

        result.state = SyncState.FETCHING
        try:
            messages = await mailbox.list_messages(session)

            for message in messages:
                message_id = message.get("id") if isinstance(message, dict) else None
                if not message_id:
                    log.warning("Mailbox returned a message without an id")
                    continue

                if self.store.is_message_processed(message_id):
                    result.messages_skipped += 1
                    continue

                post = self.extractor.extract(message)
                if post is None:
                    self.store.record_processed_message(
                        message_id, None, user_id=source.user_id, source_id=source.id
                    )
                    result.messages_rejected += 1
                    result.messages_processed += 1
                    continue

                applied = self.deduplicator.apply(post.to_item(), self._newsletter_context(source, post))
                self.store.record_processed_message(
                    message_id,
                    post.content_hash,
                    content_id=applied.content_id,
                    user_id=source.user_id,
                    source_id=source.id,
                    author=post.author_name,
                    post_url=post.post_url,
                )
                self.store.ensure_subscription(source.user_id, applied.creator_id)
                result.count(applied)
                result.messages_processed += 1

            self.store.update_sync_status(source.id, SyncStatus.SUCCESS)
            result.state = SyncState.SUCCESS
            log.info(
                f"Mailbox {source.site_url}: {result.messages_processed} processed, "
                f"{result.messages_skipped} already seen, {result.items_created} new posts"
            )
            return result

        except DatabaseError:
            raise
        except Exception as e:
            return self._fail(source, result, _error_text(e), log)

    def _fail(self, source: Source, result: SourceSyncResult, error: str, log) -> SourceSyncResult:
        self.store.update_sync_status(source.id, SyncStatus.ERROR, error)
        result.state = SyncState.ERROR
        result.error = error
        log.warning(f"Sync failed for {source.feed_url or source.site_url}: {error}")
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _source_from_discovery(self, user_id: str, found: DiscoveryResult) -> Source:
        return Source(
            user_id=user_id,
            source_type=SourceType.RSS,
            site_url=found.site_url,
            feed_url=found.feed_url,
            feed_type=found.feed_type,
            discovery_method=found.discovery_method,
            title=found.title,
            description=found.description,
        )

    def _feed_context(
        self,
        source: Source,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> SourceContext:
        name = title or source.title or urlparse(source.site_url).netloc or source.site_url
        return SourceContext(
            source_type=SourceType.RSS,
            creator_external_id=source.feed_url or source.site_url,
            creator_name=name,
            creator_description=description or source.description,
            creator_profile_url=source.site_url,
            creator_metadata={"feed_type": source.feed_type.value} if source.feed_type else {},
            user_id=source.user_id,
            source_id=source.id,
        )

    def _newsletter_context(self, source: Source, post: NewsletterPost) -> SourceContext:
        return SourceContext(
            source_type=SourceType.NEWSLETTER,
            creator_external_id=post.author_email or post.author_name,
            creator_name=post.author_name,
            creator_profile_url=post.profile_url,
            creator_metadata={"handle": post.handle},
            user_id=source.user_id,
            source_id=source.id,
        )

    def _default_mailbox_factory(self, source: Source) -> Optional[MessageSource]:
        mailbox = self.settings.mailbox
        if not mailbox.enabled:
            return None
        if mailbox.fixture_path:
            return FixtureMessageSource(mailbox.fixture_path)
        if mailbox.access_token:
            return GmailMessageSource(
                StaticCredentialProvider(mailbox.access_token),
                query=mailbox.search_query,
                max_results=mailbox.max_results,
                base_url=mailbox.api_base_url,
                timeout=self.settings.fetch.request_timeout,
            )
        return None
