"""
Curator's Desk Sync Scheduler
=============================

Periodic batch sync across every active source. Called once per run by
cron/systemd, or kept alive as a service loop by ``run_sync_scheduler.py``.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..config.settings import CuratorsDeskSettings, get_settings
from ..database.connection import DatabaseConnection, get_db_manager
from ..database.schema import DatabaseSchema
from ..processing.orchestrator import BatchSyncReport, IngestionOrchestrator
from ..storage.sqlite_store import SQLiteContentStore
from ..utils.exceptions import CuratorsDeskError, DatabaseError
from ..utils.logging import get_logger_for_component


class SyncScheduler:
    """Runs batch syncs and reports their outcome as a summary dict."""

    def __init__(
        self,
        settings: Optional[CuratorsDeskSettings] = None,
        orchestrator: Optional[IngestionOrchestrator] = None,
        db_manager: Optional[DatabaseConnection] = None,
    ):
        self.settings = settings or get_settings()
        self.logger = get_logger_for_component("scheduler")
        self.db_manager = db_manager or get_db_manager(
            self.settings.database.path, pool_size=self.settings.database.pool_size
        )
        self.orchestrator = orchestrator or IngestionOrchestrator(
            SQLiteContentStore(self.db_manager), settings=self.settings
        )
        self.runs_completed = 0
        self.last_run_at: Optional[datetime] = None

    async def run_once(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Execute one batch sync.

        Args:
            user_id: Limit the batch to one user's sources

        Returns:
            Dictionary with success flag, message and the batch tally
        """
        started = datetime.now(timezone.utc)
        execution_id = f"sync_{started.strftime('%Y%m%d_%H%M%S')}"
        self.logger.info("Starting batch sync", extra={"execution_id": execution_id, "user_id": user_id})

        try:
            self._check_database()
            if user_id:
                report = await self.orchestrator.sync_user(user_id)
            else:
                report = await self.orchestrator.sync_all()
        except CuratorsDeskError as e:
            self.logger.error(f"Batch sync failed: {e}", extra={"execution_id": execution_id})
            return {
                "success": False,
                "execution_id": execution_id,
                "message": e.user_message,
                "error": str(e),
            }

        self.runs_completed += 1
        self.last_run_at = datetime.now(timezone.utc)
        return self._summary(execution_id, report)

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Repeat ``run_once`` every ``scheduler.sync_interval_minutes`` until stopped."""
        stop_event = stop_event or asyncio.Event()
        interval = self.settings.scheduler.sync_interval_minutes * 60
        retry_delay = self.settings.scheduler.retry_delay_minutes * 60

        self.logger.info(f"Sync service started, interval {self.settings.scheduler.sync_interval_minutes} min")

        while not stop_event.is_set():
            result = await self.run_once()
            delay = interval if result["success"] else retry_delay
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue

        self.logger.info("Sync service stopped")

    def _check_database(self) -> None:
        if not DatabaseSchema(str(self.db_manager.db_path)).verify_schema():
            raise DatabaseError("Database has no tables; run init-db first")

    def _summary(self, execution_id: str, report: BatchSyncReport) -> Dict[str, Any]:
        return {
            "success": True,
            "execution_id": execution_id,
            "message": f"Synced {report.sources_total} sources",
            "sources_total": report.sources_total,
            "processed": report.processed,
            "not_modified": report.not_modified,
            "errors": report.errors,
            "skipped": report.skipped,
            "items_created": report.items_created,
            "items_updated": report.items_updated,
            "items_duplicate": report.items_duplicate,
            "duration_seconds": round(report.duration_seconds, 2),
            "failed_sources": {r.source_id: r.error for r in report.failed_sources},
        }

    @staticmethod
    def format_summary(result: Dict[str, Any]) -> str:
        """Human-readable one-screen summary of ``run_once`` output."""
        if not result.get("success"):
            return f"Sync failed: {result.get('message', 'Unknown error')}"

        lines = [
            f"Sync {result['execution_id']}: {result['message']} in {result['duration_seconds']}s",
            f"  processed: {result['processed']}  not modified: {result['not_modified']}  "
            f"errors: {result['errors']}  skipped: {result['skipped']}",
            f"  items: {result['items_created']} new, {result['items_updated']} updated, "
            f"{result['items_duplicate']} duplicate",
        ]
        for source_id, error in result["failed_sources"].items():
            lines.append(f"  ! {source_id}: {error}")
        return "\n".join(lines)
