"""
Curator's Desk Processing Module
================================

Deduplication of normalized items and the sync orchestration that drives
discovery, fetching, extraction and storage for every source.
"""

from .deduplicator import ApplyOutcome, ApplyResult, ContentDeduplicator, SourceContext
from .orchestrator import BatchSyncReport, IngestionOrchestrator, SourceSyncResult, SyncState

__all__ = [
    'ApplyOutcome',
    'ApplyResult',
    'BatchSyncReport',
    'ContentDeduplicator',
    'IngestionOrchestrator',
    'SourceContext',
    'SourceSyncResult',
    'SyncState',
]
