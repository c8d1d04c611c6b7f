"""
Curator's Desk - Content Ingestion Pipeline
===========================================

Aggregates newsletters and blog feeds into one deduplicated content store.

Main Components:
- Ingestion: feed discovery, conditional fetch, RSS/Atom/JSON Feed parsing,
  newsletter extraction from mailbox messages
- Processing: content-hash deduplication and the per-source sync cycle
- Storage: ContentStore interface with SQLite and in-memory implementations
- Database: SQLite with connection pooling and schema management
- Configuration: environment variables with Pydantic validation
"""

__version__ = "1.0.0"
__author__ = "Curator's Desk Development Team"
__description__ = "Newsletter and feed ingestion pipeline"

from .config.settings import get_settings
from .database.connection import get_db_manager
from .database.schema import DatabaseSchema
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import CuratorsDeskError

__all__ = [
    "get_settings",
    "get_db_manager",
    "DatabaseSchema",
    "configure_application_logging",
    "get_logger_for_component",
    "CuratorsDeskError",
]
