"""
Curator's Desk Storage Layer
============================

Repository pattern implementations behind the ``ContentStore`` interface.

This module provides:
- SQLite repositories for sources, creators, content and the mailbox ledger
- ``SQLiteContentStore`` composing them for the pipeline
- ``InMemoryContentStore`` with the same uniqueness rules
"""

from .base import ContentStore
from .memory_store import InMemoryContentStore
from .sqlite_store import SQLiteContentStore

__all__ = [
    "ContentStore",
    "InMemoryContentStore",
    "SQLiteContentStore",
]
