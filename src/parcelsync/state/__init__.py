"""
Local record store implementations.
"""

from .sqlite_store import SqliteRecordStore

__all__ = ["SqliteRecordStore"]
