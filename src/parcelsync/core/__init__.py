"""
Core abstractions and interfaces for the parcel sync engine.
"""

from .models import (
    RawRecord, RawParcel, Record, Parcel,
    DocumentWrite, RemoteDocument, ChunkResult,
    SyncStage, SyncStatus, KindSyncReport, RunReport,
)
from .kind import RecordKind
from .record_store import RecordStore
from .document_store import DocumentStore
from .candidate_source import CandidateSource
from .exceptions import (
    ParcelSyncError,
    ExtractionError,
    LocalPersistenceError,
    DocumentStoreError,
    RemoteCommitError,
    MalformedIdentifierError,
    ConfigurationError,
)

__all__ = [
    "RawRecord",
    "RawParcel",
    "Record",
    "Parcel",
    "DocumentWrite",
    "RemoteDocument",
    "ChunkResult",
    "SyncStage",
    "SyncStatus",
    "KindSyncReport",
    "RunReport",
    "RecordKind",
    "RecordStore",
    "DocumentStore",
    "CandidateSource",
    "ParcelSyncError",
    "ExtractionError",
    "LocalPersistenceError",
    "DocumentStoreError",
    "RemoteCommitError",
    "MalformedIdentifierError",
    "ConfigurationError",
]
