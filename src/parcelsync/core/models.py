"""
Core data models for the parcel sync engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
import uuid


class SyncStage(str, Enum):
    """
    Stage reached by a reconciliation run for one record kind.

    Stages advance in declaration order; a failed run stops at the
    last stage it completed.
    """
    START = "start"
    SYNCED_IDS_FETCHED = "synced_ids_fetched"
    CANDIDATES_FILTERED = "candidates_filtered"
    LOCALLY_PERSISTED = "locally_persisted"
    REMOTELY_COMMITTED = "remotely_committed"
    FLAGGED_SYNCED = "flagged_synced"
    DONE = "done"


class SyncStatus(str, Enum):
    """Outcome of a reconciliation run for one record kind."""
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


RawValue = Union[str, int, float, None]


@dataclass
class RawParcel:
    """
    A parcel row as supplied by the collection process.

    Attributes:
        parcel_number: Parcel number as shown in the source table
        status: Delivery status text
        city: Destination city
        amount: Raw amount text or number (invoice parcels only)
        date: Raw date cell, if the source table has one
    """
    parcel_number: Optional[str]
    status: Optional[str] = None
    city: Optional[str] = None
    amount: RawValue = None
    date: Optional[str] = None


@dataclass
class RawRecord:
    """
    A record as supplied by the collection process, before normalization.

    Attributes:
        record_id: Stable external id (invoice id or return-note id)
        date: Date text, or the identifier the date is derived from
        total: Raw total text (e.g. "1 250.00 DH") or number
        parcels: Raw parcel rows
        parcels_count: Parcel count reported by the listing page, if any
    """
    record_id: str
    date: Optional[str] = None
    total: RawValue = None
    parcels: List[RawParcel] = field(default_factory=list)
    parcels_count: RawValue = None


@dataclass
class Parcel:
    """A parcel line item, unique within its parent record."""
    parcel_number: str
    record_id: str
    status: Optional[str] = None
    city: Optional[str] = None
    amount: Optional[float] = None
    synced: bool = False


@dataclass
class Record:
    """
    A normalized invoice or return note.

    Attributes:
        record_id: Stable external id, used as primary key locally and
            as document id remotely
        date: Calendar date text, or None when no reliable date exists
        total: Monetary total (invoices), None otherwise
        child_count: Number of parcels reported for the record
        parcels: Parcel line items
        synced: Whether the record is confirmed present remotely
        processed_at: When this version of the record was produced
        date_flagged: True when the date could not be derived
    """
    record_id: str
    date: Optional[str] = None
    total: Optional[float] = None
    child_count: int = 0
    parcels: List[Parcel] = field(default_factory=list)
    synced: bool = False
    processed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    date_flagged: bool = False


DocumentPath = Tuple[str, ...]


@dataclass
class DocumentWrite:
    """A single document write inside an atomic remote commit."""
    path: DocumentPath
    data: Dict[str, Any]


@dataclass
class RemoteDocument:
    """
    Remote representation of one record and its parcels.

    Attributes:
        doc_id: Document id (the record's natural id)
        data: Top-level document fields
        children: Child documents by id (parcel number)
    """
    doc_id: str
    data: Dict[str, Any]
    children: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_writes(self, collection: str, child_collection: str = "parcels") -> List[DocumentWrite]:
        """Expand into the parent write followed by its nested child writes."""
        writes = [DocumentWrite(path=(collection, self.doc_id), data=self.data)]
        for child_id, child_data in self.children.items():
            writes.append(
                DocumentWrite(
                    path=(collection, self.doc_id, child_collection, child_id),
                    data=child_data,
                )
            )
        return writes

    @property
    def document_count(self) -> int:
        return 1 + len(self.children)


@dataclass
class ChunkResult:
    """
    Outcome of committing one chunk of records.

    Attributes:
        index: Position of the chunk within the batch (0-based)
        record_ids: Ids of the records in the chunk
        document_count: Number of documents the chunk writes
        success: Whether the atomic commit was confirmed
        attempts: Commit attempts made
        error: The RemoteCommitError when the chunk failed
    """
    index: int
    record_ids: List[str]
    document_count: int
    success: bool
    attempts: int = 0
    error: Optional[Exception] = None


@dataclass
class KindSyncReport:
    """Report of one reconciliation run for one record kind."""
    kind: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    stage: SyncStage = SyncStage.START
    status: SyncStatus = SyncStatus.RUNNING

    synced_before: int = 0
    unsynced_before: int = 0
    candidates: int = 0
    skipped_empty: int = 0
    extraction_errors: int = 0
    persisted: int = 0
    backlog: int = 0
    committed: int = 0
    flagged_synced: int = 0
    still_unsynced: int = 0

    chunks_committed: int = 0
    failed_chunks: List[str] = field(default_factory=list)
    flagged_dates: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "kind": self.kind,
            "status": self.status.value,
            "stage": self.stage.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "synced_before": self.synced_before,
            "unsynced_before": self.unsynced_before,
            "candidates": self.candidates,
            "skipped_empty": self.skipped_empty,
            "extraction_errors": self.extraction_errors,
            "persisted": self.persisted,
            "backlog": self.backlog,
            "committed": self.committed,
            "flagged_synced": self.flagged_synced,
            "still_unsynced": self.still_unsynced,
            "chunks_committed": self.chunks_committed,
            "failed_chunks": list(self.failed_chunks),
            "flagged_dates": list(self.flagged_dates),
            "error": self.error,
        }

    def summary(self) -> str:
        """Get a human-readable summary."""
        lines = [
            f"{self.kind}: {self.status.value.upper()} (stage: {self.stage.value})",
            f"  Candidates: {self.candidates} "
            f"(skipped empty: {self.skipped_empty}, extraction errors: {self.extraction_errors})",
            f"  Persisted: {self.persisted}",
            f"  Backlog re-committed: {self.backlog}",
            f"  Committed: {self.committed} in {self.chunks_committed} chunk(s)",
            f"  Still unsynced: {self.still_unsynced}",
        ]
        if self.failed_chunks:
            lines.append(f"  Failed chunks: {len(self.failed_chunks)}")
            lines.extend(f"    - {c}" for c in self.failed_chunks)
        if self.flagged_dates:
            lines.append(f"  Records without a reliable date: {', '.join(self.flagged_dates)}")
        if self.error:
            lines.append(f"  Error: {self.error}")
        return "\n".join(lines)


@dataclass
class RunReport:
    """Report of a full reconciliation run over one or more record kinds."""
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    kinds: Dict[str, KindSyncReport] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return all(r.status == SyncStatus.SUCCESS for r in self.kinds.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "success": self.success,
            "kinds": {name: r.to_dict() for name, r in self.kinds.items()},
        }

    def summary(self) -> str:
        """Get a human-readable summary."""
        lines = [f"Sync run {self.run_id}"]
        if self.completed_at:
            lines.append(
                f"  Duration: {(self.completed_at - self.started_at).total_seconds():.1f}s"
            )
        lines.append("")
        for report in self.kinds.values():
            lines.append(report.summary())
            lines.append("")
        return "\n".join(lines).rstrip()
