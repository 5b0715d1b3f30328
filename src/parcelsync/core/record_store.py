"""
Record store interface for the local durable copy of collected records.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Set

from .kind import RecordKind
from .models import Record


class RecordStore(ABC):
    """
    Abstract base class for local record stores.

    A record store owns the local schema, writes records transactionally
    and tracks which records are confirmed present in the remote store,
    enabling resumability and deduplication across runs.
    """

    @abstractmethod
    def initialize(self) -> None:
        """
        Ensure the schema exists. Idempotent; safe on every startup.

        Raises:
            LocalPersistenceError: If the schema cannot be created
        """
        pass

    @abstractmethod
    def upsert(self, kind: RecordKind, records: List[Record]) -> int:
        """
        Write records and their parcels in one transaction.

        Existing rows are overwritten and their synced flag reset.

        Args:
            kind: Record kind descriptor
            records: Records to write

        Returns:
            Number of records written

        Raises:
            LocalPersistenceError: If the transaction failed; nothing
                from this call is visible
        """
        pass

    @abstractmethod
    def get_unsynced_ids(self, kind: RecordKind) -> Set[str]:
        """
        Get ids of persisted records not yet confirmed remotely.

        Args:
            kind: Record kind descriptor

        Returns:
            Set of record ids
        """
        pass

    @abstractmethod
    def get_synced_ids(self, kind: RecordKind) -> Set[str]:
        """
        Get ids of records confirmed present remotely.

        Args:
            kind: Record kind descriptor

        Returns:
            Set of record ids
        """
        pass

    @abstractmethod
    def mark_synced(self, kind: RecordKind, record_ids: Iterable[str]) -> int:
        """
        Flag records and all their parcels as synced, in one transaction.

        Args:
            kind: Record kind descriptor
            record_ids: Ids whose remote commit has been confirmed

        Returns:
            Number of records flagged

        Raises:
            LocalPersistenceError: If the transaction failed
        """
        pass

    @abstractmethod
    def load_records(self, kind: RecordKind, record_ids: Iterable[str]) -> List[Record]:
        """
        Load persisted records with their parcels.

        Args:
            kind: Record kind descriptor
            record_ids: Ids to load; unknown ids are ignored

        Returns:
            List of records
        """
        pass

    @abstractmethod
    def get_stats(self, kind: RecordKind) -> Dict[str, int]:
        """
        Get record and parcel counts for a kind.

        Returns:
            Dictionary with record/parcel counts by synced state
        """
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
