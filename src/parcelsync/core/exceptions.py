"""
Custom exceptions for the parcel sync engine.
"""

from typing import List, Optional


class ParcelSyncError(Exception):
    """Base exception for all parcel sync errors."""
    pass


class ExtractionError(ParcelSyncError):
    """
    Error turning a single collected item into a record.

    Raised when:
    - A raw item has no usable identifier
    - A raw item is not shaped like a record
    - A field cannot be coerced into the record's types

    Per-record: the item is logged and skipped, the run continues.
    """

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class LocalPersistenceError(ParcelSyncError):
    """
    Error writing to the local record store.

    Raised when:
    - The upsert transaction fails (constraint violation, I/O error)
    - The synced-flag transaction fails
    - The schema cannot be created

    The failing transaction has been rolled back when this is raised.
    """
    pass


class DocumentStoreError(ParcelSyncError):
    """
    Error committing writes to a remote document store.

    Raised by DocumentStore backends when an atomic commit is rejected
    or cannot be confirmed. Nothing from the commit is assumed to exist
    remotely.
    """
    pass


class RemoteCommitError(ParcelSyncError):
    """
    Error committing one chunk of records to the remote store.

    Carries the identity of the failed chunk so the caller knows exactly
    which ids remain unsynced.
    """

    def __init__(
        self,
        message: str,
        chunk_index: int,
        record_ids: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.record_ids = list(record_ids or [])


class MalformedIdentifierError(ParcelSyncError):
    """
    Identifier does not carry a usable DDMMYY date token.

    The record proceeds with no date and is flagged for operators.
    """

    def __init__(self, identifier: str, reason: str = "malformed date token"):
        super().__init__(f"{reason}: {identifier!r}")
        self.identifier = identifier
        self.reason = reason


class ConfigurationError(ParcelSyncError):
    """
    Error in sync configuration.

    Raised when:
    - The local store path is missing
    - Remote backend credentials or project are missing
    - A record kind or backend name is unknown
    - Limits are out of range

    Fatal at startup; no work is attempted.
    """
    pass
