"""
Remote document store backends and the chunked sync client.

Select the backend with the ``remote.backend`` configuration value or the
PARCEL_SYNC_REMOTE_BACKEND environment variable:
    - firestore (default)
    - memory (in-process, for tests and dry runs)
"""

import logging
import os
from typing import Optional

from ..core.document_store import DocumentStore
from ..core.exceptions import ConfigurationError
from .memory_store import InMemoryDocumentStore
from .sync_client import RemoteSyncClient, plan_chunks


logger = logging.getLogger(__name__)


def _get_firestore_store():
    from .firestore_store import FirestoreDocumentStore
    return FirestoreDocumentStore


def create_document_store(
    backend: Optional[str] = None,
    project: Optional[str] = None,
    credentials_path: Optional[str] = None,
    database: Optional[str] = None,
    max_writes_per_commit: int = 500,
) -> DocumentStore:
    """
    Factory function to create the document store for the configured backend.

    Args:
        backend: 'firestore' or 'memory'. Defaults to PARCEL_SYNC_REMOTE_BACKEND or 'firestore'.
        project: Google Cloud project id (firestore)
        credentials_path: Service account key path (firestore)
        database: Firestore database id (firestore)
        max_writes_per_commit: Writes accepted per atomic commit

    Returns:
        DocumentStore instance

    Raises:
        ConfigurationError: If the backend is not recognized
    """
    if backend is None:
        backend = os.environ.get("PARCEL_SYNC_REMOTE_BACKEND", "firestore")
    backend = backend.lower()

    if backend == "memory":
        logger.warning("Using in-memory document store; nothing is sent to a remote store")
        return InMemoryDocumentStore(max_writes_per_commit=max_writes_per_commit)

    if backend == "firestore":
        FirestoreDocumentStore = _get_firestore_store()
        return FirestoreDocumentStore(
            project=project,
            credentials_path=credentials_path,
            database=database,
            max_writes_per_commit=max_writes_per_commit,
        )

    raise ConfigurationError(
        f"Unknown remote backend: {backend}. Supported backends: 'firestore', 'memory'"
    )


__all__ = [
    "InMemoryDocumentStore",
    "RemoteSyncClient",
    "plan_chunks",
    "create_document_store",
]
