"""
Cloud Firestore document store.
"""

import logging
from typing import List, Optional

try:
    from google.api_core import exceptions as google_exceptions
    from google.cloud import firestore
except ImportError:
    google_exceptions = None
    firestore = None

from ..core.document_store import DocumentStore
from ..core.exceptions import DocumentStoreError
from ..core.models import DocumentWrite


logger = logging.getLogger(__name__)


# Firestore rejects batched writes with more than this many operations.
FIRESTORE_MAX_WRITES_PER_COMMIT = 500

# Errors that mean the batch was not confirmed.
COMMIT_ERRORS = (ConnectionError, TimeoutError)
if google_exceptions is not None:
    COMMIT_ERRORS += (google_exceptions.GoogleAPIError,)


class FirestoreDocumentStore(DocumentStore):
    """
    Writes documents to Cloud Firestore with batched writes.

    Each commit is one WriteBatch, which Firestore applies atomically.
    Document paths map directly to Firestore paths, so
    ("invoices", "INV-1", "parcels", "P-1") is the parcel document nested
    under the invoice.
    """

    def __init__(
        self,
        project: Optional[str] = None,
        credentials_path: Optional[str] = None,
        database: Optional[str] = None,
        max_writes_per_commit: int = FIRESTORE_MAX_WRITES_PER_COMMIT,
        client=None,
    ):
        """
        Initialize the Firestore document store.

        Args:
            project: Google Cloud project id
            credentials_path: Path to a service account JSON key; when omitted,
                application default credentials are used
            database: Firestore database id (default database if omitted)
            max_writes_per_commit: Writes per batch, at most the Firestore limit
            client: Pre-built firestore.Client (takes precedence over the above)
        """
        if not 1 <= max_writes_per_commit <= FIRESTORE_MAX_WRITES_PER_COMMIT:
            raise ValueError(
                f"max_writes_per_commit must be between 1 and {FIRESTORE_MAX_WRITES_PER_COMMIT}"
            )
        self._max_writes = max_writes_per_commit
        self.project = project
        self.database = database

        if client is not None:
            self.client = client
        else:
            self.client = self._build_client(credentials_path)

    def _build_client(self, credentials_path: Optional[str]):
        """Create the Firestore client."""
        if firestore is None:
            raise ImportError(
                "google-cloud-firestore is required for FirestoreDocumentStore. "
                "Install with: pip install google-cloud-firestore"
            )

        kwargs = {}
        if self.project:
            kwargs["project"] = self.project
        if self.database:
            kwargs["database"] = self.database

        if credentials_path:
            client = firestore.Client.from_service_account_json(credentials_path, **kwargs)
        else:
            client = firestore.Client(**kwargs)

        logger.debug(f"Connected to Firestore project: {client.project}")
        return client

    @property
    def max_writes_per_commit(self) -> int:
        return self._max_writes

    def commit(self, writes: List[DocumentWrite]) -> None:
        """
        Apply all writes as one Firestore batch.

        Raises:
            DocumentStoreError: If the batch is too large or Firestore rejects it
        """
        if len(writes) > self._max_writes:
            raise DocumentStoreError(
                f"Commit of {len(writes)} writes exceeds limit of {self._max_writes}"
            )

        batch = self.client.batch()
        for write in writes:
            batch.set(self.client.document(*write.path), write.data)

        try:
            batch.commit()
        except COMMIT_ERRORS as e:
            logger.error(f"Firestore batch commit failed: {e}")
            raise DocumentStoreError(f"Firestore batch commit failed: {e}") from e

        logger.debug(f"Committed {len(writes)} document(s) to Firestore")

    def get_name(self) -> str:
        return "firestore"

    def close(self) -> None:
        """Close the Firestore client."""
        close = getattr(self.client, "close", None)
        if close:
            close()
