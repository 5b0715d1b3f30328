"""
In-process document store.

Provides a deterministic DocumentStore without any network dependency.
Used for tests and dry runs; it enforces the same per-commit write limit
and all-or-nothing semantics as the real backend, and can simulate
rejected commits.
"""

import logging
import threading
from typing import Dict, List, Optional, Set

from ..core.document_store import DocumentStore
from ..core.exceptions import DocumentStoreError
from ..core.models import DocumentPath, DocumentWrite

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """
    Dictionary-backed document store.

    Features:
    - Atomic commits: a commit is validated in full before any write applies
    - Per-commit write limit, rejected like the remote store does
    - Error simulation for commits touching specific document ids
    - Transient error simulation for the first N commits
    - Commit history for assertions
    """

    def __init__(
        self,
        max_writes_per_commit: int = 500,
        fail_doc_ids: Optional[Set[str]] = None,
        transient_failures: int = 0,
    ):
        """
        Initialize the in-memory document store.

        Args:
            max_writes_per_commit: Maximum writes accepted per commit
            fail_doc_ids: Top-level document ids whose commits always fail
            transient_failures: Number of initial commits that fail before
                commits start succeeding
        """
        if max_writes_per_commit < 1:
            raise ValueError("max_writes_per_commit must be at least 1")
        self._max_writes = max_writes_per_commit
        self.fail_doc_ids = set(fail_doc_ids or [])
        self.transient_failures = transient_failures

        self.documents: Dict[DocumentPath, dict] = {}
        self.commit_history: List[List[DocumentWrite]] = []
        self.rejected_commits = 0
        self._lock = threading.Lock()

    @property
    def max_writes_per_commit(self) -> int:
        return self._max_writes

    def commit(self, writes: List[DocumentWrite]) -> None:
        """
        Apply all writes atomically.

        Raises:
            DocumentStoreError: If the commit exceeds the write limit or
                matches a simulated failure
        """
        with self._lock:
            if len(writes) > self._max_writes:
                self.rejected_commits += 1
                raise DocumentStoreError(
                    f"Commit of {len(writes)} writes exceeds limit of {self._max_writes}"
                )

            if self.transient_failures > 0:
                self.transient_failures -= 1
                self.rejected_commits += 1
                raise DocumentStoreError("Simulated transient commit failure")

            failing = sorted({w.path[1] for w in writes if w.path[1] in self.fail_doc_ids})
            if failing:
                self.rejected_commits += 1
                raise DocumentStoreError(f"Simulated commit failure for: {', '.join(failing)}")

            for write in writes:
                self.documents[tuple(write.path)] = dict(write.data)
            self.commit_history.append(list(writes))

        logger.debug(f"Committed {len(writes)} document(s) in memory")

    def get_document(self, *path: str) -> Optional[dict]:
        """Get a document by path, e.g. get_document("invoices", "INV-1")."""
        return self.documents.get(tuple(path))

    def list_documents(self, collection: str) -> List[str]:
        """List top-level document ids in a collection."""
        return sorted(
            path[1] for path in self.documents
            if len(path) == 2 and path[0] == collection
        )

    @property
    def commit_sizes(self) -> List[int]:
        """Number of writes in each successful commit."""
        return [len(writes) for writes in self.commit_history]

    def get_name(self) -> str:
        return "memory"
