"""
Remote sync client.

Turns records into remote documents and commits them in bounded, atomic
chunks. A record and its parcel documents always travel in the same chunk,
so a record is either fully present remotely after a chunk confirms or not
touched at all.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterator, List, Optional

from ..core.document_store import DocumentStore
from ..core.exceptions import RemoteCommitError
from ..core.logging import log_with_context
from ..core.models import ChunkResult, Record, RemoteDocument
from ..utils.retry import RetryConfig, retry_with_backoff


logger = logging.getLogger(__name__)


def plan_chunks(
    documents: List[RemoteDocument],
    max_records: int,
    max_writes: int,
) -> List[List[RemoteDocument]]:
    """
    Split documents into chunks bounded by record count and write count.

    Order is preserved. A document whose own writes exceed ``max_writes``
    is isolated in a chunk of its own so it cannot take others down with it.

    Args:
        documents: Record documents in commit order
        max_records: Maximum records per chunk
        max_writes: Maximum document writes per chunk

    Returns:
        List of chunks
    """
    chunks: List[List[RemoteDocument]] = []
    current: List[RemoteDocument] = []
    current_writes = 0

    for document in documents:
        writes = document.document_count
        if current and (len(current) >= max_records or current_writes + writes > max_writes):
            chunks.append(current)
            current, current_writes = [], 0
        current.append(document)
        current_writes += writes

    if current:
        chunks.append(current)
    return chunks


class RemoteSyncClient:
    """
    Commits records to a DocumentStore in size-bounded atomic chunks.

    Chunks are independent: each one is committed (and retried) on its
    own, and a failed chunk does not stop the others. With max_workers > 1
    chunks are committed concurrently.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        max_records_per_chunk: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
        max_workers: int = 1,
    ):
        """
        Initialize the sync client.

        Args:
            document_store: Remote store receiving the commits
            max_records_per_chunk: Record limit per chunk (default: the
                store's write limit)
            retry_config: Retry policy for transient commit failures
            max_workers: Number of chunks committed concurrently
        """
        self.document_store = document_store
        self.max_records_per_chunk = max_records_per_chunk or document_store.max_writes_per_commit
        if self.max_records_per_chunk < 1:
            raise ValueError("max_records_per_chunk must be at least 1")
        self.retry_config = retry_config or RetryConfig()
        self.max_workers = max(1, max_workers)

    def commit_batch(
        self,
        collection_name: str,
        records: List[Record],
        to_document: Callable[[Record], RemoteDocument],
        child_collection: str = "parcels",
    ) -> List[ChunkResult]:
        """
        Commit records in chunks and return every chunk's outcome.

        Args:
            collection_name: Remote collection for the record documents
            records: Records to commit
            to_document: Maps a record to its remote document
            child_collection: Sub-collection for parcel documents

        Returns:
            One ChunkResult per chunk, ordered by chunk index
        """
        results = list(self.iter_commit_batch(collection_name, records, to_document, child_collection))
        return sorted(results, key=lambda r: r.index)

    def iter_commit_batch(
        self,
        collection_name: str,
        records: List[Record],
        to_document: Callable[[Record], RemoteDocument],
        child_collection: str = "parcels",
    ) -> Iterator[ChunkResult]:
        """
        Commit records in chunks, yielding each chunk's outcome as it completes.

        Yields:
            ChunkResult per chunk (completion order when concurrent)
        """
        documents = [to_document(record) for record in records]
        chunks = plan_chunks(
            documents,
            max_records=self.max_records_per_chunk,
            max_writes=self.document_store.max_writes_per_commit,
        )

        if not chunks:
            return

        logger.info(
            f"Committing {len(documents)} document(s) to '{collection_name}' "
            f"in {len(chunks)} chunk(s) via {self.document_store.get_name()}"
        )

        if self.max_workers == 1 or len(chunks) == 1:
            for index, chunk in enumerate(chunks):
                yield self._commit_chunk(index, chunk, collection_name, child_collection)
            return

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="chunk") as executor:
            futures = [
                executor.submit(self._commit_chunk, index, chunk, collection_name, child_collection)
                for index, chunk in enumerate(chunks)
            ]
            for future in as_completed(futures):
                yield future.result()

    def _commit_chunk(
        self,
        index: int,
        chunk: List[RemoteDocument],
        collection_name: str,
        child_collection: str,
    ) -> ChunkResult:
        """Commit one chunk atomically, retrying transient failures."""
        record_ids = [document.doc_id for document in chunk]
        writes = []
        for document in chunk:
            writes.extend(document.to_writes(collection_name, child_collection))

        if len(writes) > self.document_store.max_writes_per_commit:
            error = RemoteCommitError(
                f"Chunk {index} needs {len(writes)} writes, above the per-commit limit "
                f"of {self.document_store.max_writes_per_commit}",
                chunk_index=index,
                record_ids=record_ids,
            )
            log_with_context(logger, logging.ERROR, str(error), chunk_index=index)
            return ChunkResult(
                index=index,
                record_ids=record_ids,
                document_count=len(writes),
                success=False,
                attempts=0,
                error=error,
            )

        result = retry_with_backoff(
            lambda: self.document_store.commit(writes),
            self.retry_config,
            operation_name=f"commit {collection_name} chunk {index}",
            chunk_index=index,
        )

        if result.success:
            log_with_context(
                logger, logging.INFO,
                f"Committed chunk {index}: {len(record_ids)} record(s), {len(writes)} document(s)",
                chunk_index=index,
            )
            return ChunkResult(
                index=index,
                record_ids=record_ids,
                document_count=len(writes),
                success=True,
                attempts=result.attempts,
            )

        error = RemoteCommitError(
            f"Chunk {index} of '{collection_name}' failed after {result.attempts} attempt(s): "
            f"{result.error}",
            chunk_index=index,
            record_ids=record_ids,
        )
        error.__cause__ = result.error
        log_with_context(logger, logging.ERROR, str(error), chunk_index=index)
        return ChunkResult(
            index=index,
            record_ids=record_ids,
            document_count=len(writes),
            success=False,
            attempts=result.attempts,
            error=error,
        )
