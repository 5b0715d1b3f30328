"""
Document store interface for the remote authoritative copy of records.
"""

from abc import ABC, abstractmethod
from typing import List

from .models import DocumentWrite


class DocumentStore(ABC):
    """
    Abstract base class for remote document stores.

    A document store applies a list of document writes as one atomic
    commit. Documents are addressed by path, so writing the same path
    twice overwrites rather than duplicates.
    """

    @property
    @abstractmethod
    def max_writes_per_commit(self) -> int:
        """Maximum number of document writes accepted in one commit."""
        pass

    @abstractmethod
    def commit(self, writes: List[DocumentWrite]) -> None:
        """
        Apply all writes atomically.

        Args:
            writes: Document writes, at most max_writes_per_commit

        Raises:
            DocumentStoreError: If the commit was rejected or could not
                be confirmed; none of the writes are assumed applied
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the document store name/identifier."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
