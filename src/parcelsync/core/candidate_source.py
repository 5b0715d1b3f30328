"""
Candidate source interface for the external collection process.
"""

from abc import ABC, abstractmethod
from typing import List, Set

from .models import RawRecord


class CandidateSource(ABC):
    """
    Abstract base class for candidate sources.

    Candidate sources wrap the process that collects raw records (for
    example a browser-driven scraper or the file it exports). They are
    told which ids are already synced so they can skip extracting them.
    """

    @abstractmethod
    def fetch_candidates(self, exclude_ids: Set[str]) -> List[RawRecord]:
        """
        Collect raw records that are not yet known to be synced.

        Per-record extraction failures are logged and the record is left
        out; only failures of the whole collection raise.

        Args:
            exclude_ids: Ids already synced; extraction may skip them

        Returns:
            List of raw records
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the candidate source name/identifier."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
