"""
Synthetic candidate source for tests and dry runs.

Provides a deterministic source that returns a fixed dataset without
driving any remote UI. The dataset exercises the whole reconciliation
path: parcels with and without amounts, an empty record, and a
return-note id without a date token.
"""

import logging
from copy import deepcopy
from typing import List, Optional, Set

from ..core.candidate_source import CandidateSource
from ..core.exceptions import ExtractionError
from ..core.models import RawParcel, RawRecord

logger = logging.getLogger(__name__)


SYNTHETIC_INVOICES = [
    RawRecord(
        record_id="INV-1001",
        date="03/01/2025",
        total="850.00 DH",
        parcels_count="2",
        parcels=[
            RawParcel(parcel_number="CAS-0001", status="Livré", city="Casablanca", amount="450"),
            RawParcel(parcel_number="CAS-0002", status="Livré", city="Casablanca", amount="400"),
        ],
    ),
    RawRecord(
        record_id="INV-1002",
        date="10/01/2025",
        total="1 200.00 DH",
        parcels_count="3",
        parcels=[
            RawParcel(parcel_number="RBT-0101", status="Livré", city="Rabat", amount="300"),
            RawParcel(parcel_number="RBT-0102", status="Retourné", city="Rabat", amount="0"),
            RawParcel(parcel_number="FES-0103", status="Livré", city="Fès", amount="900"),
        ],
    ),
    RawRecord(
        record_id="INV-1003",
        date="17/01/2025",
        total="0 DH",
        parcels_count="0",
        parcels=[],
    ),
]

SYNTHETIC_RETURN_NOTES = [
    RawRecord(
        record_id="RN-010125A7",
        parcels=[
            RawParcel(parcel_number="TNG-2001", status="Retourné", city="Tanger", date="02/01/2025"),
        ],
    ),
    RawRecord(
        record_id="RN-300125B2",
        parcels=[
            RawParcel(parcel_number="AGD-2002", status="Retourné", city="Agadir"),
            RawParcel(parcel_number="AGD-2003", status="Retourné", city="Agadir"),
        ],
    ),
    RawRecord(
        record_id="RN-XYZ",
        parcels=[
            RawParcel(parcel_number="OUJ-2004", status="Retourné", city="Oujda"),
        ],
    ),
]


class SyntheticSource(CandidateSource):
    """
    Deterministic candidate source.

    Features:
    - Fixed dataset per kind, or custom records
    - Extraction error simulation for specific record ids
    - Records the exclude sets it was called with
    """

    def __init__(
        self,
        kind: str = "invoice",
        records: Optional[List[RawRecord]] = None,
        error_ids: Optional[List[str]] = None,
    ):
        """
        Initialize the synthetic source.

        Args:
            kind: Selects the built-in dataset ("invoice" or "return_note")
            records: Custom records to use instead of the built-in dataset
            error_ids: Record ids whose extraction should fail
        """
        if records is None:
            records = SYNTHETIC_RETURN_NOTES if kind == "return_note" else SYNTHETIC_INVOICES
        self.kind = kind
        self.records = deepcopy(records)
        self.error_ids = set(error_ids or [])

        self.exclude_history: List[Set[str]] = []
        self.extracted_ids: List[str] = []

    def fetch_candidates(self, exclude_ids: Set[str]) -> List[RawRecord]:
        """Return the dataset minus excluded ids and simulated failures."""
        self.exclude_history.append(set(exclude_ids))
        results = []

        for record in self.records:
            if record.record_id in exclude_ids:
                continue
            try:
                results.append(self._extract(record))
            except ExtractionError as e:
                logger.error(f"Error extracting {record.record_id}: {e}")
                continue

        return results

    def _extract(self, record: RawRecord) -> RawRecord:
        if record.record_id in self.error_ids:
            raise ExtractionError(
                f"Simulated extraction failure for {record.record_id}",
                record_id=record.record_id,
            )
        self.extracted_ids.append(record.record_id)
        return deepcopy(record)

    def get_name(self) -> str:
        return f"synthetic:{self.kind}"
