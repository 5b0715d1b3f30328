"""
Candidate source reading the collection process's JSON export.

The collection process (a browser-driven scraper) writes the records it
extracted as JSON. Field names follow the scraper's output:

    [
      {
        "invoiceId": "INV-1042",          # or "returnNoteId" / "id"
        "date": "12/01/2025",
        "total": "1 250.00 DH",
        "parcelsNumber": "3",
        "parcels": [
          {"parcelsNumber": "P-1", "status": "Livré", "city": "Rabat", "total": "400"}
        ]
      }
    ]

An object with a top-level "records" array is accepted as well.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from ..core.candidate_source import CandidateSource
from ..core.exceptions import ExtractionError
from ..core.models import RawParcel, RawRecord


logger = logging.getLogger(__name__)


ID_KEYS = ("invoiceId", "returnNoteId", "id")
PARCEL_NUMBER_KEYS = ("parcelsNumber", "parcelNumber")
PARCEL_AMOUNT_KEYS = ("total", "amount")


def _first(item: Dict[str, Any], keys) -> Optional[Any]:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_raw_record(item: Any) -> RawRecord:
    """
    Parse one exported item into a RawRecord.

    Raises:
        ExtractionError: If the item is not a record object or has no id
    """
    if not isinstance(item, dict):
        raise ExtractionError(f"Expected a record object, got {type(item).__name__}")

    record_id = _first(item, ID_KEYS)
    if record_id is None:
        raise ExtractionError("Record has no id")
    record_id = str(record_id).strip()

    raw_parcels = item.get("parcels") or []
    if not isinstance(raw_parcels, list):
        raise ExtractionError(f"Record {record_id} has malformed parcels", record_id=record_id)

    parcels = []
    for raw in raw_parcels:
        if not isinstance(raw, dict):
            raise ExtractionError(f"Record {record_id} has a malformed parcel row", record_id=record_id)
        number = _first(raw, PARCEL_NUMBER_KEYS)
        parcels.append(
            RawParcel(
                parcel_number=str(number) if number is not None else None,
                status=raw.get("status"),
                city=raw.get("city"),
                amount=_first(raw, PARCEL_AMOUNT_KEYS),
                date=raw.get("date"),
            )
        )

    return RawRecord(
        record_id=record_id,
        date=item.get("date"),
        total=item.get("total"),
        parcels=parcels,
        parcels_count=item.get("parcelsNumber", item.get("parcelsCount")),
    )


class JsonFileSource(CandidateSource):
    """
    Reads raw records from a JSON export file.

    Items that cannot be parsed are logged and left out; the rest of the
    file is still used.
    """

    def __init__(self, path: Union[str, Path], name: Optional[str] = None):
        """
        Initialize the file source.

        Args:
            path: Path to the JSON export
            name: Optional source name for logs
        """
        self.path = Path(path)
        self.name = name or f"file:{self.path.name}"
        self.errors: List[ExtractionError] = []

    def fetch_candidates(self, exclude_ids: Set[str]) -> List[RawRecord]:
        """
        Read the export and return records not in ``exclude_ids``.

        Raises:
            ExtractionError: If the file cannot be read or is not a record list
        """
        items = self._load_items()
        self.errors = []
        records = []

        for position, item in enumerate(items):
            try:
                record = parse_raw_record(item)
            except ExtractionError as e:
                self.errors.append(e)
                logger.warning(f"{self.name}: skipping item {position}: {e}")
                continue

            if record.record_id in exclude_ids:
                continue
            records.append(record)

        logger.info(
            f"{self.name}: {len(records)} candidate(s), {len(self.errors)} unreadable item(s)"
        )
        return records

    def _load_items(self) -> List[Any]:
        """Load the export's record list."""
        if not self.path.exists():
            raise ExtractionError(f"Export file not found: {self.path}")

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ExtractionError(f"Cannot read export {self.path}: {e}") from e

        if isinstance(data, dict):
            data = data.get("records")
        if not isinstance(data, list):
            raise ExtractionError(f"Export {self.path} does not contain a record list")
        return data

    def get_name(self) -> str:
        return self.name
