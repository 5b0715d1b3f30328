"""
Record kinds handled by the sync engine.

Each kind is a RecordKind descriptor: where its rows live locally, where
its documents live remotely, and how collected values are normalized.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .core.exceptions import ConfigurationError, ExtractionError, MalformedIdentifierError
from .core.kind import RecordKind
from .core.models import Parcel, RawParcel, RawRecord, Record, RemoteDocument
from .dates import normalize_identifier_date


logger = logging.getLogger(__name__)


UNKNOWN = "Unknown"
CURRENCY_SUFFIX = "DH"


def parse_amount(value, default: Optional[float] = 0.0) -> Optional[float]:
    """
    Parse a collected money value such as ``"1 250,00 DH"``.

    Returns ``default`` when the value is missing or unparseable.
    """
    if value is None:
        return default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)

    text = str(value).replace(CURRENCY_SUFFIX, "")
    text = "".join(text.split())
    if "," in text and "." in text:
        text = text.replace(",", "")
    else:
        text = text.replace(",", ".")

    try:
        return float(text)
    except ValueError:
        return default


def parse_count(value, default: int) -> int:
    """Parse a collected count, falling back to ``default``."""
    if value is None:
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _clean_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require_id(raw: RawRecord) -> str:
    record_id = _clean_text(raw.record_id)
    if not record_id:
        raise ExtractionError("Collected record has no id")
    return record_id


def _to_parcels(record_id: str, raw_parcels: List[RawParcel], with_amount: bool) -> List[Parcel]:
    parcels = []
    for raw in raw_parcels:
        parcel_number = _clean_text(raw.parcel_number)
        if not parcel_number:
            raise ExtractionError(
                f"Record {record_id} has a parcel without a parcel number",
                record_id=record_id,
            )
        parcels.append(
            Parcel(
                parcel_number=parcel_number,
                record_id=record_id,
                status=_clean_text(raw.status),
                city=_clean_text(raw.city),
                amount=parse_amount(raw.amount) if with_amount else None,
            )
        )
    return parcels


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Invoices
# =============================================================================

def invoice_to_record(raw: RawRecord) -> Record:
    """Normalize a collected invoice."""
    record_id = _require_id(raw)
    parcels = _to_parcels(record_id, raw.parcels, with_amount=True)
    return Record(
        record_id=record_id,
        date=_clean_text(raw.date),
        total=parse_amount(raw.total),
        child_count=parse_count(raw.parcels_count, len(parcels)),
        parcels=parcels,
    )


def invoice_to_document(record: Record) -> RemoteDocument:
    """Map an invoice to its remote document."""
    now = _now_iso()
    data = {
        "invoiceId": record.record_id,
        "date": record.date or UNKNOWN,
        "parcelsCount": record.child_count,
        "totalAmount": record.total if record.total is not None else 0.0,
        "processedAt": record.processed_at.isoformat(),
        "lastUpdated": now,
        "synced": True,
    }
    children = {
        p.parcel_number: {
            "parcelNumber": p.parcel_number,
            "status": p.status or UNKNOWN,
            "city": p.city or UNKNOWN,
            "amount": p.amount if p.amount is not None else 0.0,
            "lastUpdated": now,
        }
        for p in record.parcels
    }
    return RemoteDocument(doc_id=record.record_id, data=data, children=children)


# =============================================================================
# Return notes
# =============================================================================

def return_note_to_record(raw: RawRecord) -> Record:
    """
    Normalize a collected return note.

    The date is derived from the return-note id. An id without a usable
    date token keeps the record with no date and flags it.
    """
    record_id = _require_id(raw)
    parcels = _to_parcels(record_id, raw.parcels, with_amount=False)

    date_flagged = False
    try:
        derived_date = normalize_identifier_date(record_id)
    except MalformedIdentifierError as e:
        logger.warning(f"Return note {record_id} has no reliable date: {e}")
        derived_date = None
        date_flagged = True

    return Record(
        record_id=record_id,
        date=derived_date,
        total=None,
        child_count=parse_count(raw.parcels_count, len(parcels)),
        parcels=parcels,
        date_flagged=date_flagged,
    )


def return_note_to_document(record: Record) -> RemoteDocument:
    """Map a return note to its remote document."""
    now = _now_iso()
    data = {
        "returnNoteId": record.record_id,
        "date": record.date or UNKNOWN,
        "dateFlagged": record.date_flagged,
        "parcelsCount": record.child_count,
        "processedAt": record.processed_at.isoformat(),
        "lastUpdated": now,
        "synced": True,
    }
    children = {
        p.parcel_number: {
            "parcelNumber": p.parcel_number,
            "status": p.status or UNKNOWN,
            "city": p.city or UNKNOWN,
            "lastUpdated": now,
        }
        for p in record.parcels
    }
    return RemoteDocument(doc_id=record.record_id, data=data, children=children)


INVOICE = RecordKind(
    name="invoice",
    records_table="invoices",
    parcels_table="invoice_parcels",
    collection="invoices",
    to_record=invoice_to_record,
    to_document=invoice_to_document,
)

RETURN_NOTE = RecordKind(
    name="return_note",
    records_table="return_notes",
    parcels_table="return_note_parcels",
    collection="returnNotes",
    to_record=return_note_to_record,
    to_document=return_note_to_document,
)

KINDS: Dict[str, RecordKind] = {
    INVOICE.name: INVOICE,
    RETURN_NOTE.name: RETURN_NOTE,
}


def get_kind(name: str) -> RecordKind:
    """
    Resolve a kind descriptor by name.

    Raises:
        ConfigurationError: If the kind is not registered
    """
    try:
        return KINDS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown record kind: {name}. Supported kinds: {', '.join(sorted(KINDS))}"
        ) from None
