"""
Record kind descriptor.

Each synchronized record kind (invoice, return note) is described by one
frozen RecordKind. Stores, the sync client and the coordinator are
parametrized by the descriptor instead of branching on kind names.
"""

import re
from dataclasses import dataclass
from typing import Callable

from .models import RawRecord, Record, RemoteDocument


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class RecordKind:
    """
    Per-kind configuration record.

    Attributes:
        name: Kind name used in configuration and reports
        records_table: Local table holding parent records
        parcels_table: Local table holding parcels
        collection: Remote collection holding record documents
        to_record: Converts a collected RawRecord into a Record
        to_document: Maps a Record to its remote document
        child_collection: Remote sub-collection holding parcel documents
    """
    name: str
    records_table: str
    parcels_table: str
    collection: str
    to_record: Callable[[RawRecord], Record]
    to_document: Callable[[Record], RemoteDocument]
    child_collection: str = "parcels"

    def __post_init__(self):
        # Table names are interpolated into SQL.
        for table in (self.records_table, self.parcels_table):
            if not _IDENTIFIER_RE.match(table):
                raise ValueError(f"Invalid table name for kind {self.name}: {table!r}")
