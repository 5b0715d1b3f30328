"""
SQLite-based record store for the local durable copy of collected records.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Union

from ..core.exceptions import LocalPersistenceError
from ..core.kind import RecordKind
from ..core.models import Parcel, Record
from ..core.record_store import RecordStore
from ..kinds import KINDS


logger = logging.getLogger(__name__)


# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds.
_SELECT_BATCH = 500


def _batched(items: List[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SqliteRecordStore(RecordStore):
    """
    SQLite-based implementation of the record store.

    One records table and one parcels table per record kind. Parcels
    reference their parent with a cascading foreign key, and foreign key
    enforcement is switched on for every connection.

    The store is a single-writer resource: every call holds an instance
    lock, so at most one transaction is in flight.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        kinds: Optional[Iterable[RecordKind]] = None,
        auto_init: bool = True,
    ):
        """
        Initialize the SQLite record store.

        Args:
            db_path: Path to the SQLite database file (or ":memory:")
            kinds: Record kinds whose tables this store manages (default: all)
            auto_init: Whether to create tables automatically
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self.kinds = list(kinds) if kinds is not None else list(KINDS.values())
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._connect()

        if auto_init:
            self.initialize()

    def _connect(self) -> None:
        """Establish database connection."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # Autocommit mode; transactions are opened explicitly.
            self.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise LocalPersistenceError(f"Cannot open record store {self.db_path}: {e}") from e
        logger.debug(f"Connected to SQLite record store: {self.db_path}")

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Cursor]:
        """
        Run a block inside one transaction.

        Commits on success. On any failure the transaction is rolled back
        and the error re-raised as LocalPersistenceError.
        """
        with self._lock:
            if self.conn is None:
                raise LocalPersistenceError(f"{operation} failed: record store is closed")
            cursor = self.conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                yield cursor
                cursor.execute("COMMIT")
            except Exception as e:
                if self.conn.in_transaction:
                    self.conn.rollback()
                logger.error(f"{operation} failed, transaction rolled back: {e}")
                if isinstance(e, LocalPersistenceError):
                    raise
                raise LocalPersistenceError(f"{operation} failed: {e}") from e

    def initialize(self) -> None:
        """Initialize database schema for every managed kind."""
        with self._transaction("initialize") as cursor:
            for kind in self.kinds:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {kind.records_table} (
                        id TEXT PRIMARY KEY NOT NULL,
                        date TEXT,
                        total REAL,
                        child_count INTEGER,
                        synced BOOLEAN NOT NULL DEFAULT 0,
                        date_flagged BOOLEAN NOT NULL DEFAULT 0,
                        processed_at TIMESTAMP
                    )
                """)

                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {kind.parcels_table} (
                        parcel_number TEXT NOT NULL,
                        record_id TEXT NOT NULL,
                        status TEXT,
                        city TEXT,
                        amount REAL,
                        synced BOOLEAN NOT NULL DEFAULT 0,
                        PRIMARY KEY (parcel_number, record_id),
                        FOREIGN KEY (record_id) REFERENCES {kind.records_table} (id)
                            ON DELETE CASCADE
                    )
                """)

                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS ix_{kind.records_table}_synced
                    ON {kind.records_table} (synced)
                """)

                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS ix_{kind.parcels_table}_record_id
                    ON {kind.parcels_table} (record_id)
                """)

        logger.debug("Initialized record store schema")

    def upsert(self, kind: RecordKind, records: List[Record]) -> int:
        """
        Write records and their parcels in one transaction.

        Rows that already exist are overwritten and their synced flag is
        reset, since the remote copy no longer matches. Parcels a record no
        longer lists are deleted.

        Args:
            kind: Record kind descriptor
            records: Records to write

        Returns:
            Number of records written
        """
        if not records:
            return 0

        with self._transaction(f"upsert {kind.name}") as cursor:
            for record in records:
                cursor.execute(f"""
                    INSERT INTO {kind.records_table} (
                        id, date, total, child_count, synced, date_flagged, processed_at
                    ) VALUES (?, ?, ?, ?, 0, ?, ?)
                    ON CONFLICT (id) DO UPDATE SET
                        date = excluded.date,
                        total = excluded.total,
                        child_count = excluded.child_count,
                        synced = 0,
                        date_flagged = excluded.date_flagged,
                        processed_at = excluded.processed_at
                """, (
                    record.record_id,
                    record.date,
                    record.total,
                    record.child_count,
                    record.date_flagged,
                    record.processed_at.isoformat(),
                ))

                for parcel in record.parcels:
                    cursor.execute(f"""
                        INSERT INTO {kind.parcels_table} (
                            parcel_number, record_id, status, city, amount, synced
                        ) VALUES (?, ?, ?, ?, ?, 0)
                        ON CONFLICT (parcel_number, record_id) DO UPDATE SET
                            status = excluded.status,
                            city = excluded.city,
                            amount = excluded.amount,
                            synced = 0
                    """, (
                        parcel.parcel_number,
                        record.record_id,
                        parcel.status,
                        parcel.city,
                        parcel.amount,
                    ))

                # The record is replaced as a whole, so parcels it no longer lists go.
                cursor.execute(
                    f"SELECT parcel_number FROM {kind.parcels_table} WHERE record_id = ?",
                    (record.record_id,),
                )
                current = {parcel.parcel_number for parcel in record.parcels}
                stale = [
                    (row["parcel_number"], record.record_id)
                    for row in cursor.fetchall()
                    if row["parcel_number"] not in current
                ]
                if stale:
                    cursor.executemany(
                        f"DELETE FROM {kind.parcels_table} WHERE parcel_number = ? AND record_id = ?",
                        stale,
                    )
                    logger.debug(f"Dropped {len(stale)} stale parcel(s) of {record.record_id}")

        logger.info(f"Persisted {len(records)} {kind.name} record(s) locally")
        return len(records)

    def get_unsynced_ids(self, kind: RecordKind) -> Set[str]:
        """Get ids of persisted records not yet confirmed remotely."""
        return self._select_ids(kind, synced=False)

    def get_synced_ids(self, kind: RecordKind) -> Set[str]:
        """Get ids of records confirmed present remotely."""
        return self._select_ids(kind, synced=True)

    def _select_ids(self, kind: RecordKind, synced: bool) -> Set[str]:
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(
                    f"SELECT id FROM {kind.records_table} WHERE synced = ?",
                    (1 if synced else 0,),
                )
                return {row["id"] for row in cursor.fetchall()}
            except sqlite3.Error as e:
                logger.error(f"Failed to read {kind.name} sync state: {e}")
                raise LocalPersistenceError(f"Failed to read {kind.name} sync state: {e}") from e

    def mark_synced(self, kind: RecordKind, record_ids: Iterable[str]) -> int:
        """
        Flag records and all their parcels as synced, in one transaction.

        Args:
            kind: Record kind descriptor
            record_ids: Ids whose remote commit has been confirmed

        Returns:
            Number of records flagged
        """
        ids = [(record_id,) for record_id in record_ids]
        if not ids:
            return 0

        with self._transaction(f"mark_synced {kind.name}") as cursor:
            cursor.executemany(
                f"UPDATE {kind.records_table} SET synced = 1 WHERE id = ?",
                ids,
            )
            flagged = cursor.rowcount
            cursor.executemany(
                f"UPDATE {kind.parcels_table} SET synced = 1 WHERE record_id = ?",
                ids,
            )

        logger.debug(f"Marked {flagged} {kind.name} record(s) synced")
        return flagged

    def load_records(self, kind: RecordKind, record_ids: Iterable[str]) -> List[Record]:
        """
        Load persisted records with their parcels.

        Args:
            kind: Record kind descriptor
            record_ids: Ids to load; unknown ids are ignored

        Returns:
            List of records ordered by id
        """
        ids = sorted(set(record_ids))
        records: Dict[str, Record] = {}

        with self._lock:
            try:
                cursor = self.conn.cursor()
                for batch in _batched(ids, _SELECT_BATCH):
                    placeholders = ", ".join("?" for _ in batch)

                    cursor.execute(f"""
                        SELECT * FROM {kind.records_table}
                        WHERE id IN ({placeholders})
                    """, batch)
                    for row in cursor.fetchall():
                        records[row["id"]] = self._row_to_record(row)

                    cursor.execute(f"""
                        SELECT * FROM {kind.parcels_table}
                        WHERE record_id IN ({placeholders})
                        ORDER BY record_id, parcel_number
                    """, batch)
                    for row in cursor.fetchall():
                        records[row["record_id"]].parcels.append(self._row_to_parcel(row))
            except sqlite3.Error as e:
                logger.error(f"Failed to load {kind.name} records: {e}")
                raise LocalPersistenceError(f"Failed to load {kind.name} records: {e}") from e

        return [records[record_id] for record_id in ids if record_id in records]

    def get_stats(self, kind: RecordKind) -> Dict[str, int]:
        """
        Get record and parcel counts for a kind.

        Returns:
            Dictionary with counts by synced state
        """
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                SELECT COUNT(*) AS total, COALESCE(SUM(synced), 0) AS synced
                FROM {kind.records_table}
            """)
            records_row = cursor.fetchone()
            cursor.execute(f"""
                SELECT COUNT(*) AS total, COALESCE(SUM(synced), 0) AS synced
                FROM {kind.parcels_table}
            """)
            parcels_row = cursor.fetchone()

        return {
            "records_total": records_row["total"],
            "records_synced": records_row["synced"],
            "records_unsynced": records_row["total"] - records_row["synced"],
            "parcels_total": parcels_row["total"],
            "parcels_synced": parcels_row["synced"],
        }

    def _row_to_record(self, row: sqlite3.Row) -> Record:
        """Convert a database row to a Record object (without parcels)."""
        processed_at = row["processed_at"]
        return Record(
            record_id=row["id"],
            date=row["date"],
            total=row["total"],
            child_count=row["child_count"] or 0,
            synced=bool(row["synced"]),
            processed_at=datetime.fromisoformat(processed_at) if processed_at else datetime.now(timezone.utc),
            date_flagged=bool(row["date_flagged"]),
        )

    def _row_to_parcel(self, row: sqlite3.Row) -> Parcel:
        """Convert a database row to a Parcel object."""
        return Parcel(
            parcel_number=row["parcel_number"],
            record_id=row["record_id"],
            status=row["status"],
            city=row["city"],
            amount=row["amount"],
            synced=bool(row["synced"]),
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.debug("Closed SQLite record store connection")
