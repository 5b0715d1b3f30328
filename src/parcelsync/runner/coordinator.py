"""
Reconciliation coordinator.

Orchestrates one sync run per record kind:

    START -> SYNCED_IDS_FETCHED -> CANDIDATES_FILTERED -> LOCALLY_PERSISTED
          -> REMOTELY_COMMITTED (per chunk) -> FLAGGED_SYNCED (per chunk) -> DONE

A record is flagged synced only after the remote chunk holding it (and its
parcels) has been confirmed. Chunks that fail stay unsynced and are picked
up again on the next run, so completed work is never redone and pending
work is never lost.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from ..core.candidate_source import CandidateSource
from ..core.exceptions import ExtractionError, LocalPersistenceError
from ..core.kind import RecordKind
from ..core.logging import CorrelationContext
from ..core.models import (
    KindSyncReport, RawRecord, Record, RunReport, SyncStage, SyncStatus,
)
from ..core.record_store import RecordStore
from ..kinds import get_kind
from ..remote.sync_client import RemoteSyncClient


logger = logging.getLogger(__name__)


class ReconciliationCoordinator:
    """
    Main orchestrator for the sync pipeline.

    Manages the workflow for each record kind:
    1. Read which ids are already synced
    2. Collect candidates from the kind's candidate source, excluding synced ids
    3. Persist candidates locally in one transaction
    4. Commit candidates (plus unsynced backlog) remotely in chunks
    5. Flag each confirmed chunk synced

    The record store is opened at the start of a run and closed on every
    exit path.
    """

    def __init__(
        self,
        store_factory: Callable[[], RecordStore],
        sync_client: RemoteSyncClient,
        sources: Dict[str, CandidateSource],
        kinds: Optional[List[RecordKind]] = None,
        retry_backlog: bool = True,
    ):
        """
        Initialize the coordinator.

        Args:
            store_factory: Opens the local record store for one run
            sync_client: Remote sync client
            sources: Candidate sources by kind name
            kinds: Kinds to reconcile, in order (default: one per source)
            retry_backlog: Re-commit records persisted earlier but still
                unsynced, even when the source does not supply them again
        """
        self.store_factory = store_factory
        self.sync_client = sync_client
        self.sources = sources
        self.kinds = kinds if kinds is not None else [get_kind(name) for name in sources]
        self.retry_backlog = retry_backlog

    def run(self, run_id: Optional[str] = None) -> RunReport:
        """
        Run reconciliation for every configured kind.

        A failure in one kind never stops the others.

        Args:
            run_id: Optional run identifier

        Returns:
            RunReport with one KindSyncReport per kind
        """
        report = RunReport(run_id=run_id or str(uuid.uuid4()))

        with CorrelationContext(run_id=report.run_id):
            logger.info(f"Starting sync run: {report.run_id}")
            logger.info(f"Kinds: {', '.join(k.name for k in self.kinds)}")

            try:
                with self.store_factory() as store:
                    store.initialize()
                    for kind in self.kinds:
                        with CorrelationContext(record_kind=kind.name):
                            report.kinds[kind.name] = self.run_kind(store, kind)
            except LocalPersistenceError as e:
                logger.error(f"Record store unavailable: {e}")
                for kind in self.kinds:
                    if kind.name not in report.kinds:
                        kind_report = KindSyncReport(kind=kind.name)
                        report.kinds[kind.name] = self._fail(kind_report, f"Record store unavailable: {e}")

            report.completed_at = datetime.now(timezone.utc)
            logger.info(f"Run complete: {report.run_id} (success={report.success})")

        return report

    def run_kind(self, store: RecordStore, kind: RecordKind) -> KindSyncReport:
        """
        Run reconciliation for one kind against an open store.

        Args:
            store: Open record store, owned by the caller
            kind: Record kind descriptor

        Returns:
            KindSyncReport for this kind
        """
        report = KindSyncReport(kind=kind.name)
        source = self.sources.get(kind.name)
        if source is None:
            return self._fail(report, f"No candidate source configured for {kind.name}")

        # SYNCED_IDS_FETCHED
        try:
            synced_ids = store.get_synced_ids(kind)
            unsynced_ids = store.get_unsynced_ids(kind)
        except LocalPersistenceError as e:
            return self._fail(report, str(e))
        report.synced_before = len(synced_ids)
        report.unsynced_before = len(unsynced_ids)
        report.stage = SyncStage.SYNCED_IDS_FETCHED
        logger.info(
            f"{kind.name}: {len(synced_ids)} synced, {len(unsynced_ids)} pending from earlier runs"
        )

        # CANDIDATES_FILTERED
        try:
            raw_records = source.fetch_candidates(set(synced_ids))
        except Exception as e:
            logger.exception(f"Candidate source {source.get_name()} failed: {e}")
            return self._fail(report, f"Candidate source {source.get_name()} failed: {e}")

        candidates = self._filter_candidates(kind, raw_records, synced_ids, report)
        report.stage = SyncStage.CANDIDATES_FILTERED

        # LOCALLY_PERSISTED
        try:
            report.persisted = store.upsert(kind, candidates)
        except LocalPersistenceError as e:
            return self._fail(report, str(e), store, kind)
        report.stage = SyncStage.LOCALLY_PERSISTED

        to_commit = list(candidates)
        if self.retry_backlog:
            to_commit.extend(self._load_backlog(store, kind, unsynced_ids, candidates, report))

        # REMOTELY_COMMITTED / FLAGGED_SYNCED, chunk by chunk
        flag_error = self._commit_and_flag(store, kind, to_commit, report)
        if flag_error:
            return self._fail(report, flag_error, store, kind)

        return self._finish(report, store, kind)

    def _filter_candidates(
        self,
        kind: RecordKind,
        raw_records: List[RawRecord],
        synced_ids: Set[str],
        report: KindSyncReport,
    ) -> List[Record]:
        """Normalize raw records, dropping synced, unusable and empty ones."""
        report.candidates = len(raw_records)
        candidates: Dict[str, Record] = {}

        for raw in raw_records:
            try:
                record = kind.to_record(raw)
            except (ExtractionError, TypeError, ValueError) as e:
                report.extraction_errors += 1
                logger.warning(f"Skipping {kind.name} {raw.record_id!r}: {e}")
                continue

            # Compare normalized ids; the collaborator may pad them.
            if record.record_id in synced_ids:
                logger.debug(f"Skipping already synced {kind.name}: {record.record_id}")
                continue

            if not record.parcels:
                report.skipped_empty += 1
                logger.info(f"Skipping {kind.name} {record.record_id}: no parcels")
                continue

            if record.date_flagged:
                report.flagged_dates.append(record.record_id)

            candidates[record.record_id] = record

        logger.info(
            f"{kind.name}: {len(candidates)} candidate(s) to persist "
            f"({report.skipped_empty} empty, {report.extraction_errors} unusable)"
        )
        return list(candidates.values())

    def _load_backlog(
        self,
        store: RecordStore,
        kind: RecordKind,
        unsynced_ids: Set[str],
        candidates: List[Record],
        report: KindSyncReport,
    ) -> List[Record]:
        """Load records persisted by earlier runs that never got flagged synced."""
        backlog_ids = unsynced_ids - {record.record_id for record in candidates}
        if not backlog_ids:
            return []

        try:
            backlog = store.load_records(kind, backlog_ids)
        except LocalPersistenceError as e:
            logger.warning(f"Could not load {kind.name} backlog, leaving it for the next run: {e}")
            return []

        report.backlog = len(backlog)
        logger.info(f"{kind.name}: re-committing {len(backlog)} unsynced record(s) from earlier runs")
        return backlog

    def _commit_and_flag(
        self,
        store: RecordStore,
        kind: RecordKind,
        records: List[Record],
        report: KindSyncReport,
    ) -> Optional[str]:
        """
        Commit records chunk by chunk and flag each confirmed chunk.

        Returns:
            Error message if flagging failed, None otherwise
        """
        commits = self.sync_client.iter_commit_batch(
            kind.collection, records, kind.to_document, kind.child_collection,
        )
        try:
            for result in commits:
                if not result.success:
                    preview = ", ".join(result.record_ids[:5])
                    if len(result.record_ids) > 5:
                        preview += ", ..."
                    report.failed_chunks.append(
                        f"chunk {result.index} ({len(result.record_ids)} record(s): {preview}): {result.error}"
                    )
                    continue

                report.committed += len(result.record_ids)
                report.chunks_committed += 1
                report.stage = SyncStage.REMOTELY_COMMITTED

                try:
                    report.flagged_synced += store.mark_synced(kind, result.record_ids)
                except LocalPersistenceError as e:
                    logger.error(f"Chunk {result.index} committed but could not be flagged synced: {e}")
                    return str(e)
                report.stage = SyncStage.FLAGGED_SYNCED
        finally:
            commits.close()
        return None

    def _finish(self, report: KindSyncReport, store: RecordStore, kind: RecordKind) -> KindSyncReport:
        """Close out a kind that ran to completion."""
        report.still_unsynced = self._count_unsynced(store, kind)
        report.stage = SyncStage.DONE
        if not report.failed_chunks:
            report.status = SyncStatus.SUCCESS
        elif report.chunks_committed:
            report.status = SyncStatus.PARTIAL
        else:
            report.status = SyncStatus.FAILED
        report.completed_at = datetime.now(timezone.utc)

        logger.info(
            f"{kind.name}: {report.status.value} - persisted {report.persisted}, "
            f"committed {report.committed}, still unsynced {report.still_unsynced}"
        )
        return report

    def _fail(
        self,
        report: KindSyncReport,
        message: str,
        store: Optional[RecordStore] = None,
        kind: Optional[RecordKind] = None,
    ) -> KindSyncReport:
        """Close out a kind that stopped early."""
        report.status = SyncStatus.FAILED
        report.error = message
        if store is not None and kind is not None:
            report.still_unsynced = self._count_unsynced(store, kind)
        report.completed_at = datetime.now(timezone.utc)
        logger.error(f"{report.kind}: failed at stage {report.stage.value}: {message}")
        return report

    def _count_unsynced(self, store: RecordStore, kind: RecordKind) -> int:
        try:
            return len(store.get_unsynced_ids(kind))
        except LocalPersistenceError as e:
            logger.warning(f"Could not count unsynced {kind.name} records: {e}")
            return 0
