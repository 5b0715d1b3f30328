"""
Unit tests for the reconciliation coordinator.

Runs the coordinator against a real SQLite store on a temporary path,
the in-memory document store and synthetic candidate sources.
"""

from functools import partial

from parcelsync.core.exceptions import LocalPersistenceError
from parcelsync.core.models import RawParcel, RawRecord, SyncStage, SyncStatus
from parcelsync.kinds import INVOICE, RETURN_NOTE
from parcelsync.remote.memory_store import InMemoryDocumentStore
from parcelsync.remote.sync_client import RemoteSyncClient
from parcelsync.runner.coordinator import ReconciliationCoordinator
from parcelsync.sources.synthetic_source import SyntheticSource
from parcelsync.state.sqlite_store import SqliteRecordStore
from parcelsync.utils.retry import RetryConfig


FAST_RETRY = RetryConfig(max_attempts=2, initial_delay_ms=1.0, max_delay_ms=1.0, jitter=False)


def make_raw_invoice(record_id, parcel_count=2):
    return RawRecord(
        record_id=record_id,
        date="05/01/2025",
        total=f"{parcel_count * 100}.00 DH",
        parcels=[
            RawParcel(parcel_number=f"{record_id}-P{i}", status="Livré", city="Rabat", amount="100")
            for i in range(parcel_count)
        ],
    )


def build_coordinator(db_path, document_store, sources, chunk_size=None, store_cls=SqliteRecordStore, **kwargs):
    client = RemoteSyncClient(document_store, max_records_per_chunk=chunk_size, retry_config=FAST_RETRY)
    return ReconciliationCoordinator(
        store_factory=partial(store_cls, db_path),
        sync_client=client,
        sources=sources,
        **kwargs,
    )


def local_state(db_path, kind):
    with SqliteRecordStore(db_path) as store:
        return store.get_synced_ids(kind), store.get_unsynced_ids(kind)


class TestEndToEnd:
    """Tests for a full run over both kinds."""

    def test_first_run_syncs_everything(self, db_path, memory_store):
        sources = {
            "invoice": SyntheticSource("invoice"),
            "return_note": SyntheticSource("return_note"),
        }
        coordinator = build_coordinator(db_path, memory_store, sources)

        report = coordinator.run(run_id="run-1")

        assert report.run_id == "run-1"
        assert report.success is True
        assert report.completed_at is not None

        invoices = report.kinds["invoice"]
        assert invoices.status == SyncStatus.SUCCESS
        assert invoices.stage == SyncStage.DONE
        assert invoices.candidates == 3
        assert invoices.skipped_empty == 1
        assert invoices.persisted == 2
        assert invoices.committed == 2
        assert invoices.flagged_synced == 2
        assert invoices.still_unsynced == 0

        assert memory_store.list_documents("invoices") == ["INV-1001", "INV-1002"]
        assert memory_store.list_documents("returnNotes") == ["RN-010125A7", "RN-300125B2", "RN-XYZ"]
        assert local_state(db_path, INVOICE) == ({"INV-1001", "INV-1002"}, set())

    def test_second_run_excludes_synced(self, db_path, memory_store):
        """Test synced ids are passed to the source and nothing is redone."""
        source = SyntheticSource("invoice")
        coordinator = build_coordinator(db_path, memory_store, {"invoice": source})

        coordinator.run()
        commits_after_first = len(memory_store.commit_history)
        report = coordinator.run()

        assert source.exclude_history[0] == set()
        assert source.exclude_history[1] == {"INV-1001", "INV-1002"}
        kind_report = report.kinds["invoice"]
        assert kind_report.synced_before == 2
        assert kind_report.persisted == 0
        assert kind_report.committed == 0
        assert kind_report.status == SyncStatus.SUCCESS
        assert len(memory_store.commit_history) == commits_after_first

    def test_report_serializes(self, db_path, memory_store):
        coordinator = build_coordinator(db_path, memory_store, {"invoice": SyntheticSource("invoice")})

        report = coordinator.run()

        data = report.to_dict()
        assert data["success"] is True
        assert data["kinds"]["invoice"]["status"] == "success"
        assert "invoice: SUCCESS" in report.summary()


class TestChunkFailures:
    """Tests for partial remote failures."""

    def test_failed_chunk_stays_unsynced(self, db_path):
        """Test chunk A committed and flagged while chunk B stays pending."""
        store = InMemoryDocumentStore(fail_doc_ids={"INV-003"})
        records = [make_raw_invoice(f"INV-{i:03d}") for i in range(1, 5)]
        coordinator = build_coordinator(
            db_path, store, {"invoice": SyntheticSource(records=records)}, chunk_size=2,
        )

        report = coordinator.run()

        kind_report = report.kinds["invoice"]
        assert kind_report.status == SyncStatus.PARTIAL
        assert kind_report.persisted == 4
        assert kind_report.committed == 2
        assert kind_report.chunks_committed == 1
        assert len(kind_report.failed_chunks) == 1
        assert kind_report.still_unsynced == 2
        assert report.success is False

        synced, unsynced = local_state(db_path, INVOICE)
        assert synced == {"INV-001", "INV-002"}
        assert unsynced == {"INV-003", "INV-004"}
        assert store.get_document("invoices", "INV-004") is None

    def test_backlog_recommitted_next_run(self, db_path):
        """Test pending records are committed next run without being re-supplied."""
        records = [make_raw_invoice(f"INV-{i:03d}") for i in range(1, 5)]
        failing = InMemoryDocumentStore(fail_doc_ids={"INV-003"})
        build_coordinator(
            db_path, failing, {"invoice": SyntheticSource(records=records)}, chunk_size=2,
        ).run()

        healthy = InMemoryDocumentStore()
        report = build_coordinator(
            db_path, healthy, {"invoice": SyntheticSource(records=[])}, chunk_size=2,
        ).run()

        kind_report = report.kinds["invoice"]
        assert kind_report.unsynced_before == 2
        assert kind_report.backlog == 2
        assert kind_report.committed == 2
        assert kind_report.status == SyncStatus.SUCCESS
        assert healthy.list_documents("invoices") == ["INV-003", "INV-004"]
        assert len(healthy.list_documents("invoices")) == 2
        assert local_state(db_path, INVOICE) == ({"INV-001", "INV-002", "INV-003", "INV-004"}, set())

    def test_backlog_disabled(self, db_path):
        records = [make_raw_invoice("INV-001")]
        build_coordinator(
            db_path, InMemoryDocumentStore(fail_doc_ids={"INV-001"}),
            {"invoice": SyntheticSource(records=records)},
        ).run()

        healthy = InMemoryDocumentStore()
        report = build_coordinator(
            db_path, healthy, {"invoice": SyntheticSource(records=[])}, retry_backlog=False,
        ).run()

        assert report.kinds["invoice"].backlog == 0
        assert healthy.commit_history == []
        assert local_state(db_path, INVOICE) == (set(), {"INV-001"})

    def test_recollected_record_with_fewer_parcels(self, db_path):
        """Test parcels dropped between runs are neither kept nor flagged synced."""
        build_coordinator(
            db_path, InMemoryDocumentStore(fail_doc_ids={"INV-001"}),
            {"invoice": SyntheticSource(records=[make_raw_invoice("INV-001", parcel_count=2)])},
        ).run()

        healthy = InMemoryDocumentStore()
        report = build_coordinator(
            db_path, healthy,
            {"invoice": SyntheticSource(records=[make_raw_invoice("INV-001", parcel_count=1)])},
        ).run()

        assert report.kinds["invoice"].status == SyncStatus.SUCCESS
        assert healthy.get_document("invoices", "INV-001", "parcels", "INV-001-P1") is None
        with SqliteRecordStore(db_path) as store:
            [record] = store.load_records(INVOICE, ["INV-001"])
            assert store.get_stats(INVOICE)["parcels_total"] == 1
        assert [(p.parcel_number, p.synced) for p in record.parcels] == [("INV-001-P0", True)]
        assert healthy.get_document("invoices", "INV-001", "parcels", "INV-001-P0") is not None

    def test_all_chunks_failed(self, db_path):
        store = InMemoryDocumentStore(fail_doc_ids={"INV-001"})
        coordinator = build_coordinator(
            db_path, store, {"invoice": SyntheticSource(records=[make_raw_invoice("INV-001")])},
        )

        report = coordinator.run()

        assert report.kinds["invoice"].status == SyncStatus.FAILED
        assert report.kinds["invoice"].persisted == 1
        assert local_state(db_path, INVOICE) == (set(), {"INV-001"})


class TestCandidateFiltering:
    """Tests for candidate normalization and filtering."""

    def test_record_without_parcels_is_noop(self, db_path, memory_store):
        empty = RawRecord(record_id="INV-EMPTY", total="10", parcels=[])
        coordinator = build_coordinator(db_path, memory_store, {"invoice": SyntheticSource(records=[empty])})

        report = coordinator.run()

        kind_report = report.kinds["invoice"]
        assert kind_report.skipped_empty == 1
        assert kind_report.persisted == 0
        assert kind_report.status == SyncStatus.SUCCESS
        assert local_state(db_path, INVOICE) == (set(), set())
        assert memory_store.commit_history == []

    def test_extraction_error_skips_record(self, db_path, memory_store):
        broken = RawRecord(record_id="INV-BROKEN", parcels=[RawParcel(parcel_number=None)])
        records = [make_raw_invoice("INV-001"), broken, make_raw_invoice("INV-002")]
        coordinator = build_coordinator(db_path, memory_store, {"invoice": SyntheticSource(records=records)})

        report = coordinator.run()

        kind_report = report.kinds["invoice"]
        assert kind_report.extraction_errors == 1
        assert kind_report.persisted == 2
        assert kind_report.status == SyncStatus.SUCCESS
        assert memory_store.list_documents("invoices") == ["INV-001", "INV-002"]

    def test_source_side_extraction_failure(self, db_path, memory_store):
        source = SyntheticSource("invoice", error_ids=["INV-1001"])
        coordinator = build_coordinator(db_path, memory_store, {"invoice": source})

        report = coordinator.run()

        assert report.kinds["invoice"].persisted == 1
        assert memory_store.list_documents("invoices") == ["INV-1002"]

    def test_synced_ids_resupplied_are_skipped(self, db_path, memory_store):
        """Test a source ignoring the exclude set cannot reset synced records."""
        records = [make_raw_invoice("INV-001")]
        build_coordinator(db_path, memory_store, {"invoice": SyntheticSource(records=records)}).run()

        class IgnoringSource(SyntheticSource):
            def fetch_candidates(self, exclude_ids):
                return super().fetch_candidates(set())

        report = build_coordinator(
            db_path, memory_store, {"invoice": IgnoringSource(records=records)},
        ).run()

        assert report.kinds["invoice"].persisted == 0
        assert local_state(db_path, INVOICE) == ({"INV-001"}, set())

    def test_padded_synced_id_is_skipped(self, db_path, memory_store):
        """Test synced ids are matched after the collected id is normalized."""
        build_coordinator(
            db_path, memory_store, {"invoice": SyntheticSource(records=[make_raw_invoice("INV-001")])},
        ).run()

        padded = make_raw_invoice("INV-001")
        padded.record_id = " INV-001 "
        report = build_coordinator(
            db_path, memory_store, {"invoice": SyntheticSource(records=[padded])},
        ).run()

        assert report.kinds["invoice"].persisted == 0
        assert local_state(db_path, INVOICE) == ({"INV-001"}, set())

    def test_duplicate_candidates_collapsed(self, db_path, memory_store):
        records = [make_raw_invoice("INV-001"), make_raw_invoice("INV-001", parcel_count=3)]
        coordinator = build_coordinator(db_path, memory_store, {"invoice": SyntheticSource(records=records)})

        report = coordinator.run()

        assert report.kinds["invoice"].persisted == 1
        assert memory_store.get_document("invoices", "INV-001")["parcelsCount"] == 3

    def test_malformed_return_note_date_flagged(self, db_path, memory_store, raw_return_notes):
        coordinator = build_coordinator(
            db_path, memory_store, {"return_note": SyntheticSource("return_note", records=raw_return_notes)},
        )

        report = coordinator.run()

        kind_report = report.kinds["return_note"]
        assert kind_report.status == SyncStatus.SUCCESS
        assert kind_report.flagged_dates == ["RN-BAD"]
        assert memory_store.get_document("returnNotes", "RN-BAD")["date"] == "Unknown"
        assert memory_store.get_document("returnNotes", "RN-BAD")["dateFlagged"] is True
        assert memory_store.get_document("returnNotes", "RN-010125XYZ")["date"] == "04-01-2025"

        with SqliteRecordStore(db_path) as store:
            [bad] = store.load_records(RETURN_NOTE, ["RN-BAD"])
        assert bad.date is None
        assert bad.date_flagged is True

    def test_non_ascii_digit_token_flagged(self, db_path, memory_store):
        raw = RawRecord(
            record_id="RN-²10125XYZ",
            parcels=[RawParcel(parcel_number="P-1", status="Retourné", city="Rabat")],
        )
        coordinator = build_coordinator(
            db_path, memory_store, {"return_note": SyntheticSource("return_note", records=[raw])},
        )

        report = coordinator.run()

        kind_report = report.kinds["return_note"]
        assert kind_report.persisted == 1
        assert kind_report.extraction_errors == 0
        assert kind_report.flagged_dates == ["RN-²10125XYZ"]


class FailingUpsertStore(SqliteRecordStore):
    """Record store whose invoice upserts always fail."""

    def upsert(self, kind, records):
        if kind.name == "invoice":
            raise LocalPersistenceError("disk full")
        return super().upsert(kind, records)


class FailingMarkStore(SqliteRecordStore):
    """Record store that cannot flag records synced."""

    def mark_synced(self, kind, record_ids):
        raise LocalPersistenceError("database is locked")


class TestLocalFailures:
    """Tests for local persistence failures."""

    def test_persistence_failure_is_per_kind(self, db_path, memory_store):
        sources = {
            "invoice": SyntheticSource("invoice"),
            "return_note": SyntheticSource("return_note"),
        }
        coordinator = build_coordinator(db_path, memory_store, sources, store_cls=FailingUpsertStore)

        report = coordinator.run()

        invoices = report.kinds["invoice"]
        assert invoices.status == SyncStatus.FAILED
        assert invoices.stage == SyncStage.CANDIDATES_FILTERED
        assert "disk full" in invoices.error
        assert report.kinds["return_note"].status == SyncStatus.SUCCESS
        assert memory_store.list_documents("invoices") == []
        assert len(memory_store.list_documents("returnNotes")) == 3

    def test_flag_failure_leaves_records_pending(self, db_path, memory_store):
        coordinator = build_coordinator(
            db_path, memory_store, {"invoice": SyntheticSource("invoice")}, store_cls=FailingMarkStore,
        )

        report = coordinator.run()

        kind_report = report.kinds["invoice"]
        assert kind_report.status == SyncStatus.FAILED
        assert kind_report.stage == SyncStage.REMOTELY_COMMITTED
        assert kind_report.still_unsynced == 2
        assert local_state(db_path, INVOICE) == (set(), {"INV-1001", "INV-1002"})

    def test_store_unavailable_fails_every_kind(self, memory_store):
        def broken_factory():
            raise LocalPersistenceError("cannot open")

        coordinator = ReconciliationCoordinator(
            store_factory=broken_factory,
            sync_client=RemoteSyncClient(memory_store),
            sources={"invoice": SyntheticSource("invoice"), "return_note": SyntheticSource("return_note")},
        )

        report = coordinator.run()

        assert set(report.kinds) == {"invoice", "return_note"}
        assert all(r.status == SyncStatus.FAILED for r in report.kinds.values())
        assert memory_store.commit_history == []

    def test_store_closed_after_run(self, db_path, memory_store):
        opened = []

        def factory():
            store = SqliteRecordStore(db_path)
            opened.append(store)
            return store

        coordinator = ReconciliationCoordinator(
            store_factory=factory,
            sync_client=RemoteSyncClient(memory_store),
            sources={"invoice": SyntheticSource("invoice")},
        )

        coordinator.run()

        assert len(opened) == 1
        assert opened[0].conn is None


class TestCollaboratorFailures:
    """Tests for candidate source failures and configuration gaps."""

    def test_source_failure_is_per_kind(self, db_path, memory_store):
        class BrokenSource(SyntheticSource):
            def fetch_candidates(self, exclude_ids):
                raise RuntimeError("session expired")

        sources = {"invoice": BrokenSource(), "return_note": SyntheticSource("return_note")}
        coordinator = build_coordinator(db_path, memory_store, sources)

        report = coordinator.run()

        assert report.kinds["invoice"].status == SyncStatus.FAILED
        assert report.kinds["invoice"].stage == SyncStage.SYNCED_IDS_FETCHED
        assert "session expired" in report.kinds["invoice"].error
        assert report.kinds["return_note"].status == SyncStatus.SUCCESS

    def test_missing_source(self, db_path, memory_store):
        coordinator = build_coordinator(
            db_path, memory_store, {"invoice": SyntheticSource("invoice")}, kinds=[INVOICE, RETURN_NOTE],
        )

        report = coordinator.run()

        assert report.kinds["invoice"].status == SyncStatus.SUCCESS
        assert report.kinds["return_note"].status == SyncStatus.FAILED

    def test_kind_order_follows_sources(self, db_path, memory_store):
        sources = {
            "return_note": SyntheticSource("return_note"),
            "invoice": SyntheticSource("invoice"),
        }
        coordinator = build_coordinator(db_path, memory_store, sources)

        assert [k.name for k in coordinator.kinds] == ["return_note", "invoice"]
