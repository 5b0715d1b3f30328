"""
Shared test fixtures and configuration for pytest.
"""

import logging
import sys
from pathlib import Path
from typing import List

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from parcelsync.core.models import RawParcel, RawRecord
from parcelsync.remote.memory_store import InMemoryDocumentStore
from parcelsync.state.sqlite_store import SqliteRecordStore


logger = logging.getLogger(__name__)


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Tests that exercise several components together")


# ============================================================================
# Helpers
# ============================================================================

def make_raw_invoice(record_id: str, parcel_count: int = 2, amount: str = "100") -> RawRecord:
    """Build a raw invoice with ``parcel_count`` parcels."""
    return RawRecord(
        record_id=record_id,
        date="05/01/2025",
        total=f"{parcel_count * float(amount):.2f} DH",
        parcels_count=str(parcel_count),
        parcels=[
            RawParcel(
                parcel_number=f"{record_id}-P{i}",
                status="Livré",
                city="Casablanca",
                amount=amount,
            )
            for i in range(parcel_count)
        ],
    )


def make_raw_return_note(record_id: str, parcel_count: int = 1) -> RawRecord:
    """Build a raw return note with ``parcel_count`` parcels."""
    return RawRecord(
        record_id=record_id,
        parcels=[
            RawParcel(parcel_number=f"{record_id}-P{i}", status="Retourné", city="Rabat")
            for i in range(parcel_count)
        ],
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def db_path(tmp_path) -> Path:
    """Path to a fresh SQLite database file."""
    return tmp_path / "state" / "parcel_sync.db"


@pytest.fixture
def record_store(db_path):
    """SQLite record store on a temporary database, closed after the test."""
    store = SqliteRecordStore(db_path)
    yield store
    store.close()


@pytest.fixture
def memory_store() -> InMemoryDocumentStore:
    """In-memory document store with the Firestore write limit."""
    return InMemoryDocumentStore()


@pytest.fixture
def raw_invoices() -> List[RawRecord]:
    """Five raw invoices with two parcels each."""
    return [make_raw_invoice(f"INV-{i:03d}") for i in range(1, 6)]


@pytest.fixture
def raw_return_notes() -> List[RawRecord]:
    """Raw return notes with valid and malformed date tokens."""
    return [
        make_raw_return_note("RN-010125XYZ"),
        make_raw_return_note("RN-300125XYZ", parcel_count=2),
        make_raw_return_note("RN-BAD"),
    ]
