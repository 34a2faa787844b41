"""
Shared fixtures: an in-memory grid whose data region starts at row 2.
"""

from datetime import datetime

import pytest

from offer_grid.core.config import resolve_columns
from offer_grid.core.locking import ProcessLock
from offer_grid.core.notifications import ActivityLog, RecordingNotifier
from offer_grid.core.processor import EditEventProcessor
from offer_grid.core.schema import OfferRow
from offer_grid.core.settings_cache import ConfigurationCache
from offer_grid.core.store import InMemoryTabularStore

DATA_START_ROW = 2
FIXED_NOW = datetime(2024, 3, 1, 9, 30, 0)

COMPLETE_ROW = {
    "sku": "SKU-1",
    "model": "Laptop Pro 14",
    "sourcing_cost": 1000,
    "ask_price": 100,
    "quantity": 10,
    "term": 12,
}


@pytest.fixture
def columns():
    """Default column layout (A..U)."""
    return resolve_columns()


@pytest.fixture
def store():
    """Fresh in-memory store for each test."""
    return InMemoryTabularStore()


@pytest.fixture
def write_row(store, columns):
    """Write an OfferRow built from keyword fields; returns the row."""
    def _write(row_number, **fields):
        row = OfferRow(row_number=row_number, **fields)
        store.write_range(row_number, 1, [row.to_values(columns)])
        return row
    return _write


@pytest.fixture
def read_row(store, columns):
    """Read one row back as an OfferRow."""
    def _read(row_number):
        values = store.read_range(row_number, 1, 1, columns.width)[0]
        return OfferRow.from_values(row_number, values, columns)
    return _read


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def lock():
    """A private lock so tests never contend with each other."""
    return ProcessLock()


@pytest.fixture
def processor(store, columns, lock, notifier):
    """Processor wired to the in-memory store with a short lock wait."""
    return EditEventProcessor(
        store,
        columns=columns,
        lock=lock,
        settings=ConfigurationCache(store, ttl_sec=0),
        notifier=notifier,
        activity=ActivityLog(),
        data_start_row=DATA_START_ROW,
        lock_timeout_ms=50,
        enforce_bundle_integrity=True,
        clock=lambda: FIXED_NOW,
    )
