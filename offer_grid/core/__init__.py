"""
Edit-processing core: calculations, status engine, bundle integrity and the orchestrator.
"""

from .schema import (
    Status,
    ApproverAction,
    OfferRow,
    StatusChange,
    CellEdit,
    RangeEdit,
    ProcessingResult,
    BundleValidationResult,
    BundleError,
)
from .store import TabularStore, InMemoryTabularStore, SqliteTabularStore
from .processor import EditEventProcessor
