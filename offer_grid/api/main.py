"""
HTTP surface for the offer grid.
Hosts post edit events here; every write goes through the single EditEventProcessor.
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Optional

from .schemas import (
    CellEditRequest,
    RangeEditRequest,
    RecalculateRequest,
    BulkApprovalRequest,
    BundleCorrectionRequest,
    BundleResultResponse,
    BundleErrorResponse,
    BundleErrorListResponse,
    ProcessingResponse,
    RowResponse,
    RowListResponse,
    GroupedItemResponse,
    GroupedItemListResponse,
    NotificationResponse,
    HealthResponse,
)
from ..core import config
from ..core.bundles import group_approved_items
from ..core.db import health_check
from ..core.errors import BundleCorrectionError
from ..core.notifications import RecordingNotifier
from ..core.processor import EditEventProcessor
from ..core.schema import CellEdit, ProcessingResult, RangeEdit
from ..core.store import SqliteTabularStore, get_store
from ..util.logging import logger

# Initialize the FastAPI application
app = FastAPI(
    title="Offer Grid API",
    version=config.VERSION,
    description="Edit-event processing for the offer approval grid",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_processor: Optional[EditEventProcessor] = None


def get_processor() -> EditEventProcessor:
    """Lazily build the process-wide processor over the configured store."""
    global _processor
    if _processor is None:
        issues = config.validate_config()
        for issue in issues:
            logger.warning(f"Configuration issue: {issue}")
        _processor = EditEventProcessor(get_store(), notifier=RecordingNotifier())
    return _processor


def _to_response(result: ProcessingResult) -> ProcessingResponse:
    return ProcessingResponse(
        outcome=result.outcome,
        success=result.success,
        rows_written=result.rows_written,
        transitions=result.transitions,
        bundle_results=[BundleResultResponse.model_validate(r) for r in result.bundle_results],
        advisories=result.advisories,
        error_message=result.error_message,
        details=result.details,
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(processor: EditEventProcessor = Depends(get_processor)):
    """Check system health."""
    if isinstance(processor.store, SqliteTabularStore):
        backend = "sqlite"
        store_health = health_check(processor.store.db_path)
    else:
        backend = "memory"
        store_health = True

    issues = config.validate_config()
    return HealthResponse(
        status="healthy" if store_health and not issues else "degraded",
        version=config.VERSION,
        store_backend=backend,
        store_health=store_health,
        config_issues=issues,
        lock_held=processor.lock.is_locked(),
    )


@app.get("/rows", response_model=RowListResponse)
def list_rows_endpoint(processor: EditEventProcessor = Depends(get_processor)):
    """Every data row as field name -> raw value."""
    rows = processor.read_rows()
    return RowListResponse(rows=[
        RowResponse(row_number=row.row_number, values={k: v for k, v in row.to_dict().items() if k != "row_number"})
        for row in rows
    ])


@app.get("/rows/approved", response_model=GroupedItemListResponse)
def approved_items_endpoint(processor: EditEventProcessor = Depends(get_processor)):
    """Approved rows, with fully approved bundles consolidated."""
    items = group_approved_items(processor.read_rows())
    return GroupedItemListResponse(items=[GroupedItemResponse.model_validate(item) for item in items])


@app.post("/edits/cell", response_model=ProcessingResponse)
def cell_edit_endpoint(request: CellEditRequest, processor: EditEventProcessor = Depends(get_processor)):
    """Process a single-cell edit that the host has already committed."""
    event = CellEdit(row=request.row, col=request.col, new_value=request.new_value, old_value=request.old_value)
    return _to_response(processor.handle_edit(event, user=request.user))


@app.post("/edits/range", response_model=ProcessingResponse)
def range_edit_endpoint(request: RangeEditRequest, processor: EditEventProcessor = Depends(get_processor)):
    """Process a multi-cell edit or paste that the host has already committed."""
    event = RangeEdit(row_start=request.row_start, row_end=request.row_end,
                      col_start=request.col_start, col_end=request.col_end)
    if request.before_values is not None and len(request.before_values) != request.row_end - request.row_start + 1:
        raise HTTPException(status_code=400, detail="before_values must have one row per edited row")
    return _to_response(processor.handle_edit(event, before_values=request.before_values, user=request.user))


@app.post("/recalculate", response_model=ProcessingResponse)
def recalculate_endpoint(request: RecalculateRequest = None, processor: EditEventProcessor = Depends(get_processor)):
    """Run a full recalculation pass."""
    refresh = request.refresh_metadata if request else False
    return _to_response(processor.recalculate_all(refresh_metadata=refresh))


@app.post("/repair", response_model=ProcessingResponse)
def repair_endpoint(processor: EditEventProcessor = Depends(get_processor)):
    """Health check, recalculation and metadata rebuild."""
    return _to_response(processor.repair())


@app.post("/approvals/bulk", response_model=ProcessingResponse)
def bulk_approval_endpoint(request: BulkApprovalRequest = None, processor: EditEventProcessor = Depends(get_processor)):
    """Approve every Pending and Revised by AE row."""
    approver = request.approver if request else None
    return _to_response(processor.approve_all_pending(approver))


# Define /bundles/errors BEFORE /bundles/{bundle_id} to avoid path parameter conflict
@app.get("/bundles/errors", response_model=BundleErrorListResponse)
def bundle_errors_endpoint(processor: EditEventProcessor = Depends(get_processor)):
    """Every bundle violation found by one scan of the data region."""
    errors = processor.validator.find_all_bundle_errors()
    return BundleErrorListResponse(errors=[BundleErrorResponse.model_validate(e) for e in errors])


@app.get("/bundles/{bundle_id}", response_model=BundleResultResponse)
def bundle_status_endpoint(bundle_id: str, processor: EditEventProcessor = Depends(get_processor)):
    """Validate one bundle."""
    if processor.validator.find_bundle_range(bundle_id) is None:
        raise HTTPException(status_code=404, detail="Bundle not found")
    return BundleResultResponse.model_validate(processor.validate_bundle(bundle_id))


@app.post("/bundles/{bundle_id}/correction", response_model=ProcessingResponse)
def bundle_correction_endpoint(bundle_id: str, request: BundleCorrectionRequest,
                               processor: EditEventProcessor = Depends(get_processor)):
    """Apply a quantity/term correction to every bundle member."""
    try:
        result = processor.apply_bundle_correction(bundle_id, term=request.term, quantity=request.quantity)
    except BundleCorrectionError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _to_response(result)


@app.post("/bundles/{bundle_id}/fix-gaps", response_model=ProcessingResponse)
def bundle_fix_gaps_endpoint(bundle_id: str, processor: EditEventProcessor = Depends(get_processor)):
    """Move split bundle members back together under the first member."""
    try:
        result = processor.fix_bundle_gaps(bundle_id)
    except BundleCorrectionError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _to_response(result)


@app.post("/bundles/{bundle_id}/dissolve", response_model=ProcessingResponse)
def bundle_dissolve_endpoint(bundle_id: str, processor: EditEventProcessor = Depends(get_processor)):
    """Clear the bundle id from every member."""
    try:
        result = processor.dissolve_bundle(bundle_id)
    except BundleCorrectionError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _to_response(result)


@app.get("/notifications", response_model=List[NotificationResponse])
def notifications_endpoint(processor: EditEventProcessor = Depends(get_processor)):
    """Drain advisories and correction prompts raised since the last call."""
    if not isinstance(processor.notifier, RecordingNotifier):
        return []
    return [
        NotificationResponse(kind=n.kind, message=n.message, title=n.title, details=n.details)
        for n in processor.notifier.drain()
    ]


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if config.debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)
