"""
Request and response models for the edit-event HTTP surface.
"""

from pydantic import BaseModel, field_validator, ConfigDict
from typing import Optional, List, Dict, Any


class CellEditRequest(BaseModel):
    row: int
    col: int
    new_value: Any = None
    old_value: Any = None
    user: Optional[str] = None

    @field_validator('row', 'col')
    @classmethod
    def must_be_positive(cls, v):
        if v < 1:
            raise ValueError('row and col are 1-based')
        return v


class RangeEditRequest(BaseModel):
    row_start: int
    row_end: int
    col_start: int
    col_end: int
    before_values: Optional[List[List[Any]]] = None
    user: Optional[str] = None

    @field_validator('row_start', 'col_start')
    @classmethod
    def start_must_be_positive(cls, v):
        if v < 1:
            raise ValueError('row and col are 1-based')
        return v

    @field_validator('row_end')
    @classmethod
    def row_end_after_start(cls, v, info):
        start = info.data.get('row_start')
        if start is not None and v < start:
            raise ValueError('row_end must be >= row_start')
        return v

    @field_validator('col_end')
    @classmethod
    def col_end_after_start(cls, v, info):
        start = info.data.get('col_start')
        if start is not None and v < start:
            raise ValueError('col_end must be >= col_start')
        return v


class RecalculateRequest(BaseModel):
    refresh_metadata: bool = False


class BulkApprovalRequest(BaseModel):
    approver: Optional[str] = None


class BundleCorrectionRequest(BaseModel):
    term: Any
    quantity: Any

    @field_validator('term', 'quantity')
    @classmethod
    def must_not_be_empty(cls, v):
        if v is None or str(v).strip() == '':
            raise ValueError('term and quantity are required')
        return v


class BundleResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    valid: bool
    bundle_id: str = ""
    code: Optional[str] = None
    message: str = ""
    start_row: Optional[int] = None
    end_row: Optional[int] = None
    expected: Optional[Dict[str, str]] = None
    members: List[int] = []
    resolved_by: str = "scan"


class BundleErrorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    bundle_id: str
    code: str
    message: str
    rows: List[int] = []
    expected: Optional[Dict[str, str]] = None


class BundleErrorListResponse(BaseModel):
    errors: List[BundleErrorResponse]


class ProcessingResponse(BaseModel):
    outcome: str
    success: bool
    rows_written: List[int] = []
    transitions: List[Dict[str, Any]] = []
    bundle_results: List[BundleResultResponse] = []
    advisories: List[str] = []
    error_message: Optional[str] = None
    details: Dict[str, Any] = {}


class RowResponse(BaseModel):
    row_number: int
    values: Dict[str, Any]


class RowListResponse(BaseModel):
    rows: List[RowResponse]


class GroupedItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    is_bundle: bool
    models: str
    quantity: Any
    term: Any
    unit_price: float
    total_price: float
    bundle_id: str = ""
    rows: Optional[List[int]] = None


class GroupedItemListResponse(BaseModel):
    items: List[GroupedItemResponse]


class NotificationResponse(BaseModel):
    kind: str
    message: str
    title: str = ""
    details: Dict[str, Any] = {}


class HealthResponse(BaseModel):
    status: str
    version: str
    store_backend: str
    store_health: bool
    config_issues: List[str] = []
    lock_held: bool
