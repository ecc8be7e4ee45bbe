from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class AggregationModel(BaseModel):
    field: str = Field(..., min_length=1)
    operation: Literal["sum", "avg", "min", "max", "count", "countDistinct"]


class PageQueryRequest(BaseModel):
    sql: str = Field(..., min_length=1)
    cursor_field: Optional[str] = None
    page_size: int = Field(50, ge=1, le=1000)
    cursor: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    include_count: bool = True
    direction: Literal["next", "prev"] = "next"
    persist: bool = True

    class Config:
        extra = "ignore"


class StreamQueryRequest(BaseModel):
    sql: str = Field(..., min_length=1)
    cursor_field: Optional[str] = None
    batch_size: int = Field(1000, ge=1, le=10000)
    max_rows: int = Field(100_000, ge=1, le=1_000_000)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    output_type: Literal["json", "csv", "summary"] = "summary"
    aggregations: List[AggregationModel] = Field(default_factory=list)
    timeout_sec: Optional[int] = Field(None, ge=1)

    class Config:
        extra = "ignore"


class PageResponse(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    pagination: Dict[str, Any] = Field(default_factory=dict)
    result_id: Optional[str] = None
    sink_error: Optional[str] = None
    elapsed_ms: float = 0.0
    notes: Dict[str, Any] = Field(default_factory=dict)
    markdown: str = ""


class AggregationResultModel(BaseModel):
    field: str
    operation: str
    value: Any = None


class StreamResponse(BaseModel):
    result_id: str
    status: Literal["ok", "partial"]
    termination: str
    cursor_field: str
    output_type: str
    total_rows: int
    batch_count: int
    elapsed_ms: float
    rows_per_second: Optional[float] = None
    aggregations: List[AggregationResultModel] = Field(default_factory=list)
    last_cursor: Optional[str] = None
    sample_rows: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    sink_error: Optional[str] = None
    stored: bool = False
    notes: Dict[str, Any] = Field(default_factory=dict)
    markdown: str = ""


class ResultListResponse(BaseModel):
    results: List[Dict[str, Any]] = Field(default_factory=list)


class StoredResultResponse(BaseModel):
    metadata: Dict[str, Any] = Field(default_factory=dict)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total_rows: int = 0
    markdown: str = ""
