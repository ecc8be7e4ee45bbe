from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from sqlpager.errors.codes import ErrorCode
from sqlpager.errors.exceptions import ValidationError

Direction = Literal["next", "prev"]
OutputType = Literal["json", "csv", "summary"]
Operation = Literal["sum", "avg", "min", "max", "count", "countDistinct"]

CURSOR_OPERATORS = (">", ">=", "<", "<=")
BACKWARD_OPERATORS = ("<", "<=")
OPERATIONS = ("sum", "avg", "min", "max", "count", "countDistinct")
OUTPUT_TYPES = ("json", "csv", "summary")

Row = Dict[str, Any]


# =====================
# Tracing / Observability
# =====================


@dataclass(frozen=True)
class StageTrace:
    stage: str
    duration_ms: float
    summary: str = ""
    notes: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class StageResult:
    ok: bool

    data: Optional[Any] = None
    trace: Optional[StageTrace] = None

    # Human-readable error messages (debug / UI only)
    error: Optional[List[str]] = None

    error_code: Optional[ErrorCode] = None
    retryable: Optional[bool] = None


# =====================
# Cursor / statement shape
# =====================


@dataclass(frozen=True)
class Cursor:
    field: str
    value: Any
    operator: str = ">"


@dataclass(frozen=True)
class SelectColumn:
    expression: str
    # Output column name (alias or bare identifier); None for unnamed expressions
    name: Optional[str]


@dataclass(frozen=True)
class StatementShape:
    """
    Clause layout of one SQL statement, as seen by a ClauseAnalyzer.

    Offsets index into ``sql`` (the normalized statement) and always point at
    top-level clause keywords, never inside parentheses, strings or comments.
    """

    sql: str
    select_columns: Tuple[SelectColumn, ...] = ()
    where_span: Optional[Tuple[int, int]] = None
    order_span: Optional[Tuple[int, int]] = None
    order_fields: Tuple[str, ...] = ()
    # Parallel to order_fields: True where the item is ordered DESC
    order_descending: Tuple[bool, ...] = ()
    limit_start: Optional[int] = None
    # Row count of a plain caller LIMIT n / FETCH FIRST n / TOP n, when it has no offset
    row_limit: Optional[int] = None
    has_top: bool = False
    filter_insert_at: int = 0
    order_insert_at: int = 0
    compound: bool = False

    @property
    def has_where(self) -> bool:
        return self.where_span is not None

    @property
    def has_order(self) -> bool:
        return self.order_span is not None

    @property
    def has_limit(self) -> bool:
        return self.limit_start is not None or self.has_top


@dataclass(frozen=True)
class RewriteResult:
    sql: str
    parameters: Dict[str, Any]
    cursor_field: str
    field_source: str  # explicit | order_by | select | default
    cursor_applied: bool = False
    cursor: Optional[Cursor] = None
    reversed: bool = False
    # The effective field is walked in descending order (caller ORDER BY ... DESC)
    descending: bool = False
    notes: Dict[str, Any] = field(default_factory=dict)


# =====================
# Execution port contract
# =====================


@dataclass(frozen=True)
class ExecutionResult:
    rows: List[Row]
    columns: List[str]
    elapsed_ms: float = 0.0


# =====================
# Pagination
# =====================


@dataclass(frozen=True)
class PageRequest:
    sql: str
    page_size: int = 50
    cursor_field: Optional[str] = None
    cursor: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    direction: Direction = "next"
    include_count: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.page_size, int) or self.page_size <= 0:
            raise ValidationError(
                f"page_size must be a positive integer, got {self.page_size!r}",
                code=ErrorCode.VALIDATION_BAD_REQUEST,
            )
        if self.direction not in ("next", "prev"):
            raise ValidationError(
                f"direction must be 'next' or 'prev', got {self.direction!r}",
                code=ErrorCode.VALIDATION_BAD_REQUEST,
            )


@dataclass(frozen=True)
class PageResult:
    rows: List[Row]
    columns: List[str]
    cursor_field: str
    page_size: int
    has_more: bool
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None
    total_count: Optional[int] = None
    direction: Direction = "next"
    elapsed_ms: float = 0.0
    notes: Dict[str, Any] = field(default_factory=dict)

    @property
    def returned_rows(self) -> int:
        return len(self.rows)

    @property
    def estimated_total_pages(self) -> Optional[int]:
        if self.total_count is None:
            return None
        return -(-self.total_count // self.page_size)

    def pagination_meta(self) -> Dict[str, Any]:
        return {
            "cursor_field": self.cursor_field,
            "page_size": self.page_size,
            "returned_rows": self.returned_rows,
            "has_more": self.has_more,
            "next_cursor": self.next_cursor,
            "prev_cursor": self.prev_cursor,
            "direction": self.direction,
            "total_count": self.total_count,
            "estimated_total_pages": self.estimated_total_pages,
        }


# =====================
# Streaming aggregation
# =====================


@dataclass(frozen=True)
class AggregationSpec:
    field: str
    operation: Operation

    def __post_init__(self) -> None:
        if self.operation not in OPERATIONS:
            raise ValidationError(
                f"unsupported aggregation operation: {self.operation!r}",
                code=ErrorCode.VALIDATION_BAD_REQUEST,
            )


@dataclass(frozen=True)
class AggregationResult:
    field: str
    operation: Operation
    value: Any


@dataclass(frozen=True)
class StreamSummary:
    result_id: str
    status: Literal["ok", "partial"]
    termination: str  # exhausted | max_rows | cancelled | deadline | error
    cursor_field: str
    output_type: OutputType
    total_rows: int
    batch_count: int
    elapsed_ms: float
    aggregations: List[AggregationResult] = field(default_factory=list)
    last_cursor: Optional[str] = None
    sample_rows: List[Row] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    sink_error: Optional[str] = None
    stored: bool = False
    notes: Dict[str, Any] = field(default_factory=dict)

    @property
    def rows_per_second(self) -> Optional[float]:
        if self.elapsed_ms <= 0:
            return None
        return self.total_rows / (self.elapsed_ms / 1000.0)
