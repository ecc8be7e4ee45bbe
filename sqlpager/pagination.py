from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional

from adapters.metrics.base import Metrics
from adapters.metrics.noop import NoOpMetrics
from sqlpager.clauses import last_segment
from sqlpager.cursor import CursorCodec
from sqlpager.errors import QueryError
from sqlpager.executor import Executor
from sqlpager.rewriter import StatementRewriter
from sqlpager.safety import Safety
from sqlpager.types import PageRequest, PageResult, Row

log = logging.getLogger(__name__)

_MISSING = object()

# (next, prev) operators for an ascending and a descending walk
_OPERATORS = {False: (">", "<="), True: ("<", ">=")}


def row_value(row: Row, field: str) -> Any:
    """Look ``field`` up by its unqualified name, falling back to a case-insensitive match."""
    key = last_segment(field)
    if key in row:
        return row[key]
    lowered = key.lower()
    for k, v in row.items():
        if str(k).lower() == lowered:
            return v
    return _MISSING


def truncate_page(page: PageResult, size: int) -> PageResult:
    """
    Cut ``page`` to its first ``size`` rows and re-derive the next cursor from
    the new last row, so a walk resumes right after what was kept.

    Needed when the statement's own LIMIT returns more rows than were asked for.
    """
    if len(page.rows) <= size:
        return page
    rows = page.rows[:size]
    next_cursor: Optional[str] = None
    if page.next_cursor is not None:
        operator = CursorCodec.decode(page.next_cursor).operator
        value = row_value(rows[-1], page.cursor_field)
        if value is not _MISSING:
            next_cursor = CursorCodec.encode(page.cursor_field, value, operator)
    return replace(page, rows=rows, has_more=True, next_cursor=next_cursor)


class PaginationController:
    """
    One page of a cursor walk over a read-only statement.

    The statement is validated before anything runs. The optional total
    count is best effort. Cursors are derived from the boundary rows of the
    page that was actually returned.
    """

    name = "page"

    def __init__(
        self,
        executor: Executor,
        *,
        safety: Safety | None = None,
        rewriter: StatementRewriter | None = None,
        default_field: str = "id",
        metrics: Metrics | None = None,
    ) -> None:
        self.executor = executor
        dialect = executor.dialect
        self.safety = safety or Safety(dialect=dialect)
        self.rewriter = rewriter or StatementRewriter(
            dialect=dialect, default_field=default_field
        )
        self.metrics = metrics or NoOpMetrics()

    def _count(
        self, sql: str, parameters: Dict[str, Any], notes: Dict[str, Any]
    ) -> Optional[int]:
        count_sql = self.rewriter.count_statement(sql)
        t0 = time.perf_counter()
        try:
            result = self.executor.execute(count_sql, parameters)
        except QueryError as e:
            log.warning("Error executing count query: %s", e)
            notes["count_failed"] = e.message
            self.metrics.inc_stage_call(stage="count", ok=False)
            return None
        finally:
            self.metrics.observe_stage_duration_ms(
                stage="count", dt_ms=(time.perf_counter() - t0) * 1000
            )
        self.metrics.inc_stage_call(stage="count", ok=True)
        if not result.rows:
            return None
        first = result.rows[0]
        raw = first.get("total_count", next(iter(first.values()), None))
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            notes["count_failed"] = f"non-numeric count: {raw!r}"
            return None

    def fetch_page(self, request: PageRequest) -> PageResult:
        t0 = time.perf_counter()
        sql = self.safety.enforce(request.sql)
        notes: Dict[str, Any] = {}

        total_count: Optional[int] = None
        if request.include_count:
            total_count = self._count(sql, dict(request.parameters), notes)

        rw = self.rewriter.rewrite(
            sql,
            cursor_field=request.cursor_field,
            cursor=request.cursor,
            page_size=request.page_size,
            parameters=request.parameters,
        )
        notes.update(rw.notes)
        if rw.field_source == "default":
            self.metrics.inc_cursor_fallback(reason="default_field")
        if "cursor_ignored" in rw.notes:
            self.metrics.inc_cursor_fallback(reason=str(rw.notes["cursor_ignored"]))

        log.info(
            "Fetching page",
            extra={
                "cursor_field": rw.cursor_field,
                "field_source": rw.field_source,
                "cursor_applied": rw.cursor_applied,
                "page_size": request.page_size,
            },
        )
        result = self.executor.execute(rw.sql, rw.parameters)

        rows: List[Row] = list(result.rows)
        if rw.reversed:
            rows.reverse()

        has_more = len(rows) >= request.page_size
        next_cursor: Optional[str] = None
        prev_cursor: Optional[str] = None
        field = rw.cursor_field

        if rows:
            last = row_value(rows[-1], field)
            first = row_value(rows[0], field)
            if last is _MISSING or first is _MISSING:
                log.warning("Cursor field %r not present in result rows", field)
                notes["cursor_field_missing"] = True
                self.metrics.inc_cursor_fallback(reason="field_missing")
            else:
                next_op, prev_op = _OPERATORS[rw.descending]
                if has_more:
                    next_cursor = CursorCodec.encode(field, last, next_op)
                if rw.cursor_applied:
                    prev_cursor = CursorCodec.encode(field, first, prev_op)

        dt_ms = (time.perf_counter() - t0) * 1000
        self.metrics.inc_page_fetch(direction=request.direction, has_more=has_more)
        self.metrics.inc_stage_call(stage=self.name, ok=True)
        self.metrics.observe_stage_duration_ms(stage=self.name, dt_ms=dt_ms)

        return PageResult(
            rows=rows,
            columns=list(result.columns),
            cursor_field=field,
            page_size=request.page_size,
            has_more=has_more,
            next_cursor=next_cursor,
            prev_cursor=prev_cursor,
            total_count=total_count,
            direction=request.direction,
            elapsed_ms=result.elapsed_ms,
            notes=notes,
        )
