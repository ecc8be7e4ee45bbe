from __future__ import annotations

import base64
import csv
import datetime as dt
import logging
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from adapters.metrics.base import Metrics
from adapters.metrics.noop import NoOpMetrics
from adapters.sinks.base import ResultSink
from sqlpager.aggregation import AggregationSet
from sqlpager.errors import ErrorCode, QueryError, SinkError, ValidationError
from sqlpager.errors.mapper import map_error
from sqlpager.pagination import PaginationController, truncate_page
from sqlpager.safety import sanitize
from sqlpager.types import (
    OUTPUT_TYPES,
    AggregationSpec,
    OutputType,
    PageRequest,
    Row,
    StreamSummary,
)

log = logging.getLogger(__name__)

SAMPLE_ROWS = 5
# Spill CSV output to disk past this many bytes
CSV_SPOOL_BYTES = 1024 * 1024


# =====================
# Row writers (one per output type)
# =====================


class SummaryRowWriter:
    """Keeps no rows; only aggregates and counters survive the run."""

    def write(self, rows: Sequence[Row], columns: Sequence[str]) -> None:
        return

    def close(self) -> None:
        return


class JsonRowWriter:
    """Buffers every row for a single JSON artifact; bounded by max_rows."""

    def __init__(self) -> None:
        self.rows: List[Row] = []

    def write(self, rows: Sequence[Row], columns: Sequence[str]) -> None:
        self.rows.extend(rows)

    def close(self) -> None:
        return


def _csv_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    return value


class CsvRowWriter:
    """Writes rows as they arrive into a spooled temp file (memory, then disk)."""

    def __init__(self, spool_bytes: int = CSV_SPOOL_BYTES) -> None:
        self.stream: IO[str] = tempfile.SpooledTemporaryFile(
            max_size=spool_bytes, mode="w+", encoding="utf-8", newline=""
        )
        self._writer = csv.writer(self.stream)
        self.headers: Optional[List[str]] = None

    def write(self, rows: Sequence[Row], columns: Sequence[str]) -> None:
        if not rows:
            return
        if self.headers is None:
            # Header comes from the first non-empty batch
            self.headers = list(columns) or list(rows[0].keys())
            self._writer.writerow(self.headers)
        for row in rows:
            self._writer.writerow([_csv_value(row.get(h)) for h in self.headers])

    def close(self) -> None:
        self.stream.close()


def make_row_writer(output_type: OutputType):
    if output_type == "json":
        return JsonRowWriter()
    if output_type == "csv":
        return CsvRowWriter()
    return SummaryRowWriter()


# =====================
# Run state
# =====================

# idle -> fetching -> accumulating -> (fetching | finalizing) -> done
# (idle -> finalizing when cancelled before the first batch)
_TRANSITIONS = {
    "idle": {"fetching", "finalizing"},
    "fetching": {"accumulating", "finalizing"},
    "accumulating": {"fetching", "finalizing"},
    "finalizing": {"done"},
    "done": set(),
}


@dataclass
class StreamRun:
    result_id: str
    sql: str
    batch_size: int
    max_rows: int
    output_type: OutputType
    cursor_field: Optional[str] = None
    cursor: Optional[str] = None
    # Plain LIMIT / TOP of the statement itself; caps the whole walk
    row_limit: Optional[int] = None
    state: str = "idle"
    termination: Optional[str] = None
    total_processed: int = 0
    batch_count: int = 0
    sample_rows: List[Row] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    notes: Dict[str, Any] = field(default_factory=dict)

    def advance(self, state: str) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid stream transition {self.state} -> {state}")
        log.debug("stream %s: %s -> %s", self.result_id, self.state, state)
        self.state = state

    @property
    def next_batch_size(self) -> int:
        cap = self.max_rows
        if self.row_limit is not None:
            cap = min(cap, self.row_limit)
        return min(self.batch_size, cap - self.total_processed)


def _validate(batch_size: int, max_rows: int, output_type: str) -> None:
    if not isinstance(batch_size, int) or batch_size <= 0:
        raise ValidationError(
            f"batch_size must be a positive integer, got {batch_size!r}",
            code=ErrorCode.VALIDATION_BAD_REQUEST,
        )
    if not isinstance(max_rows, int) or max_rows <= 0:
        raise ValidationError(
            f"max_rows must be a positive integer, got {max_rows!r}",
            code=ErrorCode.VALIDATION_BAD_REQUEST,
        )
    if output_type not in OUTPUT_TYPES:
        raise ValidationError(
            f"output_type must be one of {', '.join(OUTPUT_TYPES)}, got {output_type!r}",
            code=ErrorCode.VALIDATION_BAD_REQUEST,
        )


class StreamingAggregator:
    """
    Walks a statement batch by batch through the PaginationController,
    folding rows into online aggregates without holding the full result
    (except for ``json`` output, which is bounded by ``max_rows``).

    Strictly sequential: one batch in flight, cancellation and deadline
    checked between batches only.
    """

    name = "stream"

    def __init__(
        self,
        controller: PaginationController,
        *,
        sink: ResultSink | None = None,
        metrics: Metrics | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.controller = controller
        self.sink = sink
        self.metrics = metrics or NoOpMetrics()
        self.clock = clock

    def run(
        self,
        sql: str,
        *,
        cursor_field: Optional[str] = None,
        batch_size: int = 1000,
        max_rows: int = 100_000,
        aggregations: Iterable[AggregationSpec] = (),
        output_type: OutputType = "summary",
        parameters: Optional[Mapping[str, Any]] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        deadline: Optional[float] = None,
        result_id: Optional[str] = None,
    ) -> StreamSummary:
        _validate(batch_size, max_rows, output_type)
        specs = list(aggregations)
        aggs = AggregationSet(specs)
        params = dict(parameters or {})
        run = StreamRun(
            result_id=result_id or str(uuid.uuid4()),
            sql=sql,
            batch_size=batch_size,
            max_rows=max_rows,
            output_type=output_type,
            cursor_field=cursor_field,
            row_limit=self.controller.rewriter.analyze(sanitize(sql)).row_limit,
        )
        if run.row_limit is not None:
            run.notes["statement_limit"] = run.row_limit
        writer = make_row_writer(output_type)
        t0 = time.perf_counter()
        last_cursor: Optional[str] = None

        log.info(
            "Starting query streamer",
            extra={
                "result_id": run.result_id,
                "cursor_field": cursor_field,
                "batch_size": batch_size,
                "max_rows": max_rows,
                "output_type": output_type,
            },
        )

        try:
            while True:
                if should_cancel is not None and should_cancel():
                    run.termination = "cancelled"
                    break
                if deadline is not None and self.clock() >= deadline:
                    run.termination = "deadline"
                    break

                run.advance("fetching")
                size = run.next_batch_size
                request = PageRequest(
                    sql=sql,
                    page_size=size,
                    cursor_field=run.cursor_field,
                    cursor=run.cursor,
                    parameters=params,
                )
                try:
                    page = self.controller.fetch_page(request)
                except QueryError as e:
                    if run.batch_count == 0:
                        # Nothing to salvage yet: surface the failure as-is
                        run.advance("finalizing")
                        run.advance("done")
                        self.metrics.inc_stream_run(termination="error")
                        raise
                    _, retryable = map_error(e.code)
                    log.error(
                        "Error executing streaming batch %d: %s",
                        run.batch_count + 1,
                        e,
                    )
                    run.error = {
                        "code": e.code.value,
                        "message": e.message,
                        "retryable": retryable,
                        "batch": run.batch_count + 1,
                    }
                    run.termination = "error"
                    break

                run.advance("accumulating")
                run.batch_count += 1
                # Pin the field resolved on the first batch for the rest of the walk
                run.cursor_field = page.cursor_field
                for key, value in page.notes.items():
                    run.notes.setdefault(key, value)

                # A statement LIMIT larger than the batch overshoots; keep the batch and
                # resume after its last row
                page = truncate_page(page, size)
                rows = page.rows
                aggs.feed(rows)
                writer.write(rows, page.columns)
                if len(run.sample_rows) < SAMPLE_ROWS:
                    run.sample_rows.extend(rows[: SAMPLE_ROWS - len(run.sample_rows)])
                run.total_processed += len(rows)
                self.metrics.inc_stream_batch(rows=len(rows))
                if page.next_cursor:
                    last_cursor = page.next_cursor

                log.info(
                    "Batch %d returned %d rows, total rows: %d",
                    run.batch_count,
                    len(rows),
                    run.total_processed,
                )

                if not page.has_more:
                    run.termination = "exhausted"
                    break
                if run.row_limit is not None and run.total_processed >= run.row_limit:
                    run.termination = "exhausted"
                    break
                if run.total_processed >= max_rows:
                    run.termination = "max_rows"
                    break
                if page.next_cursor is None or page.next_cursor == run.cursor:
                    # Boundary value unavailable or not advancing: the walk cannot continue
                    run.notes["walk_stalled"] = True
                    run.termination = "exhausted"
                    break
                run.cursor = page.next_cursor

            run.advance("finalizing")
            elapsed_ms = (time.perf_counter() - t0) * 1000
            results = aggs.results()
            stored, sink_error = self._persist(run, writer, results, elapsed_ms)
            run.advance("done")
        finally:
            writer.close()

        self.metrics.inc_stream_run(termination=run.termination)
        self.metrics.inc_stage_call(stage=self.name, ok=run.error is None)
        self.metrics.observe_stage_duration_ms(stage=self.name, dt_ms=elapsed_ms)
        log.info(
            "Streaming query completed in %.1fms, processed %d rows in %d batches",
            elapsed_ms,
            run.total_processed,
            run.batch_count,
            extra={"result_id": run.result_id, "termination": run.termination},
        )

        return StreamSummary(
            result_id=run.result_id,
            status="ok" if run.error is None else "partial",
            termination=run.termination or "exhausted",
            cursor_field=run.cursor_field or self.controller.rewriter.default_field,
            output_type=output_type,
            total_rows=run.total_processed,
            batch_count=run.batch_count,
            elapsed_ms=elapsed_ms,
            aggregations=results,
            last_cursor=last_cursor,
            sample_rows=run.sample_rows,
            error=run.error,
            sink_error=sink_error,
            stored=stored,
            notes=run.notes,
        )

    def _persist(self, run: StreamRun, writer, results, elapsed_ms: float):
        if self.sink is None:
            return False, None

        metadata = {
            "uuid": run.result_id,
            "kind": "stream",
            "query": run.sql,
            "cursor_field": run.cursor_field,
            "output_type": run.output_type,
            "total_rows": run.total_processed,
            "batch_count": run.batch_count,
            "execution_time_ms": round(elapsed_ms, 3),
            "termination": run.termination,
            "aggregations": [
                {"field": r.field, "operation": r.operation, "value": r.value}
                for r in results
            ],
        }
        if run.error is not None:
            metadata["error"] = run.error
        payload: Dict[str, Any] = {"metadata": metadata}
        csv_stream = None
        if isinstance(writer, JsonRowWriter):
            payload["results"] = writer.rows
        elif isinstance(writer, CsvRowWriter):
            csv_stream = writer.stream

        try:
            self.sink.store(run.result_id, payload, csv_stream=csv_stream)
        except SinkError as e:
            log.error("Error saving streaming query results: %s", e)
            self.metrics.inc_sink_error(op="store")
            return False, e.message
        return True, None
