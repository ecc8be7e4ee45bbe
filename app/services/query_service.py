from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from adapters.db.base import ExecutionPort
from adapters.db.postgres_adapter import PostgresAdapter
from adapters.db.sqlite_adapter import SQLiteAdapter
from adapters.metrics.base import Metrics
from adapters.metrics.prometheus import PrometheusMetrics
from adapters.sinks.base import ResultSink
from adapters.sinks.file_sink import FileResultSink
from adapters.sinks.serialization import json_default
from app.errors import BadRequestError, ConfigError, DbNotFound
from app.settings import Settings
from sqlpager.errors import SinkError
from sqlpager.executor import Executor
from sqlpager.pagination import PaginationController
from sqlpager.streaming import StreamingAggregator
from sqlpager.types import (
    AggregationSpec,
    OutputType,
    PageRequest,
    PageResult,
    Row,
    StreamSummary,
)

log = logging.getLogger(__name__)


def jsonable_rows(rows: Sequence[Row]) -> List[Row]:
    """Rows with driver types (Decimal, datetime, bytes, UUID) turned into JSON scalars."""
    return json.loads(json.dumps(list(rows), default=json_default))


@dataclass
class QueryService:
    """
    Application-level service for paged and streamed queries.

    Responsibilities:
        - Choose the right DB adapter based on db_mode.
        - Wire the paging core (executor, controller, aggregator) per call.
        - Persist page and stream artifacts to the result sink.
    """

    settings: Settings
    port: Optional[ExecutionPort] = None
    sink: Optional[ResultSink] = None
    metrics: Metrics = field(default_factory=PrometheusMetrics)

    def __post_init__(self) -> None:
        if self.sink is None:
            self.sink = FileResultSink(self.settings.results_dir)

    # ------------------------------------------------------------------ wiring

    def _select_adapter(self) -> ExecutionPort:
        if self.port is not None:
            return self.port

        mode = self.settings.db_mode.lower()
        if mode == "postgres":
            dsn = (self.settings.postgres_dsn or "").strip()
            if not dsn:
                raise ConfigError("Postgres DSN is not configured")
            return PostgresAdapter(dsn=dsn)

        default_path = self.settings.default_sqlite_path
        if not Path(default_path).exists():
            raise DbNotFound(f"SQLite database path does not exist: {default_path!r}")
        return SQLiteAdapter(path=default_path)

    def _controller(self) -> PaginationController:
        executor = Executor(self._select_adapter(), metrics=self.metrics)
        return PaginationController(
            executor,
            default_field=self.settings.default_cursor_field,
            metrics=self.metrics,
        )

    # ------------------------------------------------------------------ paging

    def fetch_page(
        self,
        *,
        sql: str,
        cursor_field: Optional[str] = None,
        page_size: Optional[int] = None,
        cursor: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        include_count: bool = True,
        direction: str = "next",
        persist: bool = True,
    ) -> Dict[str, Any]:
        size = page_size or self.settings.default_page_size
        if size > self.settings.max_page_size:
            raise BadRequestError(
                f"page_size must be <= {self.settings.max_page_size}",
                extra={"page_size": size},
            )

        request = PageRequest(
            sql=sql,
            page_size=size,
            cursor_field=cursor_field,
            cursor=cursor,
            parameters=dict(parameters or {}),
            direction=direction,  # type: ignore[arg-type]
            include_count=include_count,
        )
        page = self._controller().fetch_page(request)
        rows = jsonable_rows(page.rows)

        result_id: Optional[str] = None
        sink_error: Optional[str] = None
        if persist and rows:
            result_id, sink_error = self._store_page(request, page, rows)

        return {
            "page": page,
            "rows": rows,
            "result_id": result_id,
            "sink_error": sink_error,
        }

    def _store_page(
        self, request: PageRequest, page: PageResult, rows: List[Row]
    ) -> tuple[Optional[str], Optional[str]]:
        result_id = str(uuid.uuid4())
        payload = {
            "metadata": {
                "uuid": result_id,
                "kind": "page",
                "query": request.sql,
                "parameters": request.parameters or None,
                "row_count": page.returned_rows,
                "execution_time_ms": round(page.elapsed_ms, 3),
                "pagination": page.pagination_meta(),
            },
            "results": rows,
        }
        try:
            self.sink.store(result_id, payload)
        except SinkError as e:
            log.error("Error saving paginated results: %s", e)
            self.metrics.inc_sink_error(op="store")
            return None, e.message
        return result_id, None

    # --------------------------------------------------------------- streaming

    def stream_aggregate(
        self,
        *,
        sql: str,
        cursor_field: Optional[str] = None,
        batch_size: Optional[int] = None,
        max_rows: int = 100_000,
        aggregations: Sequence[AggregationSpec] = (),
        output_type: OutputType = "summary",
        parameters: Optional[Dict[str, Any]] = None,
        timeout_sec: Optional[int] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> StreamSummary:
        if max_rows > self.settings.max_stream_rows:
            raise BadRequestError(
                f"max_rows must be <= {self.settings.max_stream_rows}",
                extra={"max_rows": max_rows},
            )

        timeout = timeout_sec or self.settings.stream_timeout_sec
        deadline = time.monotonic() + timeout if timeout and timeout > 0 else None

        aggregator = StreamingAggregator(
            self._controller(), sink=self.sink, metrics=self.metrics
        )
        return aggregator.run(
            sql,
            cursor_field=cursor_field,
            batch_size=batch_size or self.settings.default_batch_size,
            max_rows=max_rows,
            aggregations=aggregations,
            output_type=output_type,
            parameters=parameters,
            should_cancel=should_cancel,
            deadline=deadline,
        )

    # ----------------------------------------------------------------- results

    def list_results(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self.sink.list(limit)

    def get_result(self, result_id: str) -> Dict[str, Any]:
        return self.sink.fetch(result_id)
