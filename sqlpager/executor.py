from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional

from adapters.db.base import ExecutionPort
from adapters.metrics.base import Metrics
from adapters.metrics.noop import NoOpMetrics
from sqlpager.errors import ErrorCode, QueryError
from sqlpager.types import ExecutionResult

log = logging.getLogger(__name__)


def classify_db_error(e: BaseException) -> ErrorCode:
    """Map a backend exception to an ErrorCode from its type and message."""
    if isinstance(e, FileNotFoundError):
        return ErrorCode.DB_UNAVAILABLE
    if isinstance(e, TimeoutError):
        return ErrorCode.DB_TIMEOUT

    msg = str(e).lower()

    if "database is locked" in msg or "database table is locked" in msg:
        return ErrorCode.DB_LOCKED
    if "timeout" in msg or "timed out" in msg or "canceling statement" in msg:
        return ErrorCode.DB_TIMEOUT

    # SQLite-style messages
    if "no such table" in msg:
        return ErrorCode.QUERY_NO_SUCH_TABLE
    if "no such column" in msg:
        return ErrorCode.QUERY_NO_SUCH_COLUMN
    if "syntax error" in msg:
        return ErrorCode.QUERY_SYNTAX_ERROR

    # Postgres-style messages (common cases)
    if "relation" in msg and "does not exist" in msg:
        return ErrorCode.QUERY_NO_SUCH_TABLE
    if "column" in msg and "does not exist" in msg:
        return ErrorCode.QUERY_NO_SUCH_COLUMN
    if "permission denied" in msg or "readonly" in msg or "read-only" in msg:
        return ErrorCode.QUERY_PERMISSION_DENIED
    if (
        "unable to open database" in msg
        or "connection refused" in msg
        or "could not connect" in msg
        or "connection failed" in msg
    ):
        return ErrorCode.DB_UNAVAILABLE

    return ErrorCode.QUERY_FAILED


class Executor:
    """
    Thin wrapper over an ExecutionPort: times each call, records metrics,
    and turns any backend failure into a classified QueryError.
    """

    name = "execute"

    def __init__(self, port: ExecutionPort, *, metrics: Metrics | None = None):
        self.port = port
        self.metrics = metrics or NoOpMetrics()

    @property
    def dialect(self) -> str:
        return getattr(self.port, "dialect", None) or "sqlite"

    def execute(
        self, sql: str, parameters: Optional[Mapping[str, Any]] = None
    ) -> ExecutionResult:
        t0 = time.perf_counter()
        try:
            result = self.port.execute(sql, dict(parameters or {}))
        except QueryError:
            self.metrics.inc_stage_call(stage=self.name, ok=False)
            raise
        except Exception as e:
            code = classify_db_error(e)
            dt_ms = (time.perf_counter() - t0) * 1000
            self.metrics.inc_stage_call(stage=self.name, ok=False)
            self.metrics.inc_stage_error(stage=self.name, error_code=code.value)
            self.metrics.observe_stage_duration_ms(stage=self.name, dt_ms=dt_ms)
            log.warning(
                "Statement execution failed",
                extra={
                    "error_code": code.value,
                    "error_type": type(e).__name__,
                    "sql_length": len(sql or ""),
                },
            )
            raise QueryError(
                str(e) or type(e).__name__,
                code=code,
                extra={"error_type": type(e).__name__},
            ) from e

        dt_ms = (time.perf_counter() - t0) * 1000
        self.metrics.inc_stage_call(stage=self.name, ok=True)
        self.metrics.observe_stage_duration_ms(stage=self.name, dt_ms=dt_ms)
        return ExecutionResult(
            rows=list(result.rows),
            columns=list(result.columns),
            elapsed_ms=result.elapsed_ms or dt_ms,
        )
