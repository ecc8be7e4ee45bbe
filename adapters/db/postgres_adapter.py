import logging
import time
from typing import Any, List, Mapping, Optional

import psycopg
from psycopg.rows import dict_row

from adapters.db.base import ExecutionPort
from sqlpager.types import ExecutionResult

log = logging.getLogger(__name__)


class PostgresAdapter(ExecutionPort):
    name = "postgres"
    dialect = "postgres"

    def __init__(self, dsn: str, *, statement_timeout_ms: int = 0):
        """
        DSN example:
        "dbname=demo user=postgres password=postgres host=localhost port=5432"
        """
        self.dsn = dsn
        self.statement_timeout_ms = statement_timeout_ms

    def execute(
        self, sql: str, parameters: Optional[Mapping[str, Any]] = None
    ) -> ExecutionResult:
        """
        Execute a read-only statement and return rows as dicts.
        """
        t0 = time.perf_counter()
        with psycopg.connect(self.dsn, row_factory=dict_row) as conn:
            # Make it explicitly read-only at the session level
            conn.read_only = True
            with conn.cursor() as cur:
                if self.statement_timeout_ms > 0:
                    cur.execute(
                        f"SET statement_timeout = {int(self.statement_timeout_ms)}"
                    )
                cur.execute(sql, dict(parameters or {}) or None)
                rows = cur.fetchall() or []
                desc = cur.description or ()
                cols: List[str] = [d.name for d in desc if d]
        elapsed_ms = (time.perf_counter() - t0) * 1000
        log.info("Query executed successfully. Returned %d rows.", len(rows))
        return ExecutionResult(rows=list(rows), columns=cols, elapsed_ms=elapsed_ms)

    def ping(self) -> None:
        with psycopg.connect(self.dsn, connect_timeout=3) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
