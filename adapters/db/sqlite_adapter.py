import sqlite3
import logging
import time
from pathlib import Path
from typing import Any, List, Mapping, Optional

from adapters.db.base import ExecutionPort
from sqlpager.types import ExecutionResult

log = logging.getLogger(__name__)


class SQLiteAdapter(ExecutionPort):
    name = "sqlite"
    dialect = "sqlite"

    def __init__(self, path: str, *, timeout: float = 3.0):
        # resolve absolute path for safety
        self.path = Path(path).resolve()
        self.timeout = timeout
        log.info("SQLiteAdapter initialized with DB path: %s", self.path)

    def _connect(self) -> sqlite3.Connection:
        if not self.path.exists():
            raise FileNotFoundError(f"SQLite DB does not exist: {self.path}")
        # use proper SQLite URI (not .as_uri())
        uri = f"file:{self.path}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def execute(
        self, sql: str, parameters: Optional[Mapping[str, Any]] = None
    ) -> ExecutionResult:
        t0 = time.perf_counter()
        conn = self._connect()
        try:
            log.debug("Executing SQL: %s", sql.strip().replace("\n", " "))
            cur = conn.execute(sql, dict(parameters or {}))
            fetched = cur.fetchall()
            cols: List[str] = [desc[0] for desc in (cur.description or ())]
        finally:
            conn.close()
        rows = [dict(zip(cols, tuple(r))) for r in fetched]
        elapsed_ms = (time.perf_counter() - t0) * 1000
        log.info("Query executed successfully. Returned %d rows.", len(rows))
        return ExecutionResult(rows=rows, columns=cols, elapsed_ms=elapsed_ms)

    def ping(self) -> None:
        conn = self._connect()
        try:
            conn.execute("SELECT 1").fetchone()
        finally:
            conn.close()
