from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from typing import IO, Any, Dict, List, Optional

from adapters.sinks.base import ResultSink
from adapters.sinks.serialization import json_default
from sqlpager.errors import ResultNotFoundError, SinkError


class MemoryResultSink(ResultSink):
    """In-process sink for tests and ephemeral deployments."""

    name = "memory"

    def __init__(self) -> None:
        self._items: Dict[str, Dict[str, Any]] = {}
        self._csv: Dict[str, str] = {}
        self._lock = threading.Lock()

    def store(
        self,
        result_id: str,
        payload: Dict[str, Any],
        *,
        csv_stream: Optional[IO[str]] = None,
    ) -> Dict[str, Any]:
        meta = dict(payload.get("metadata") or {})
        meta.setdefault("uuid", result_id)
        meta.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        try:
            # Round-trip through JSON so stored payloads match what the file sink returns
            doc = json.loads(
                json.dumps({**payload, "metadata": meta}, default=json_default)
            )
        except (TypeError, ValueError) as e:
            raise SinkError(f"Could not store result {result_id}: {e}") from e

        with self._lock:
            if csv_stream is not None:
                csv_stream.seek(0)
                self._csv[result_id] = csv_stream.read()
            self._items[result_id] = doc
        return meta

    def fetch(self, result_id: str) -> Dict[str, Any]:
        with self._lock:
            doc = self._items.get(result_id)
        if doc is None:
            raise ResultNotFoundError(f"No result with ID: {result_id}")
        return doc

    def csv_text(self, result_id: str) -> Optional[str]:
        with self._lock:
            return self._csv.get(result_id)

    def list(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            metas = [dict(doc.get("metadata") or {}) for doc in self._items.values()]
        # Stable sort over insertion order keeps same-timestamp entries newest first
        metas.reverse()
        metas.sort(key=lambda m: m.get("timestamp") or "", reverse=True)
        return [
            {
                "uuid": m.get("uuid"),
                "timestamp": m.get("timestamp"),
                "query": m.get("query"),
                "row_count": m.get("row_count", m.get("total_rows")),
                "kind": m.get("kind"),
                "size_bytes": None,
            }
            for m in metas[: max(0, limit)]
        ]
