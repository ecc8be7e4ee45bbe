from __future__ import annotations

import json
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, List, Optional

from adapters.sinks.base import ResultSink
from adapters.sinks.serialization import json_default
from sqlpager.errors import ResultNotFoundError, SinkError

log = logging.getLogger(__name__)

# Result ids are generated uuids; anything else never touches the filesystem
_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class FileResultSink(ResultSink):
    """
    One ``<id>.json`` document per result (metadata + rows) under ``root``,
    plus ``<id>.csv`` for CSV streams.
    """

    name = "file"

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        log.info("FileResultSink initialized with results dir: %s", self.root)

    def _path(self, result_id: str, ext: str = "json") -> Path:
        if not _ID_RE.match(result_id or ""):
            raise ResultNotFoundError(f"Invalid result id: {result_id!r}")
        return self.root / f"{result_id}.{ext}"

    def store(
        self,
        result_id: str,
        payload: Dict[str, Any],
        *,
        csv_stream: Optional[IO[str]] = None,
    ) -> Dict[str, Any]:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            meta = dict(payload.get("metadata") or {})
            meta.setdefault("uuid", result_id)
            meta.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

            if csv_stream is not None:
                csv_path = self._path(result_id, "csv")
                csv_stream.seek(0)
                with open(csv_path, "w", encoding="utf-8", newline="") as fh:
                    shutil.copyfileobj(csv_stream, fh)
                meta["csv_path"] = str(csv_path)

            doc = {**payload, "metadata": meta}
            json_path = self._path(result_id, "json")
            tmp = json_path.with_suffix(".json.tmp")
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, indent=2, default=json_default)
            os.replace(tmp, json_path)
        except (OSError, TypeError, ValueError) as e:
            log.error("Error saving query results to file: %s", e)
            raise SinkError(
                f"Could not store result {result_id}: {e}",
                extra={"result_id": result_id},
            ) from e

        log.info("Query results saved to %s", json_path)
        return meta

    def fetch(self, result_id: str) -> Dict[str, Any]:
        path = self._path(result_id)
        if not path.exists():
            raise ResultNotFoundError(f"No result with ID: {result_id}")
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as e:
            raise SinkError(
                f"Could not read result {result_id}: {e}",
                extra={"result_id": result_id},
            ) from e

    def list(self, limit: int = 10) -> List[Dict[str, Any]]:
        if not self.root.exists():
            return []
        entries: List[Dict[str, Any]] = []
        for path in self.root.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    meta = json.load(fh).get("metadata") or {}
            except (OSError, ValueError) as e:
                log.warning("Skipping unreadable result file %s: %s", path.name, e)
                continue
            meta.setdefault("uuid", path.stem)
            entries.append(
                {
                    "uuid": meta.get("uuid"),
                    "timestamp": meta.get("timestamp"),
                    "query": meta.get("query"),
                    "row_count": meta.get("row_count", meta.get("total_rows")),
                    "kind": meta.get("kind"),
                    "size_bytes": path.stat().st_size,
                }
            )
        entries.sort(key=lambda e: e.get("timestamp") or "", reverse=True)
        return entries[: max(0, limit)]
