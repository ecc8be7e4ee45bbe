from typing import IO, Any, Dict, List, Optional, Protocol


class ResultSink(Protocol):
    """Persistence for finished page and stream artifacts, keyed by result id."""

    name: str

    def store(
        self,
        result_id: str,
        payload: Dict[str, Any],
        *,
        csv_stream: Optional[IO[str]] = None,
    ) -> Dict[str, Any]:
        """Persist ``payload`` (and an optional CSV body). Returns stored metadata. Raises SinkError."""

    def fetch(self, result_id: str) -> Dict[str, Any]:
        """Return the stored payload. Raises ResultNotFoundError."""

    def list(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Metadata of stored results, newest first."""
