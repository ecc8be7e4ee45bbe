from typing import Any, Mapping, Optional, Protocol

from sqlpager.types import ExecutionResult


class ExecutionPort(Protocol):
    """Read-only statement execution against one database. Owned by the caller."""

    name: str
    dialect: str

    def execute(
        self, sql: str, parameters: Optional[Mapping[str, Any]] = None
    ) -> ExecutionResult:
        """Execute a parameterized SELECT and return rows as dicts keyed by column name."""

    def ping(self) -> None:
        """Raise if the database cannot be reached."""
