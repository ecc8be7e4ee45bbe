from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlpager.errors.codes import ErrorCode


class BridgeError(Exception):
    """Base class for errors raised by the pagination core."""

    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        details: Optional[List[str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details
        self.extra = extra or {}

    def __str__(self) -> str:
        return self.message


class CursorDecodeError(BridgeError):
    """Malformed, truncated or tampered pagination token."""

    default_code = ErrorCode.CURSOR_DECODE_ERROR


class QueryRewriteAmbiguity(BridgeError):
    """No ordering field could be inferred from the statement."""

    default_code = ErrorCode.REWRITE_AMBIGUOUS_FIELD


class ValidationError(BridgeError):
    """Statement or request rejected before any execution attempt."""

    default_code = ErrorCode.VALIDATION_FORBIDDEN_KEYWORD


class QueryError(BridgeError):
    """Execution port failure (syntax, connectivity, timeout, permission)."""

    default_code = ErrorCode.QUERY_FAILED


class SinkError(BridgeError):
    """Result sink could not persist an artifact."""

    default_code = ErrorCode.SINK_WRITE_FAILED


class ResultNotFoundError(BridgeError):
    default_code = ErrorCode.RESULT_NOT_FOUND
