from sqlpager.errors.codes import ErrorCode
from sqlpager.errors.exceptions import (
    BridgeError,
    CursorDecodeError,
    QueryError,
    QueryRewriteAmbiguity,
    ResultNotFoundError,
    SinkError,
    ValidationError,
)

__all__ = [
    "ErrorCode",
    "BridgeError",
    "CursorDecodeError",
    "QueryError",
    "QueryRewriteAmbiguity",
    "ResultNotFoundError",
    "SinkError",
    "ValidationError",
]
