from enum import Enum


class ErrorCode(str, Enum):
    # --- Validation ---
    VALIDATION_FORBIDDEN_KEYWORD = "VALIDATION_FORBIDDEN_KEYWORD"
    VALIDATION_NON_SELECT = "VALIDATION_NON_SELECT"
    VALIDATION_MULTI_STATEMENT = "VALIDATION_MULTI_STATEMENT"
    VALIDATION_BAD_REQUEST = "VALIDATION_BAD_REQUEST"

    # --- Cursor / rewrite ---
    CURSOR_DECODE_ERROR = "CURSOR_DECODE_ERROR"
    REWRITE_AMBIGUOUS_FIELD = "REWRITE_AMBIGUOUS_FIELD"

    # --- Executor / DB ---
    QUERY_SYNTAX_ERROR = "QUERY_SYNTAX_ERROR"
    QUERY_NO_SUCH_TABLE = "QUERY_NO_SUCH_TABLE"
    QUERY_NO_SUCH_COLUMN = "QUERY_NO_SUCH_COLUMN"
    QUERY_PERMISSION_DENIED = "QUERY_PERMISSION_DENIED"
    QUERY_FAILED = "QUERY_FAILED"
    DB_LOCKED = "DB_LOCKED"
    DB_TIMEOUT = "DB_TIMEOUT"
    DB_UNAVAILABLE = "DB_UNAVAILABLE"

    # --- Result sink ---
    SINK_WRITE_FAILED = "SINK_WRITE_FAILED"
    RESULT_NOT_FOUND = "RESULT_NOT_FOUND"

    # --- Internal ---
    INTERNAL_ERROR = "INTERNAL_ERROR"
