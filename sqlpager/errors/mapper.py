from sqlpager.errors.codes import ErrorCode

ERROR_MAP = {
    ErrorCode.VALIDATION_FORBIDDEN_KEYWORD: (422, False),
    ErrorCode.VALIDATION_NON_SELECT: (422, False),
    ErrorCode.VALIDATION_MULTI_STATEMENT: (422, False),
    ErrorCode.VALIDATION_BAD_REQUEST: (400, False),
    ErrorCode.CURSOR_DECODE_ERROR: (400, False),
    ErrorCode.REWRITE_AMBIGUOUS_FIELD: (422, False),
    ErrorCode.QUERY_SYNTAX_ERROR: (422, False),
    ErrorCode.QUERY_NO_SUCH_TABLE: (422, False),
    ErrorCode.QUERY_NO_SUCH_COLUMN: (422, False),
    ErrorCode.QUERY_PERMISSION_DENIED: (403, False),
    ErrorCode.QUERY_FAILED: (500, False),
    ErrorCode.DB_LOCKED: (503, True),
    ErrorCode.DB_TIMEOUT: (503, True),
    ErrorCode.DB_UNAVAILABLE: (503, True),
    ErrorCode.SINK_WRITE_FAILED: (500, True),
    ErrorCode.RESULT_NOT_FOUND: (404, False),
    ErrorCode.INTERNAL_ERROR: (500, False),
}


def map_error(code: ErrorCode | None) -> tuple[int, bool]:
    if code is None:
        return (500, False)
    return ERROR_MAP.get(code, (500, False))
