from __future__ import annotations

import re
import time
from typing import Any, List, Pattern, cast

import sqlglot
from sqlglot import exp

from sqlpager.errors import ErrorCode, ValidationError
from sqlpager.metrics import safety_blocks_total, safety_checks_total
from sqlpager.types import StageResult, StageTrace


# ------------------------- Zero-width & basic regexes -------------------------

_ZERO_WIDTH = [
    "\u200b",
    "\u200c",
    "\u200d",
    "\ufeff",
    "\u2060",
    "\u180e",
    "\u200e",
    "\u200f",
]
_ZERO_WIDTH_RE = re.compile("|".join(map(re.escape, _ZERO_WIDTH)))

# String / comment regexes
_STR_SINGLE_RE = re.compile(r"'([^'\\]|\\.|'')*'", re.DOTALL)
_STR_DOUBLE_RE = re.compile(r'"([^"\\]|\\.)*"', re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"--[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)

# Markdown code fences: ```sql\n ... \n```
_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\n(?P<body>.*)\n```\s*$", re.DOTALL)

# Driver placeholders the SQL parser does not read: %(name)s / %s
_PYFORMAT_RE = re.compile(r"%\((?P<name>\w+)\)s|%s")
_EXPLAIN_HEAD_RE = re.compile(r"^\s*explain\s+(query\s+plan\s+)?", re.IGNORECASE)
_SELECT_LIKE = {"select", "with", "union", "intersect", "except"}

# Write/admin verbs. REPLACE is left out: it is also a common string function.
WRITE_KEYWORDS = (
    "delete",
    "update",
    "insert",
    "drop",
    "create",
    "alter",
    "truncate",
    "merge",
    "grant",
    "revoke",
    "exec",
    "execute",
    "call",
    "copy",
    "attach",
    "pragma",
    "reindex",
    "vacuum",
)

# Strict forbidden keywords (word boundaries)
_FORBIDDEN: Pattern[str] = re.compile(
    r"\b(" + "|".join(WRITE_KEYWORDS) + r")\b",
    re.IGNORECASE,
)


def _loose_keyword(pattern: str) -> Pattern[str]:
    r"""
    Build a regex that allows arbitrary whitespace between characters of a keyword.
    Example: "insert" -> i\s*n\s*s\s*e\s*r\s*t
    """
    chars = r"\s*".join(list(pattern))
    return re.compile(rf"\b{chars}\b", re.IGNORECASE)


_FORBIDDEN_LOOSE: List[Pattern[str]] = [_loose_keyword(w) for w in WRITE_KEYWORDS]

_MAX_SQL_LEN = 200_000

# Block reason -> error code raised by enforce()
_REASON_CODES = {
    "empty_sql": ErrorCode.VALIDATION_BAD_REQUEST,
    "sql_too_long": ErrorCode.VALIDATION_BAD_REQUEST,
    "multiple_statements": ErrorCode.VALIDATION_MULTI_STATEMENT,
    "forbidden_keyword": ErrorCode.VALIDATION_FORBIDDEN_KEYWORD,
    "forbidden_ast": ErrorCode.VALIDATION_FORBIDDEN_KEYWORD,
    "parse_error": ErrorCode.VALIDATION_NON_SELECT,
    "explain_not_allowed": ErrorCode.VALIDATION_NON_SELECT,
    "non_select": ErrorCode.VALIDATION_NON_SELECT,
}

_DIALECTS = {"sqlite": "sqlite", "postgres": "postgres", "tsql": "tsql"}


def _ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


def _strip_fences(sql: str) -> str:
    m = _FENCE_RE.match(sql)
    return m.group("body") if m else sql


def _collapse_trailing_semicolons(body: str) -> str:
    """
    Keep at most one trailing semicolon. This makes 'SELECT 1;;' equivalent to 'SELECT 1;'.
    """
    body = body.rstrip()
    had_any = False
    while body.endswith(";"):
        had_any = True
        body = body[:-1].rstrip()
    return (body + ";") if had_any else body


def sanitize(sql: str) -> str:
    """
    Remove zero-width chars, strip markdown fences, trim, and normalize trailing semicolons.
    """
    if not sql:
        return ""
    sql = _ZERO_WIDTH_RE.sub("", sql)
    sql = _strip_fences(sql)
    sql = sql.strip()
    sql = _collapse_trailing_semicolons(sql)
    return sql


def _remove_comments(body: str) -> str:
    body = _BLOCK_COMMENT_RE.sub("", body)
    body = _LINE_COMMENT_RE.sub("", body)
    return body


def _has_comments(body: str) -> bool:
    return bool(_LINE_COMMENT_RE.search(body) or _BLOCK_COMMENT_RE.search(body))


def _parser_text(body: str) -> str:
    def _sub(m: re.Match[str]) -> str:
        name = m.group("name")
        return f":{name}" if name else "?"

    return _PYFORMAT_RE.sub(_sub, _remove_comments(body))


def _contains_forbidden_ast(root: exp.Expression) -> tuple[bool, str]:
    """Return (blocked, reason) based on AST nodes/commands."""
    forbidden_node_names = {
        "insert",
        "update",
        "delete",
        "drop",
        "create",
        "alter",
        "truncate",
        "merge",
        "grant",
        "revoke",
        "execute",
        "call",
        "copy",
    }
    forbidden_command_markers = ("pragma", "attach", "vacuum", "reindex", "exec")

    for node in root.walk():
        name = type(node).__name__.lower()
        if name in forbidden_node_names:
            return True, name
        if name == "command":
            try:
                text = node.sql(dialect="sqlite").lower()
            except sqlglot.errors.SqlglotError:
                text = str(node).lower()
            for kw in forbidden_command_markers:
                if kw in text:
                    return True, f"command:{kw}"
    return False, ""


def _strip_strings(body: str) -> str:
    """
    Remove string literals (so forbidden keyword checks won't fire on quoted text).
    """
    body = _STR_SINGLE_RE.sub("''", body)
    body = _STR_DOUBLE_RE.sub('""', body)
    return body


def _count_statements_semicolon(body: str) -> int:
    """
    Count statements by semicolons after removing comments and masking strings.
    """
    masked_strings = _STR_SINGLE_RE.sub("'S'", body)
    masked_strings = _STR_DOUBLE_RE.sub('"S"', masked_strings)
    no_comments = _remove_comments(masked_strings)
    parts = [p.strip() for p in no_comments.split(";")]
    non_empty = [p for p in parts if p]
    return len(non_empty) if non_empty else 0


def _count_statements_sqlglot(body: str, dialect: str) -> int:
    """
    Count statements via sqlglot parser after removing comments.
    """
    try:
        trees = sqlglot.parse(_parser_text(body), read=dialect)
        return len([t for t in trees if t is not None])
    except sqlglot.errors.SqlglotError:
        # Parse failures are reported by the root check; do not double block here.
        return 1


class Safety:
    """
    Read-only gate run before any statement reaches the database.

    Accepts a single SELECT/WITH statement (compound selects included) and
    blocks write verbs, including whitespace- or comment-obfuscated ones.
    Keywords inside string literals do not count.
    """

    name = "safety"

    def __init__(
        self,
        *,
        dialect: str = "sqlite",
        allow_explain: bool = False,
        forbid_comments: bool = False,
    ) -> None:
        self.dialect = _DIALECTS.get(dialect, "sqlite")
        self.allow_explain = allow_explain
        self.forbid_comments = forbid_comments

    def _block(
        self, t0: float, reason: str, message: str, notes: dict | None = None
    ) -> StageResult:
        safety_blocks_total.labels(reason=reason).inc()
        safety_checks_total.labels(ok="false").inc()
        return StageResult(
            ok=False,
            error=[message],
            error_code=_REASON_CODES.get(reason, ErrorCode.VALIDATION_NON_SELECT),
            retryable=False,
            trace=StageTrace(
                stage=self.name,
                duration_ms=_ms(t0),
                summary=reason,
                notes=notes,
            ),
        )

    def check(self, sql: str) -> StageResult:
        t0 = time.perf_counter()

        # 0) nil / size guard
        if not sql or not sql.strip():
            return self._block(t0, "empty_sql", "empty_sql")
        if len(sql) > _MAX_SQL_LEN:
            return self._block(t0, "sql_too_long", "sql_too_long")

        # 1) sanitize
        body = sanitize(sql)

        # 1.5) comment policy (block if any comment tokens are present)
        if self.forbid_comments and _has_comments(body):
            return self._block(t0, "forbidden_keyword", "comments_not_allowed")

        # 2) single-statement check (semicolon + parser)
        semicolon_count = _count_statements_semicolon(body)
        glot_count = _count_statements_sqlglot(body, self.dialect)
        if semicolon_count != 1 or glot_count != 1:
            return self._block(
                t0,
                "multiple_statements",
                "Multiple statements detected",
                notes={"semicolon_count": semicolon_count, "parser_count": glot_count},
            )

        # 3) forbidden keywords (ignore inside string literals; comments glue tokens)
        scan_body = _remove_comments(_strip_strings(body))
        m = _FORBIDDEN.search(scan_body)
        if m:
            tok = m.group(0).strip().lower()
            return self._block(
                t0, "forbidden_keyword", f"Forbidden: {tok}", notes={"keyword": tok}
            )
        for rx in _FORBIDDEN_LOOSE:
            m2 = rx.search(scan_body)
            if m2:
                tok = " ".join(m2.group(0).split()).lower()
                return self._block(
                    t0, "forbidden_keyword", f"Forbidden: {tok}", notes={"keyword": tok}
                )

        # 4) read-only root kind (SELECT/WITH)
        # Some dialects parse EXPLAIN to an opaque Command; judge the explained statement
        head = _EXPLAIN_HEAD_RE.match(_remove_comments(body))
        if head:
            if not self.allow_explain:
                return self._block(t0, "explain_not_allowed", "EXPLAIN not allowed")
            remainder = _remove_comments(body)[head.end():]
            try:
                inner = sqlglot.parse_one(_parser_text(remainder), read=self.dialect)
            except sqlglot.errors.SqlglotError as e:
                return self._block(
                    t0, "parse_error", "parse_error", notes={"parse_error": str(e)}
                )
            inner_type = type(inner).__name__.lower()
            if inner_type not in _SELECT_LIKE:
                return self._block(
                    t0, "non_select", f"Non-SELECT statement: {inner_type}"
                )
            safety_checks_total.labels(ok="true").inc()
            return StageResult(
                ok=True,
                data={
                    "sql": body,
                    "original_len": len(sql),
                    "sanitized_len": len(body),
                    "root": "explain",
                },
                trace=StageTrace(stage=self.name, duration_ms=_ms(t0)),
            )

        try:
            trees: list[Any] = sqlglot.parse(_parser_text(body), read=self.dialect)
            root = cast(exp.Expression, trees[0])
        except (sqlglot.errors.SqlglotError, IndexError) as e:
            return self._block(
                t0, "parse_error", "parse_error", notes={"parse_error": str(e)}
            )
        if root is None:
            return self._block(t0, "parse_error", "parse_error")

        root_type = type(root).__name__.lower()
        is_select_like = root_type in _SELECT_LIKE
        is_explain = root_type == "explain" or (
            root_type == "command" and str(root.this).lower() == "explain"
        )

        if is_explain and not self.allow_explain:
            return self._block(t0, "explain_not_allowed", "EXPLAIN not allowed")

        if not (is_select_like or (is_explain and self.allow_explain)):
            return self._block(
                t0, "non_select", f"Non-SELECT statement: {root_type}"
            )

        # 4.5) AST-based forbidden nodes / commands
        blocked, reason = _contains_forbidden_ast(root)
        if blocked:
            return self._block(
                t0, "forbidden_ast", f"Forbidden AST: {reason}", notes={"reason": reason}
            )

        # 5) success
        safety_checks_total.labels(ok="true").inc()
        return StageResult(
            ok=True,
            data={
                "sql": body,
                "original_len": len(sql),
                "sanitized_len": len(body),
                "root": root_type,
            },
            trace=StageTrace(stage=self.name, duration_ms=_ms(t0)),
        )

    def enforce(self, sql: str) -> str:
        """Run ``check`` and raise ValidationError on rejection; returns the sanitized SQL."""
        r = self.check(sql)
        if not r.ok:
            message = "; ".join(r.error or ["rejected"])
            raise ValidationError(
                message,
                code=r.error_code or ErrorCode.VALIDATION_NON_SELECT,
                details=list(r.error or []),
                extra={"reason": r.trace.summary if r.trace else None},
            )
        return r.data["sql"]
