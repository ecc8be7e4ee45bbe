from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlpager.clauses import (
    IDENTIFIER_RE,
    ClauseAnalyzer,
    RegexClauseAnalyzer,
    last_segment,
    unquote_identifier,
)
from sqlpager.cursor import CursorCodec
from sqlpager.errors import (
    CursorDecodeError,
    ErrorCode,
    QueryRewriteAmbiguity,
    ValidationError,
)
from sqlpager.types import BACKWARD_OPERATORS, Cursor, RewriteResult, StatementShape

log = logging.getLogger(__name__)

# Select-list names that usually carry a unique key, in priority order
KEY_NAMES = ("id", "key", "primary_key", "primarykey")
_KEY_SUFFIX_RE = re.compile(r"(?:_id|[a-z0-9]Id|ID)$")
_POSITIONAL_RE = re.compile(r"^\d+$")

PLACEHOLDERS = {
    "sqlite": ":{name}",
    "postgres": "%({name})s",
    "tsql": "@{name}",
}


def placeholder(name: str, dialect: str) -> str:
    template = PLACEHOLDERS.get(dialect, PLACEHOLDERS["sqlite"])
    return template.format(name=name)


def row_bound(page_size: int, dialect: str) -> str:
    if dialect == "tsql":
        return f"OFFSET 0 ROWS FETCH NEXT {page_size} ROWS ONLY"
    return f"LIMIT {page_size}"


def is_identifier(name: str) -> bool:
    return bool(name) and bool(IDENTIFIER_RE.match(name.strip()))


def _apply_edits(sql: str, edits: List[Tuple[int, int, str]]) -> str:
    """
    Apply ``(start, end, text)`` edits against the original offsets of ``sql``.
    Edits sharing a start offset keep their list order.
    """
    chunks: List[str] = []
    pos = 0
    for start, end, text in sorted(edits, key=lambda e: e[0]):
        chunks.append(sql[pos:start].strip())
        chunks.append(text)
        pos = end
    chunks.append(sql[pos:].strip())
    return " ".join(c for c in chunks if c)


def _key_column(shape: StatementShape) -> Optional[str]:
    names = [c.name for c in shape.select_columns if c.name]
    for wanted in KEY_NAMES:
        for n in names:
            if n.lower() == wanted:
                return n
    for n in names:
        if _KEY_SUFFIX_RE.search(n):
            return n
    return None


def resolve_cursor_field(
    shape: StatementShape, explicit: Optional[str] = None
) -> Tuple[str, str]:
    """
    Return ``(field, source)`` with source one of explicit | order_by | select.

    Raises QueryRewriteAmbiguity when nothing usable is found; callers fall
    back to their default field.
    """
    if explicit:
        if not is_identifier(explicit):
            raise ValidationError(
                f"cursor_field is not a plain identifier: {explicit!r}",
                code=ErrorCode.VALIDATION_BAD_REQUEST,
            )
        return explicit.strip(), "explicit"

    if shape.order_fields:
        first = shape.order_fields[0].strip()
        if _POSITIONAL_RE.match(first):
            idx = int(first) - 1
            if 0 <= idx < len(shape.select_columns):
                name = shape.select_columns[idx].name
                if name:
                    return name, "order_by"
        elif is_identifier(first):
            return unquote_identifier(first) if "." not in first else first, "order_by"

    key = _key_column(shape)
    if key:
        return key, "select"

    raise QueryRewriteAmbiguity(
        "could not infer an ordering field from the statement",
        details=[shape.sql[:200]],
    )


def orders_descending(shape: StatementShape, field: str) -> bool:
    """True when the leading ORDER BY item is ``field`` and it is ordered DESC."""
    if not shape.order_descending or not shape.order_descending[0]:
        return False
    first = shape.order_fields[0].strip()
    if _POSITIONAL_RE.match(first):
        idx = int(first) - 1
        if not 0 <= idx < len(shape.select_columns):
            return False
        first = shape.select_columns[idx].name or ""
    wanted = last_segment(field).lower()
    if last_segment(first).lower() == wanted:
        return True
    # ORDER BY the source expression of an aliased field
    return any(
        c.name is not None
        and c.name.lower() == wanted
        and c.expression.strip() == first
        for c in shape.select_columns
    )


class StatementRewriter:
    """
    Rewrites a read-only statement into one page of a cursor walk.

    1. resolve the effective ordering field
    2. guarantee an ORDER BY on it (DESC for backward cursors we own);
       a caller ORDER BY <field> DESC makes ``<`` the forward operator
    3. splice the cursor predicate into the filter position
    4. bound the rows when no limiting clause exists
    """

    def __init__(
        self,
        *,
        dialect: str = "sqlite",
        default_field: str = "id",
        analyzer: ClauseAnalyzer | None = None,
    ) -> None:
        self.dialect = dialect
        self.default_field = default_field
        self.analyzer: ClauseAnalyzer = analyzer or RegexClauseAnalyzer()

    def analyze(self, sql: str) -> StatementShape:
        return self.analyzer.analyze(sql)

    def resolve_field(
        self, sql: str | StatementShape, cursor_field: Optional[str] = None
    ) -> Tuple[str, str]:
        shape = sql if isinstance(sql, StatementShape) else self.analyze(sql)
        try:
            return resolve_cursor_field(shape, cursor_field)
        except QueryRewriteAmbiguity:
            log.warning(
                "No ORDER BY or key column found, using default cursor field: %s",
                self.default_field,
            )
            return self.default_field, "default"

    def count_statement(self, sql: str) -> str:
        """Wrap the statement, minus ordering and limiting, in COUNT(*)."""
        shape = self.analyze(sql)
        body = shape.sql
        cut = len(body)
        if shape.order_span is not None:
            cut = min(cut, shape.order_span[0])
        if shape.limit_start is not None:
            cut = min(cut, shape.limit_start)
        body = body[:cut].rstrip()
        return f"SELECT COUNT(*) AS total_count FROM ({body}) AS count_query"

    def _predicate_target(self, shape: StatementShape, field: str) -> str:
        # An output alias is not visible in WHERE; compare against its expression
        bare = last_segment(field)
        for col in shape.select_columns:
            if col.name and col.name == bare and col.expression.strip() != field:
                if not is_identifier(col.expression) and "." not in field:
                    return f"({col.expression})"
                if is_identifier(col.expression):
                    return col.expression
        return field

    def _param_name(self, field: str, taken: Mapping[str, Any]) -> str:
        base = "cursor_" + re.sub(r"[^A-Za-z0-9_]", "_", last_segment(field))
        name = base
        n = 1
        while name in taken:
            name = f"{base}_{n}"
            n += 1
        return name

    def rewrite(
        self,
        sql: str,
        *,
        cursor_field: Optional[str] = None,
        cursor: Optional[str] = None,
        page_size: int = 100,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> RewriteResult:
        shape = self.analyze(sql)
        params: Dict[str, Any] = dict(parameters or {})
        notes: Dict[str, Any] = {}
        if shape.compound:
            notes["compound_statement"] = True

        field, source = self.resolve_field(shape, cursor_field)
        if source == "default":
            notes["field_fallback"] = "default"

        decoded: Optional[Cursor] = None
        if cursor:
            try:
                decoded = CursorCodec.decode(cursor)
            except CursorDecodeError as exc:
                log.warning("Error processing cursor, serving first page: %s", exc)
                notes["cursor_ignored"] = "undecodable"
            else:
                if last_segment(decoded.field) != last_segment(field):
                    log.warning(
                        "Cursor field %r does not match effective field %r; ignoring cursor",
                        decoded.field,
                        field,
                    )
                    notes["cursor_ignored"] = "field_mismatch"
                    decoded = None

        descending = shape.has_order and orders_descending(shape, field)
        # Backward means against the walk order, which a DESC ordering flips
        backward = decoded is not None and (
            (decoded.operator in BACKWARD_OPERATORS) != descending
        )
        reversed_rows = False
        edits: List[Tuple[int, int, str]] = []

        if decoded is not None:
            pname = self._param_name(field, params)
            target = self._predicate_target(shape, field)
            predicate = f"{target} {decoded.operator} {placeholder(pname, self.dialect)}"
            if shape.where_span is not None:
                w_start, w_end = shape.where_span
                cond = shape.sql[w_start + len("where") : w_end].strip()
                edits.append((w_start, w_end, f"WHERE ({cond}) AND {predicate}"))
            else:
                at = shape.filter_insert_at
                edits.append((at, at, f"WHERE {predicate}"))
            params[pname] = decoded.value
            log.info("Applied cursor: %s %s %r", field, decoded.operator, decoded.value)

        if not shape.has_order:
            direction = "DESC" if backward else "ASC"
            reversed_rows = backward
            at = shape.order_insert_at
            edits.append((at, at, f"ORDER BY {field} {direction}"))
        elif backward:
            notes["backward_with_caller_order"] = True

        if not shape.has_limit:
            at = shape.order_insert_at
            edits.append((at, at, row_bound(page_size, self.dialect)))

        return RewriteResult(
            sql=_apply_edits(shape.sql, edits),
            parameters=params,
            cursor_field=field,
            field_source=source,
            cursor_applied=decoded is not None,
            cursor=decoded,
            reversed=reversed_rows,
            descending=descending,
            notes=notes,
        )
