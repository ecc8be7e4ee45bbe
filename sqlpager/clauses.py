from __future__ import annotations

import re
from typing import List, Optional, Pattern, Protocol, Tuple

from sqlpager.types import SelectColumn, StatementShape

# ------------------------- Literal / comment masking -------------------------

# One alternation so the leftmost token wins ('--' inside a string is not a comment)
_MASK_RE: Pattern[str] = re.compile(
    r"(?P<str>'(?:[^'\\]|\\.|'')*')"
    r"|(?P<dq>\"(?:[^\"]|\"\")*\")"
    r"|(?P<br>\[[^\]]*\])"
    r"|(?P<bt>`[^`]*`)"
    r"|(?P<block>/\*.*?\*/)"
    r"|(?P<line>--[^\n]*)",
    re.DOTALL,
)

_CLAUSE_RE: Pattern[str] = re.compile(
    r"\b(?P<kw>select|from|where|group\s+by|having|window|order\s+by|limit|offset"
    r"|fetch|for\s+(?:json|xml|browse)|union|intersect|except)\b",
    re.IGNORECASE,
)

_SELECT_HEAD_RE: Pattern[str] = re.compile(
    r"\s*(?:(?:distinct|all)\s+)?"
    r"(?P<top>top\s*(?:\(\s*[^)]*\)|\d+)(?:\s+percent)?(?:\s+with\s+ties)?\s+)?",
    re.IGNORECASE,
)

_ORDER_SUFFIX_RE: Pattern[str] = re.compile(
    r"(\s+collate\s+\S+)?(\s+(asc|desc))?(\s+nulls\s+(first|last))?\s*$",
    re.IGNORECASE,
)

_ROW_LIMIT_RE: Pattern[str] = re.compile(
    r"^\s*(?:limit\s+(?P<limit>\d+)"
    r"|fetch\s+(?:first|next)\s+(?P<fetch>\d+)\s+rows?\s+only)\s*$",
    re.IGNORECASE,
)
_TOP_COUNT_RE: Pattern[str] = re.compile(
    r"^top\s*(?:\(\s*(?P<paren>\d+)\s*\)|(?P<bare>\d+))\s*$", re.IGNORECASE
)

_AS_ALIAS_RE: Pattern[str] = re.compile(
    r"^(?P<expr>.*\S)\s+as\s+(?P<alias>[A-Za-z_][\w$]*|\"[^\"]+\"|\[[^\]]+\]|`[^`]+`)$",
    re.IGNORECASE | re.DOTALL,
)
_BARE_ALIAS_RE: Pattern[str] = re.compile(
    r"^(?P<expr>.*[\w\)\]\"'`])\s+(?P<alias>[A-Za-z_][\w$]*|\"[^\"]+\"|\[[^\]]+\])$",
    re.DOTALL,
)

_PART = r"(?:[A-Za-z_][\w$]*|\"[^\"]+\"|\[[^\]]+\]|`[^`]+`)"
IDENTIFIER_RE: Pattern[str] = re.compile(rf"^{_PART}(?:\.{_PART}){{0,2}}$")

# Words that can trail an expression without being an alias
_NOT_ALIASES = {
    "and", "or", "not", "is", "null", "as", "in", "like", "between", "then",
    "else", "end", "when", "case", "asc", "desc", "distinct", "all",
}

_FILTER_BOUNDARIES = (
    "group by", "having", "window", "order by", "limit", "offset", "fetch", "for",
)
_COMPOUND = ("union", "intersect", "except")


def mask_sql(sql: str) -> str:
    """
    Return ``sql`` with string literals, quoted identifiers and comments
    blanked out, keeping every offset stable. Literal and identifier bodies
    become underscores, comments become spaces.
    """

    def _blank(m: re.Match[str]) -> str:
        text = m.group(0)
        if m.lastgroup in ("block", "line"):
            return " " * len(text)
        return text[0] + "_" * (len(text) - 2) + text[-1]

    return _MASK_RE.sub(_blank, sql)


def _depths(masked: str) -> List[int]:
    out: List[int] = []
    depth = 0
    for ch in masked:
        if ch == "(":
            out.append(depth)
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
            out.append(depth)
        else:
            out.append(depth)
    return out


def split_top_level(text: str, masked: str, sep: str = ",") -> List[str]:
    """Split ``text`` on ``sep`` occurrences that sit outside parentheses."""
    parts: List[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(masked):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == sep and depth == 0:
            parts.append(text[start:i])
            start = i + 1
    parts.append(text[start:])
    return [p.strip() for p in parts]


def unquote_identifier(name: str) -> str:
    name = name.strip()
    if len(name) >= 2 and (
        (name[0] == "[" and name[-1] == "]")
        or (name[0] == '"' and name[-1] == '"')
        or (name[0] == "`" and name[-1] == "`")
    ):
        return name[1:-1]
    return name


def last_segment(name: str) -> str:
    """``t."Id"`` -> ``Id``; used to look a field up in result rows."""
    masked = mask_sql(name)
    cut = masked.rfind(".")
    return unquote_identifier(name[cut + 1 :] if cut >= 0 else name)


def strip_comments(sql: str) -> str:
    def _keep(m: re.Match[str]) -> str:
        return " " if m.lastgroup in ("block", "line") else m.group(0)

    return _MASK_RE.sub(_keep, sql)


def normalize_statement(sql: str) -> str:
    """Drop comments, trim whitespace and trailing semicolons."""
    sql = strip_comments(sql or "").strip()
    masked = mask_sql(sql)
    end = len(masked)
    while end > 0 and (masked[end - 1].isspace() or masked[end - 1] == ";"):
        end -= 1
    return sql[:end]


def _column_from_item(item: str) -> SelectColumn:
    item = item.strip()
    masked = mask_sql(item)
    if masked.endswith("*"):
        return SelectColumn(expression=item, name=None)

    m = _AS_ALIAS_RE.match(masked)
    if m:
        cut = m.start("alias")
        expr = item[: m.end("expr")]
        return SelectColumn(expression=expr, name=unquote_identifier(item[cut:]))

    if IDENTIFIER_RE.match(item):
        return SelectColumn(expression=item, name=last_segment(item))

    m = _BARE_ALIAS_RE.match(item)
    if m and m.group("alias").lower() not in _NOT_ALIASES:
        return SelectColumn(
            expression=m.group("expr"), name=unquote_identifier(m.group("alias"))
        )

    return SelectColumn(expression=item, name=None)


class ClauseAnalyzer(Protocol):
    """Produces a StatementShape; swap in a parser-backed one without touching callers."""

    def analyze(self, sql: str) -> StatementShape: ...


class RegexClauseAnalyzer:
    """
    Clause-boundary scanner over masked SQL text.

    Only keywords outside parentheses, literals and comments count. This is
    not a parser: nested selects are opaque, and compound statements
    (UNION/INTERSECT/EXCEPT) are only flagged, never split.
    """

    name = "regex"

    def analyze(self, sql: str) -> StatementShape:
        text = normalize_statement(sql)
        masked = mask_sql(text)
        depths = _depths(masked)

        marks: List[Tuple[str, int, int]] = []
        for m in _CLAUSE_RE.finditer(masked):
            if depths[m.start()] != 0:
                continue
            kw = " ".join(m.group("kw").lower().split())
            if kw.startswith("for "):
                kw = "for"
            marks.append((kw, m.start(), m.end()))

        compound_at = [pos for kw, pos, _ in marks if kw in _COMPOUND]
        compound = bool(compound_at)
        head_end = compound_at[0] if compound else len(text)
        tail_start = compound_at[-1] if compound else 0

        head = [mk for mk in marks if mk[1] < head_end]
        tail = [mk for mk in marks if mk[1] >= tail_start]

        def _first(kinds: Tuple[str, ...], pool, after: int = -1):
            for mk in pool:
                if mk[0] in kinds and mk[1] > after:
                    return mk
            return None

        def _next_boundary(after: int, kinds: Tuple[str, ...]) -> int:
            for kw, pos, _ in marks:
                if pos > after and (kw in kinds or kw in _COMPOUND):
                    return pos
            return len(text)

        # --- select list ---
        columns: Tuple[SelectColumn, ...] = ()
        has_top = False
        top_count: Optional[int] = None
        select_mk = _first(("select",), head)
        if select_mk is not None:
            head_m = _SELECT_HEAD_RE.match(masked, select_mk[2])
            list_start = head_m.end() if head_m else select_mk[2]
            has_top = bool(head_m and head_m.group("top"))
            if has_top:
                tm = _TOP_COUNT_RE.match(head_m.group("top").strip())
                if tm:
                    top_count = int(tm.group("paren") or tm.group("bare"))
            from_mk = _first(("from",), head, after=select_mk[1])
            list_end = (
                from_mk[1]
                if from_mk is not None
                else _next_boundary(select_mk[1], ("where",) + _FILTER_BOUNDARIES)
            )
            items = split_top_level(
                text[list_start:list_end], masked[list_start:list_end]
            )
            columns = tuple(_column_from_item(i) for i in items if i)

        # --- filter ---
        where_mk = _first(("where",), head)
        where_span: Optional[Tuple[int, int]] = None
        if where_mk is not None:
            where_span = (where_mk[1], _next_boundary(where_mk[1], _FILTER_BOUNDARIES))
            filter_insert_at = where_span[1]
        else:
            from_mk = _first(("from",), head)
            anchor = from_mk[1] if from_mk is not None else 0
            filter_insert_at = _next_boundary(anchor, _FILTER_BOUNDARIES)

        # --- ordering / limiting (apply to the whole statement) ---
        order_mk = _first(("order by",), tail)
        limit_mk = _first(("limit", "offset", "fetch"), tail)
        for_mk = _first(("for",), tail)

        order_span: Optional[Tuple[int, int]] = None
        order_fields: Tuple[str, ...] = ()
        order_descending: Tuple[bool, ...] = ()
        if order_mk is not None:
            end = _next_boundary(order_mk[1], ("limit", "offset", "fetch", "for"))
            order_span = (order_mk[1], end)
            body = text[order_mk[2] : end]
            items = split_top_level(body, masked[order_mk[2] : end])
            items = [i for i in items if i.strip()]
            order_fields = tuple(_ORDER_SUFFIX_RE.sub("", i) for i in items)
            order_descending = tuple(
                (_ORDER_SUFFIX_RE.search(i).group(3) or "").lower() == "desc"
                for i in items
            )

        row_limit: Optional[int] = None
        if limit_mk is not None:
            limit_end = len(text)
            if for_mk is not None and for_mk[1] > limit_mk[1]:
                limit_end = for_mk[1]
            lm = _ROW_LIMIT_RE.match(masked[limit_mk[1] : limit_end])
            if lm:
                row_limit = int(lm.group("limit") or lm.group("fetch"))
        elif top_count is not None and not compound:
            row_limit = top_count

        if limit_mk is not None:
            order_insert_at = limit_mk[1]
        elif for_mk is not None:
            order_insert_at = for_mk[1]
        else:
            order_insert_at = len(text)

        return StatementShape(
            sql=text,
            select_columns=columns,
            where_span=where_span,
            order_span=order_span,
            order_fields=order_fields,
            order_descending=order_descending,
            limit_start=limit_mk[1] if limit_mk is not None else None,
            row_limit=row_limit,
            has_top=has_top,
            filter_insert_at=filter_insert_at,
            order_insert_at=order_insert_at,
            compound=compound,
        )
