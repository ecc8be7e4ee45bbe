from __future__ import annotations

from typing import Any, Dict, List

import pytest

from adapters.db.sqlite_adapter import SQLiteAdapter
from sqlpager.cursor import CursorCodec
from sqlpager.errors import ErrorCode, ValidationError
from sqlpager.executor import Executor
from sqlpager.pagination import PaginationController, row_value, truncate_page
from sqlpager.types import Cursor, ExecutionResult, PageRequest


class RecordingPort:
    """Fake execution port: replays canned rows and records every call."""

    name = "fake"
    dialect = "sqlite"

    def __init__(self, rows: List[Dict[str, Any]]):
        self.rows = rows
        self.calls: List[tuple] = []

    def execute(self, sql, parameters=None):
        self.calls.append((sql, dict(parameters or {})))
        if "COUNT(*)" in sql:
            return ExecutionResult(rows=[{"total_count": len(self.rows)}], columns=["total_count"])
        return ExecutionResult(rows=list(self.rows), columns=list(self.rows[0]) if self.rows else [])

    def ping(self):
        return None


def _controller(port) -> PaginationController:
    return PaginationController(Executor(port))


def _walk(controller, sql, page_size, **kw):
    pages = []
    cursor = None
    while True:
        page = controller.fetch_page(
            PageRequest(sql=sql, page_size=page_size, cursor=cursor, **kw)
        )
        pages.append(page)
        if not page.has_more:
            return pages
        cursor = page.next_cursor


# ---------------------------------------------------------------------------
# Against a real SQLite file
# ---------------------------------------------------------------------------


def test_walk_visits_every_row_once(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    pages = _walk(controller, "SELECT id, name FROM items", 4)

    ids = [r["id"] for p in pages for r in p.rows]
    assert ids == list(range(1, 15))
    assert [p.returned_rows for p in pages] == [4, 4, 4, 2]
    assert pages[-1].next_cursor is None


def test_exact_multiple_ends_with_empty_page(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    pages = _walk(controller, "SELECT id FROM items WHERE id <= 4", 2)

    assert [[r["id"] for r in p.rows] for p in pages] == [[1, 2], [3, 4], []]
    assert pages[1].has_more
    assert not pages[2].has_more


def test_first_page_has_no_prev_cursor(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    first = controller.fetch_page(PageRequest(sql="SELECT id FROM items", page_size=3))
    assert first.prev_cursor is None

    second = controller.fetch_page(
        PageRequest(sql="SELECT id FROM items", page_size=3, cursor=first.next_cursor)
    )
    assert [r["id"] for r in second.rows] == [4, 5, 6]
    assert second.prev_cursor is not None
    assert CursorCodec.decode(second.prev_cursor).operator == "<="


def test_prev_cursor_returns_rows_in_ascending_order(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    back = CursorCodec.encode("id", 9, "<=")
    page = controller.fetch_page(
        PageRequest(sql="SELECT id FROM items", page_size=3, cursor=back)
    )
    assert [r["id"] for r in page.rows] == [7, 8, 9]


def test_descending_order_walks_with_less_than(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    pages = _walk(controller, "SELECT id FROM items ORDER BY id DESC", 5)

    ids = [r["id"] for p in pages for r in p.rows]
    assert ids == list(range(14, 0, -1))
    assert [p.returned_rows for p in pages] == [5, 5, 4]
    assert CursorCodec.decode(pages[0].next_cursor) == Cursor("id", 10, "<")
    assert CursorCodec.decode(pages[1].prev_cursor) == Cursor("id", 9, ">=")


def test_descending_positional_order_is_detected(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    page = controller.fetch_page(
        PageRequest(sql="SELECT id, name FROM items ORDER BY 1 DESC", page_size=3)
    )
    assert [r["id"] for r in page.rows] == [14, 13, 12]
    assert CursorCodec.decode(page.next_cursor).operator == "<"


def test_truncate_page_rebuilds_next_cursor(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    page = controller.fetch_page(
        PageRequest(sql="SELECT id FROM items LIMIT 10", page_size=3)
    )
    assert page.returned_rows == 10

    cut = truncate_page(page, 3)
    assert [r["id"] for r in cut.rows] == [1, 2, 3]
    assert cut.has_more
    assert CursorCodec.decode(cut.next_cursor) == Cursor("id", 3, ">")
    assert truncate_page(cut, 3) is cut


def test_total_count_and_estimated_pages(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    page = controller.fetch_page(
        PageRequest(sql="SELECT id FROM items", page_size=4, include_count=True)
    )
    assert page.total_count == 14
    assert page.estimated_total_pages == 4


def test_repeated_fetch_is_idempotent(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    req = PageRequest(
        sql="SELECT id, name FROM items",
        page_size=5,
        cursor=CursorCodec.encode("id", 3),
    )
    a = controller.fetch_page(req)
    b = controller.fetch_page(req)
    assert a.rows == b.rows
    assert a.next_cursor == b.next_cursor


def test_caller_filter_and_parameters_survive(items_db):
    controller = _controller(SQLiteAdapter(str(items_db)))
    pages = _walk(
        controller,
        "SELECT id, category FROM items WHERE category = :cat",
        3,
        parameters={"cat": "even"},
    )
    ids = [r["id"] for p in pages for r in p.rows]
    assert ids == [2, 4, 6, 8, 10, 12, 14]


def test_count_failure_is_not_fatal():
    class CountFails(RecordingPort):
        def execute(self, sql, parameters=None):
            if "COUNT(*)" in sql:
                raise RuntimeError("database is locked")
            return super().execute(sql, parameters)

    port = CountFails([{"id": 1}])
    page = _controller(port).fetch_page(
        PageRequest(sql="SELECT id FROM t", page_size=10, include_count=True)
    )
    assert page.total_count is None
    assert "count_failed" in page.notes
    assert page.rows == [{"id": 1}]


# ---------------------------------------------------------------------------
# With a fake port
# ---------------------------------------------------------------------------


def test_safety_rejects_before_port_is_called():
    port = RecordingPort([{"id": 1}])
    with pytest.raises(ValidationError) as exc:
        _controller(port).fetch_page(PageRequest(sql="DELETE FROM t", page_size=10))
    assert exc.value.code == ErrorCode.VALIDATION_FORBIDDEN_KEYWORD
    assert port.calls == []


def test_full_page_reports_has_more():
    port = RecordingPort([{"id": 1}, {"id": 2}])
    page = _controller(port).fetch_page(PageRequest(sql="SELECT id FROM t", page_size=2))
    assert page.has_more
    assert CursorCodec.decode(page.next_cursor) == Cursor("id", 2, ">")


def test_missing_cursor_field_disables_cursors():
    port = RecordingPort([{"name": "a"}, {"name": "b"}])
    page = _controller(port).fetch_page(PageRequest(sql="SELECT name FROM t", page_size=2))
    assert page.has_more
    assert page.next_cursor is None
    assert page.notes["cursor_field_missing"] is True
    assert page.notes["field_fallback"] == "default"


def test_undecodable_cursor_serves_first_page():
    port = RecordingPort([{"id": 1}])
    page = _controller(port).fetch_page(
        PageRequest(sql="SELECT id FROM t", page_size=5, cursor="@@not-a-cursor@@")
    )
    assert page.notes["cursor_ignored"] == "undecodable"
    sql, params = port.calls[-1]
    assert "WHERE" not in sql
    assert params == {}


def test_row_value_is_case_insensitive_and_unqualified():
    row = {"ID": 3, "name": "x"}
    assert row_value(row, "t.id") == 3
    assert row_value(row, "name") == "x"


def test_page_request_rejects_non_positive_size():
    with pytest.raises(ValidationError):
        PageRequest(sql="SELECT 1", page_size=0)
