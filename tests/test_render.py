from __future__ import annotations

from sqlpager.render import markdown_table, render_page, render_stored, render_stream
from sqlpager.types import AggregationResult, PageResult, StreamSummary


def _page(**kw) -> PageResult:
    base = dict(
        rows=[{"id": 1, "name": "a|b"}, {"id": 2, "name": None}],
        columns=["id", "name"],
        cursor_field="id",
        page_size=2,
        has_more=True,
        next_cursor="NEXT",
        total_count=5,
        elapsed_ms=3.0,
    )
    base.update(kw)
    return PageResult(**base)


def test_markdown_table_escapes_pipes_and_nulls():
    md = markdown_table([{"id": 1, "name": "a|b"}, {"id": 2, "name": None}])
    lines = md.splitlines()
    assert lines[0] == "| id | name |"
    assert lines[2] == "| 1 | a\\|b |"
    assert lines[3] == "| 2 | NULL |"


def test_markdown_table_notes_truncation_and_handles_empty():
    rows = [{"id": i} for i in range(12)]
    assert "_Showing first 10 of 12 rows._" in markdown_table(rows)
    assert markdown_table(rows, limit=0) == ""


def test_render_page_includes_navigation():
    md = render_page(_page(), sql="SELECT id, name FROM t", result_id="r-1")
    assert "(5 total rows)" in md
    assert "- **Total Pages**: 3" in md
    assert "### Next Page" in md
    assert '"cursor": "NEXT"' in md
    assert "Complete results saved with ID: `r-1`" in md
    assert "### Previous Page" not in md


def test_render_page_last_page_with_previous():
    md = render_page(
        _page(has_more=False, next_cursor=None, prev_cursor="PREV"), sql="SELECT 1"
    )
    assert "**No more results available.**" in md
    assert '"cursor": "PREV"' in md
    assert "### Return to First Page" in md


def test_render_stream_summary_and_error():
    summary = StreamSummary(
        result_id="s-1",
        status="partial",
        termination="error",
        cursor_field="id",
        output_type="summary",
        total_rows=10,
        batch_count=2,
        elapsed_ms=100.0,
        aggregations=[AggregationResult(field="price", operation="avg", value=2.5)],
        error={"code": "DB_LOCKED", "message": "database is locked", "batch": 3},
        stored=True,
    )
    md = render_stream(summary)
    assert "- **Status**: partial (error)" in md
    assert "Stopped at batch 3: DB_LOCKED: database is locked" in md
    assert "| price | avg | 2.5 |" in md
    assert "Results saved with ID: `s-1`" in md


def test_render_stored_preview():
    doc = {
        "metadata": {"uuid": "x", "timestamp": "t", "query": "SELECT 1", "row_count": 1},
        "results": [{"one": 1}],
    }
    md = render_stored(doc)
    assert "- **ID**: x" in md
    assert "| one |" in md
    assert "_No rows stored" in render_stored({"metadata": {"uuid": "y"}})
