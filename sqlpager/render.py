"""Markdown views of page and stream results, for agents reading tool output."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from adapters.sinks.serialization import json_default
from sqlpager.types import PageResult, Row, StreamSummary

PREVIEW_ROWS = 10


def _cell(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=json_default)
    text = str(value)
    return text.replace("|", "\\|").replace("\n", " ")


def markdown_table(rows: Sequence[Row], limit: int = PREVIEW_ROWS) -> str:
    preview = list(rows[: max(0, limit)])
    if not preview:
        return ""
    headers = list(preview[0].keys())
    lines = [
        "| " + " | ".join(headers) + " |",
        "| " + " | ".join("---" for _ in headers) + " |",
    ]
    for row in preview:
        lines.append("| " + " | ".join(_cell(row.get(h)) for h in headers) + " |")
    out = "\n".join(lines) + "\n"
    if len(rows) > limit:
        out += f"\n_Showing first {limit} of {len(rows)} rows._\n"
    return out


def _call(args: Dict[str, Any]) -> str:
    body = json.dumps({k: v for k, v in args.items() if v is not None}, indent=2)
    return f"```json\n{body}\n```\n"


def render_page(
    page: PageResult,
    *,
    sql: str,
    result_id: Optional[str] = None,
    include_count: bool = True,
) -> str:
    md = "# Paginated Query Results\n\n"
    md += (
        f"Query executed successfully in {page.elapsed_ms:.0f}ms "
        f"and returned {page.returned_rows} rows."
    )
    if page.total_count is not None:
        md += f" ({page.total_count} total rows)"
    md += "\n\n"

    if page.total_count is not None:
        md += "## Pagination Overview\n\n"
        md += f"- **Total Records**: {page.total_count}\n"
        md += f"- **Page Size**: {page.page_size}\n"
        md += f"- **Total Pages**: {page.estimated_total_pages}\n"
        md += f"- **Cursor Field**: {page.cursor_field}\n\n"

    if page.rows:
        md += "## Results Preview\n\n" + markdown_table(page.rows) + "\n"
    else:
        md += "**No results returned.**\n\n"

    if result_id:
        md += f"Complete results saved with ID: `{result_id}`\n\n"

    base = {
        "sql": sql,
        "page_size": page.page_size,
        "cursor_field": page.cursor_field,
        "include_count": include_count,
    }
    md += "## Navigation\n\n"
    if page.next_cursor:
        md += "### Next Page\n\n"
        md += _call({**base, "cursor": page.next_cursor, "direction": "next"}) + "\n"
    else:
        md += "**No more results available.**\n\n"
    if page.prev_cursor:
        md += "### Previous Page\n\n"
        md += _call({**base, "cursor": page.prev_cursor, "direction": "prev"}) + "\n"
        md += "### Return to First Page\n\n"
        md += _call(base)
    return md


def render_stream(summary: StreamSummary) -> str:
    md = "# Streamed Query Results\n\n## Summary\n\n"
    md += f"- **Status**: {summary.status} ({summary.termination})\n"
    md += f"- **Total Rows Processed**: {summary.total_rows:,}\n"
    md += f"- **Batches**: {summary.batch_count}\n"
    md += f"- **Execution Time**: {summary.elapsed_ms:,.0f}ms\n"
    rate = summary.rows_per_second
    if rate is not None:
        md += f"- **Average Rate**: {rate:,.0f} rows/second\n"
    md += f"- **Output Type**: {summary.output_type}\n"
    md += "\n"

    if summary.error:
        md += "## Error\n\n"
        md += (
            f"Stopped at batch {summary.error.get('batch')}: "
            f"{summary.error.get('code')}: {summary.error.get('message')}\n\n"
        )

    if summary.aggregations:
        md += "## Aggregation Results\n\n"
        md += "| Field | Operation | Result |\n|-------|-----------|--------|\n"
        for agg in summary.aggregations:
            value = agg.value
            if isinstance(value, float):
                shown = f"{value:,.4f}".rstrip("0").rstrip(".")
            else:
                shown = _cell(value)
            md += f"| {agg.field} | {agg.operation} | {shown} |\n"
        md += "\n"

    md += "## Accessing Results\n\n"
    if summary.stored:
        md += f"Results saved with ID: `{summary.result_id}`\n\n"
    elif summary.sink_error:
        md += f"Results could not be saved: {summary.sink_error}\n\n"

    if summary.sample_rows and summary.output_type == "json":
        md += "## Data Sample\n\n" + markdown_table(summary.sample_rows)
        md += (
            f"\n_Sample of {len(summary.sample_rows)} rows "
            f"from {summary.total_rows} total rows_\n"
        )
    return md


def render_stored(doc: Dict[str, Any], *, preview: int = PREVIEW_ROWS) -> str:
    meta = doc.get("metadata") or {}
    rows: List[Row] = doc.get("results") or []
    md = "# Query Results\n\n"
    md += f"- **ID**: {meta.get('uuid')}\n"
    md += f"- **Timestamp**: {meta.get('timestamp')}\n"
    if meta.get("query"):
        md += f"- **Query**: `{meta.get('query')}`\n"
    count = meta.get("row_count", meta.get("total_rows"))
    if count is not None:
        md += f"- **Rows**: {count}\n"
    md += "\n"
    if rows:
        md += markdown_table(rows, limit=preview)
    else:
        md += "_No rows stored with this result._\n"
    return md
