from prometheus_client import Counter, Histogram
from sqlpager.prom import REGISTRY


# -----------------------------------------------------------------------------
#  Stage-level metrics
# -----------------------------------------------------------------------------
stage_duration_ms = Histogram(
    "stage_duration_ms",
    "Duration (ms) of each query stage",
    ["stage"],  # e.g. safety|count|rewrite|execute|page|stream
    buckets=(1, 2, 5, 10, 20, 50, 100, 200, 500, 1000, 2000, 5000, 10000, 60000),
    registry=REGISTRY,
)

stage_calls_total = Counter(
    "stage_calls_total",
    "Count of stage calls labeled by stage and ok",
    ["stage", "ok"],
    registry=REGISTRY,
)

stage_errors_total = Counter(
    "stage_errors_total",
    "Count of stage errors labeled by stage and error_code",
    ["stage", "error_code"],
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
#  Safety stage metrics
# -----------------------------------------------------------------------------
safety_blocks_total = Counter(
    "safety_blocks_total",
    "Count of blocked SQL queries by safety checks",
    ["reason"],  # e.g. forbidden_keyword, multiple_statements, non_select
    registry=REGISTRY,
)

safety_checks_total = Counter(
    "safety_checks_total",
    "Total SQL queries checked by safety",
    ["ok"],  # "true" or "false"
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
#  Pagination metrics
# -----------------------------------------------------------------------------
page_fetches_total = Counter(
    "page_fetches_total",
    "Total page fetches labeled by direction and whether more rows remain",
    ["direction", "has_more"],
    registry=REGISTRY,
)

cursor_fallbacks_total = Counter(
    "cursor_fallbacks_total",
    "Cursor/field fallbacks taken while rewriting statements",
    ["reason"],  # undecodable | field_mismatch | default_field | field_missing
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
#  Streaming metrics
# -----------------------------------------------------------------------------
stream_runs_total = Counter(
    "stream_runs_total",
    "Streaming aggregation runs labeled by termination reason",
    ["termination"],  # exhausted | max_rows | cancelled | deadline | error
    registry=REGISTRY,
)

stream_batches_total = Counter(
    "stream_batches_total",
    "Batches fetched by streaming runs",
    registry=REGISTRY,
)

stream_rows_total = Counter(
    "stream_rows_total",
    "Rows consumed by streaming runs",
    registry=REGISTRY,
)

sink_errors_total = Counter(
    "sink_errors_total",
    "Result sink failures labeled by operation",
    ["op"],  # store | fetch | list
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
#  Prime all counters with zero to ensure Grafana panels always have data
# -----------------------------------------------------------------------------
for reason in (
    "empty_sql",
    "sql_too_long",
    "forbidden_keyword",
    "multiple_statements",
    "non_select",
    "explain_not_allowed",
    "parse_error",
    "forbidden_ast",
):
    safety_blocks_total.labels(reason=reason).inc(0)

for ok in ("true", "false"):
    safety_checks_total.labels(ok=ok).inc(0)

for stage in ("safety", "count", "execute", "page", "stream", "sink"):
    for ok in ("true", "false"):
        stage_calls_total.labels(stage=stage, ok=ok).inc(0)

for direction in ("next", "prev"):
    for has_more in ("true", "false"):
        page_fetches_total.labels(direction=direction, has_more=has_more).inc(0)

for reason in ("undecodable", "field_mismatch", "default_field", "field_missing"):
    cursor_fallbacks_total.labels(reason=reason).inc(0)

for termination in ("exhausted", "max_rows", "cancelled", "deadline", "error"):
    stream_runs_total.labels(termination=termination).inc(0)

for op in ("store", "fetch", "list"):
    sink_errors_total.labels(op=op).inc(0)
