from __future__ import annotations

from adapters.metrics.base import Direction, Metrics, Termination
from sqlpager.metrics import (
    cursor_fallbacks_total,
    page_fetches_total,
    sink_errors_total,
    stage_calls_total,
    stage_duration_ms,
    stage_errors_total,
    stream_batches_total,
    stream_rows_total,
    stream_runs_total,
)


class PrometheusMetrics(Metrics):
    def observe_stage_duration_ms(self, *, stage: str, dt_ms: float) -> None:
        stage_duration_ms.labels(stage=stage).observe(float(dt_ms))

    def inc_stage_call(self, *, stage: str, ok: bool) -> None:
        stage_calls_total.labels(stage=stage, ok=("true" if ok else "false")).inc()

    def inc_stage_error(self, *, stage: str, error_code: str) -> None:
        stage_errors_total.labels(stage=stage, error_code=str(error_code)).inc()

    def inc_page_fetch(self, *, direction: Direction, has_more: bool) -> None:
        page_fetches_total.labels(
            direction=direction, has_more=("true" if has_more else "false")
        ).inc()

    def inc_cursor_fallback(self, *, reason: str) -> None:
        cursor_fallbacks_total.labels(reason=str(reason)).inc()

    def inc_stream_run(self, *, termination: Termination) -> None:
        stream_runs_total.labels(termination=termination).inc()

    def inc_stream_batch(self, *, rows: int) -> None:
        stream_batches_total.inc()
        if rows:
            stream_rows_total.inc(rows)

    def inc_sink_error(self, *, op: str) -> None:
        sink_errors_total.labels(op=str(op)).inc()
