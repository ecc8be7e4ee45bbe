from __future__ import annotations

from adapters.metrics.base import Direction, Metrics, Termination


class NoOpMetrics(Metrics):
    def observe_stage_duration_ms(self, *, stage: str, dt_ms: float) -> None:
        return

    def inc_stage_call(self, *, stage: str, ok: bool) -> None:
        return

    def inc_stage_error(self, *, stage: str, error_code: str) -> None:
        return

    def inc_page_fetch(self, *, direction: Direction, has_more: bool) -> None:
        return

    def inc_cursor_fallback(self, *, reason: str) -> None:
        return

    def inc_stream_run(self, *, termination: Termination) -> None:
        return

    def inc_stream_batch(self, *, rows: int) -> None:
        return

    def inc_sink_error(self, *, op: str) -> None:
        return
