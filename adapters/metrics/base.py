from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

Direction = Literal["next", "prev"]
Termination = Literal["exhausted", "max_rows", "cancelled", "deadline", "error"]


class Metrics(ABC):
    @abstractmethod
    def observe_stage_duration_ms(self, *, stage: str, dt_ms: float) -> None: ...

    @abstractmethod
    def inc_stage_call(self, *, stage: str, ok: bool) -> None: ...

    @abstractmethod
    def inc_stage_error(self, *, stage: str, error_code: str) -> None: ...

    @abstractmethod
    def inc_page_fetch(self, *, direction: Direction, has_more: bool) -> None: ...

    @abstractmethod
    def inc_cursor_fallback(self, *, reason: str) -> None: ...

    @abstractmethod
    def inc_stream_run(self, *, termination: Termination) -> None: ...

    @abstractmethod
    def inc_stream_batch(self, *, rows: int) -> None: ...

    @abstractmethod
    def inc_sink_error(self, *, op: str) -> None: ...
