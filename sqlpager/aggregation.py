from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from sqlpager.types import AggregationResult, AggregationSpec, Row

Number = Union[int, float, Decimal]


def as_number(value: Any) -> Optional[Number]:
    """Return ``value`` as a number, or None when it is not numeric (bools excluded)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) else value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            f = float(text)
        except ValueError:
            return None
        return None if math.isnan(f) or math.isinf(f) else f
    return None


def _add(a: Number, b: Number) -> Number:
    # Decimal + float raises; widen to float only for that pairing
    if (isinstance(a, Decimal) and isinstance(b, float)) or (
        isinstance(a, float) and isinstance(b, Decimal)
    ):
        return float(a) + float(b)
    return a + b


def _comparable(value: Any) -> Any:
    """Key used to order min/max candidates; numbers, strings and temporals stay native."""
    n = as_number(value) if not isinstance(value, str) else None
    return n if n is not None else value


def _hashable(value: Any) -> Any:
    if isinstance(value, (list, dict, set, bytearray, memoryview)):
        return repr(value)
    return value


@dataclass
class SumAccumulator:
    operation = "sum"
    total: Number = 0
    count: int = 0

    def add(self, value: Any) -> None:
        n = as_number(value)
        if n is None:
            return
        self.total = _add(self.total, n)
        self.count += 1

    def result(self) -> Any:
        return self.total


@dataclass
class AvgAccumulator:
    operation = "avg"
    total: Number = 0
    count: int = 0

    def add(self, value: Any) -> None:
        n = as_number(value)
        if n is None:
            return
        self.total = _add(self.total, n)
        self.count += 1

    def result(self) -> Any:
        # Only ever computed from the final totals, never carried between batches
        if self.count == 0:
            return None
        if isinstance(self.total, Decimal):
            return self.total / Decimal(self.count)
        return self.total / self.count


@dataclass
class MinAccumulator:
    operation = "min"
    value: Any = None

    def add(self, value: Any) -> None:
        if value is None:
            return
        if self.value is None:
            self.value = value
            return
        try:
            if _comparable(value) < _comparable(self.value):
                self.value = value
        except TypeError:
            # Mixed, incomparable types: keep the first comparable winner
            return

    def result(self) -> Any:
        return self.value


@dataclass
class MaxAccumulator:
    operation = "max"
    value: Any = None

    def add(self, value: Any) -> None:
        if value is None:
            return
        if self.value is None:
            self.value = value
            return
        try:
            if _comparable(value) > _comparable(self.value):
                self.value = value
        except TypeError:
            return

    def result(self) -> Any:
        return self.value


@dataclass
class CountAccumulator:
    operation = "count"
    count: int = 0

    def add(self, value: Any) -> None:
        if value is not None:
            self.count += 1

    def result(self) -> Any:
        return self.count


@dataclass
class CountDistinctAccumulator:
    operation = "countDistinct"
    seen: Set[Any] = field(default_factory=set)

    def add(self, value: Any) -> None:
        if value is not None:
            self.seen.add(_hashable(value))

    def result(self) -> Any:
        return len(self.seen)


Accumulator = Union[
    SumAccumulator,
    AvgAccumulator,
    MinAccumulator,
    MaxAccumulator,
    CountAccumulator,
    CountDistinctAccumulator,
]

ACCUMULATORS = {
    "sum": SumAccumulator,
    "avg": AvgAccumulator,
    "min": MinAccumulator,
    "max": MaxAccumulator,
    "count": CountAccumulator,
    "countDistinct": CountDistinctAccumulator,
}


def new_accumulator(spec: AggregationSpec) -> Accumulator:
    return ACCUMULATORS[spec.operation]()


def _json_number(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        # A float would round; the decimal string keeps every digit
        return str(value)
    if isinstance(value, (dt.date, dt.time)):
        return value.isoformat()
    return value


class AggregationSet:
    """Accumulators for a fixed list of specs, fed row by row."""

    def __init__(self, specs: Iterable[AggregationSpec]) -> None:
        self.accumulators: Dict[AggregationSpec, Accumulator] = {}
        for spec in specs:
            # Duplicate specs collapse to one accumulator
            if spec not in self.accumulators:
                self.accumulators[spec] = new_accumulator(spec)

    def __len__(self) -> int:
        return len(self.accumulators)

    def feed(self, rows: Iterable[Row]) -> None:
        if not self.accumulators:
            return
        for row in rows:
            for spec, acc in self.accumulators.items():
                acc.add(row.get(spec.field))

    def results(self) -> List[AggregationResult]:
        return [
            AggregationResult(
                field=spec.field,
                operation=spec.operation,
                value=_json_number(acc.result()),
            )
            for spec, acc in self.accumulators.items()
        ]
