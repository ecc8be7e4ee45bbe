from __future__ import annotations

import csv
import io

import pytest

from adapters.db.sqlite_adapter import SQLiteAdapter
from adapters.sinks.memory_sink import MemoryResultSink
from sqlpager.errors import ErrorCode, QueryError, SinkError, ValidationError
from sqlpager.executor import Executor
from sqlpager.pagination import PaginationController
from sqlpager.streaming import StreamingAggregator
from sqlpager.types import AggregationSpec

SQL = "SELECT id, name, price, category FROM items"


def _aggregator(db_path, **kw) -> StreamingAggregator:
    controller = PaginationController(Executor(SQLiteAdapter(str(db_path))))
    return StreamingAggregator(controller, **kw)


def _values(summary):
    return {(a.field, a.operation): a.value for a in summary.aggregations}


class FlakyAdapter(SQLiteAdapter):
    """Fails every execute call from ``fail_from`` onward (1-based)."""

    def __init__(self, path, fail_from: int, message: str = "database is locked"):
        super().__init__(path)
        self.fail_from = fail_from
        self.message = message
        self.n = 0

    def execute(self, sql, parameters=None):
        self.n += 1
        if self.n >= self.fail_from:
            raise RuntimeError(self.message)
        return super().execute(sql, parameters)


class BrokenSink(MemoryResultSink):
    def store(self, result_id, payload, *, csv_stream=None):
        raise SinkError("disk full")


@pytest.mark.parametrize("batch_size", [1, 3, 4, 5, 14, 100])
def test_aggregates_independent_of_batch_size(items_db, batch_size):
    summary = _aggregator(items_db).run(
        SQL,
        batch_size=batch_size,
        aggregations=[
            AggregationSpec("id", "sum"),
            AggregationSpec("id", "avg"),
            AggregationSpec("category", "countDistinct"),
        ],
    )
    assert summary.status == "ok"
    assert summary.termination == "exhausted"
    assert summary.total_rows == 14
    assert _values(summary) == {
        ("id", "sum"): 105,
        ("id", "avg"): 7.5,
        ("category", "countDistinct"): 2,
    }


def test_batch_count_includes_trailing_empty_batch(items_db):
    summary = _aggregator(items_db).run(SQL, batch_size=7)
    assert summary.batch_count == 3
    assert summary.total_rows == 14


def test_max_rows_caps_processing(items_db):
    summary = _aggregator(items_db).run(
        SQL, batch_size=4, max_rows=6, aggregations=[AggregationSpec("id", "sum")]
    )
    assert summary.termination == "max_rows"
    assert summary.total_rows == 6
    assert _values(summary)[("id", "sum")] == 21


@pytest.mark.parametrize("batch_size", [3, 4, 10, 20])
def test_statement_limit_larger_than_batch_keeps_every_row(items_db, batch_size):
    summary = _aggregator(items_db).run(
        "SELECT id FROM items LIMIT 10",
        batch_size=batch_size,
        aggregations=[AggregationSpec("id", "sum"), AggregationSpec("id", "count")],
    )
    assert summary.status == "ok"
    assert summary.termination == "exhausted"
    assert summary.total_rows == 10
    assert _values(summary) == {("id", "sum"): 55, ("id", "count"): 10}
    assert summary.notes["statement_limit"] == 10


@pytest.mark.parametrize("batch_size", [1, 5, 14])
def test_descending_walk_counts_each_row_once(items_db, batch_size):
    summary = _aggregator(items_db).run(
        "SELECT id FROM items ORDER BY id DESC",
        batch_size=batch_size,
        aggregations=[AggregationSpec("id", "sum"), AggregationSpec("id", "count")],
        output_type="json",
    )
    assert summary.termination == "exhausted"
    assert summary.total_rows == 14
    assert _values(summary) == {("id", "sum"): 105, ("id", "count"): 14}
    assert [r["id"] for r in summary.sample_rows] == [14, 13, 12, 11, 10]
    assert "walk_stalled" not in summary.notes


def test_cancel_between_batches(items_db):
    calls = {"n": 0}

    def should_cancel():
        calls["n"] += 1
        return calls["n"] > 2

    summary = _aggregator(items_db).run(SQL, batch_size=3, should_cancel=should_cancel)
    assert summary.termination == "cancelled"
    assert summary.status == "ok"
    assert summary.total_rows == 6
    assert summary.batch_count == 2


def test_cancel_before_first_batch(items_db):
    summary = _aggregator(items_db).run(SQL, batch_size=3, should_cancel=lambda: True)
    assert summary.termination == "cancelled"
    assert summary.total_rows == 0
    assert summary.batch_count == 0


def test_deadline_uses_injected_clock(items_db):
    ticks = iter([0.0, 5.0, 11.0, 20.0])
    summary = _aggregator(items_db, clock=lambda: next(ticks)).run(
        SQL, batch_size=2, deadline=10.0
    )
    assert summary.termination == "deadline"
    assert summary.batch_count == 2
    assert summary.total_rows == 4


def test_later_batch_failure_returns_partial(items_db):
    controller = PaginationController(Executor(FlakyAdapter(str(items_db), fail_from=3)))
    summary = StreamingAggregator(controller).run(
        SQL, batch_size=5, aggregations=[AggregationSpec("id", "sum")]
    )
    assert summary.status == "partial"
    assert summary.termination == "error"
    assert summary.total_rows == 10
    assert _values(summary)[("id", "sum")] == 55
    assert summary.error["code"] == ErrorCode.DB_LOCKED.value
    assert summary.error["retryable"] is True
    assert summary.error["batch"] == 3


def test_first_batch_failure_is_raised(items_db):
    controller = PaginationController(
        Executor(FlakyAdapter(str(items_db), fail_from=1, message="no such table: x"))
    )
    with pytest.raises(QueryError) as exc:
        StreamingAggregator(controller).run(SQL, batch_size=5)
    assert exc.value.code == ErrorCode.QUERY_NO_SUCH_TABLE


def test_rejected_statement_is_raised(items_db):
    with pytest.raises(ValidationError):
        _aggregator(items_db).run("DROP TABLE items", batch_size=5)


@pytest.mark.parametrize(
    "kw",
    [
        {"batch_size": 0},
        {"max_rows": -1},
        {"output_type": "xml"},
    ],
)
def test_invalid_run_arguments(items_db, kw):
    with pytest.raises(ValidationError) as exc:
        _aggregator(items_db).run(SQL, **kw)
    assert exc.value.code == ErrorCode.VALIDATION_BAD_REQUEST


def test_json_output_is_persisted(items_db):
    sink = MemoryResultSink()
    summary = _aggregator(items_db, sink=sink).run(SQL, batch_size=5, output_type="json")
    assert summary.stored
    doc = sink.fetch(summary.result_id)
    assert [r["id"] for r in doc["results"]] == list(range(1, 15))
    assert doc["metadata"]["kind"] == "stream"
    assert doc["metadata"]["total_rows"] == 14
    assert len(summary.sample_rows) == 5


def test_csv_output_is_persisted_with_header(items_db):
    sink = MemoryResultSink()
    summary = _aggregator(items_db, sink=sink).run(SQL, batch_size=6, output_type="csv")
    rows = list(csv.reader(io.StringIO(sink.csv_text(summary.result_id))))
    assert rows[0] == ["id", "name", "price", "category"]
    assert len(rows) == 15
    assert rows[1][:2] == ["1", "item-1"]


def test_summary_output_stores_only_metadata(items_db):
    sink = MemoryResultSink()
    summary = _aggregator(items_db, sink=sink).run(
        SQL, batch_size=5, aggregations=[AggregationSpec("price", "max")]
    )
    doc = sink.fetch(summary.result_id)
    assert "results" not in doc
    assert doc["metadata"]["aggregations"] == [
        {"field": "price", "operation": "max", "value": 21.0}
    ]


def test_sink_failure_is_reported_not_raised(items_db):
    summary = _aggregator(items_db, sink=BrokenSink()).run(SQL, batch_size=5)
    assert summary.status == "ok"
    assert not summary.stored
    assert summary.sink_error == "disk full"
    assert summary.total_rows == 14


def test_cursor_field_is_pinned_across_batches(items_db):
    summary = _aggregator(items_db).run(
        "SELECT name, price FROM items", cursor_field="price", batch_size=4
    )
    assert summary.cursor_field == "price"
    assert summary.total_rows == 14
