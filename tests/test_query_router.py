from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from adapters.metrics.noop import NoOpMetrics
from adapters.sinks.memory_sink import MemoryResultSink
from app.dependencies import get_query_service
from app.main import app
from app.services.query_service import QueryService
from app.settings import Settings

client = TestClient(app)
page_path = app.url_path_for("page_query")
stream_path = app.url_path_for("stream_query")
list_path = app.url_path_for("list_results")


@pytest.fixture
def service(items_db, tmp_path):
    svc = QueryService(
        settings=Settings(
            default_sqlite_path=str(items_db),
            results_dir=str(tmp_path / "results"),
            max_page_size=50,
        ),
        sink=MemoryResultSink(),
        metrics=NoOpMetrics(),
    )
    app.dependency_overrides[get_query_service] = lambda: svc
    try:
        yield svc
    finally:
        app.dependency_overrides.pop(get_query_service, None)


def test_page_walk_over_http(service):
    body = {"sql": "SELECT id, name FROM items", "page_size": 5}
    seen = []
    while True:
        resp = client.post(page_path, json=body)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        seen.extend(r["id"] for r in data["rows"])
        if not data["pagination"]["has_more"]:
            break
        body["cursor"] = data["pagination"]["next_cursor"]

    assert seen == list(range(1, 15))
    assert data["pagination"]["total_count"] == 14
    assert "# Paginated Query Results" in data["markdown"]


def test_page_is_persisted_and_fetchable(service):
    resp = client.post(page_path, json={"sql": "SELECT id FROM items", "page_size": 3})
    result_id = resp.json()["result_id"]
    assert result_id

    stored = client.get(app.url_path_for("get_result", result_id=result_id))
    assert stored.status_code == 200
    assert [r["id"] for r in stored.json()["rows"]] == [1, 2, 3]

    listed = client.get(list_path).json()["results"]
    assert listed[0]["uuid"] == result_id


def test_page_without_persist_has_no_result_id(service):
    resp = client.post(
        page_path, json={"sql": "SELECT id FROM items", "page_size": 3, "persist": False}
    )
    assert resp.json()["result_id"] is None


def test_page_size_above_configured_max_is_rejected(service):
    resp = client.post(page_path, json={"sql": "SELECT id FROM items", "page_size": 500})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "bad_request"


def test_write_statement_is_rejected_with_422(service):
    resp = client.post(page_path, json={"sql": "DELETE FROM items"})
    assert resp.status_code == 422
    err = resp.json()["error"]
    assert err["code"] == "VALIDATION_FORBIDDEN_KEYWORD"
    assert err["retryable"] is False


def test_stream_with_aggregations(service):
    resp = client.post(
        stream_path,
        json={
            "sql": "SELECT id, category FROM items",
            "batch_size": 4,
            "aggregations": [
                {"field": "id", "operation": "sum"},
                {"field": "category", "operation": "countDistinct"},
            ],
        },
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["status"] == "ok"
    assert data["total_rows"] == 14
    values = {(a["field"], a["operation"]): a["value"] for a in data["aggregations"]}
    assert values == {("id", "sum"): 105, ("category", "countDistinct"): 2}
    assert data["stored"] is True
    assert "## Aggregation Results" in data["markdown"]


def test_stream_rejects_unknown_operation(service):
    resp = client.post(
        stream_path,
        json={"sql": "SELECT id FROM items", "aggregations": [{"field": "id", "operation": "median"}]},
    )
    assert resp.status_code == 422


def test_unknown_result_is_404(service):
    resp = client.get(app.url_path_for("get_result", result_id="does-not-exist"))
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "RESULT_NOT_FOUND"
