from __future__ import annotations

from fastapi.testclient import TestClient

from app.dependencies import get_query_service
from app.main import app
from sqlpager.errors import ErrorCode, QueryError, SinkError

client = TestClient(app)
path = app.url_path_for("page_query")


class DummyService:
    def __init__(self, exc):
        self._exc = exc

    def fetch_page(self, **kwargs):
        raise self._exc


def _post_with(exc):
    app.dependency_overrides[get_query_service] = lambda: DummyService(exc)
    try:
        return client.post(path, json={"sql": "SELECT 1"})
    finally:
        app.dependency_overrides.pop(get_query_service, None)


def test_db_locked_is_503_and_retryable():
    resp = _post_with(
        QueryError("database is locked", code=ErrorCode.DB_LOCKED, details=["database is locked"])
    )

    assert resp.status_code == 503, resp.text
    body = resp.json()

    assert "error" in body and isinstance(body["error"], dict)
    assert body["error"]["code"] == ErrorCode.DB_LOCKED.value
    assert body["error"]["retryable"] is True
    assert isinstance(body["error"].get("details"), list)
    assert resp.headers.get("Retry-After")


def test_syntax_error_is_422_and_not_retryable():
    resp = _post_with(QueryError("near SELEC", code=ErrorCode.QUERY_SYNTAX_ERROR))
    assert resp.status_code == 422
    assert resp.json()["error"]["retryable"] is False
    assert "Retry-After" not in resp.headers


def test_request_id_is_echoed():
    app.dependency_overrides[get_query_service] = lambda: DummyService(
        SinkError("disk full")
    )
    try:
        resp = client.post(
            path, json={"sql": "SELECT 1"}, headers={"X-Request-ID": "req-123"}
        )
    finally:
        app.dependency_overrides.pop(get_query_service, None)

    assert resp.status_code == 500
    assert resp.json()["error"]["request_id"] == "req-123"
    assert resp.json()["error"]["code"] == ErrorCode.SINK_WRITE_FAILED.value
