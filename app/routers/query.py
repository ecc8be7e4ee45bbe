from __future__ import annotations

# --- Stdlib ---
import logging
from typing import Optional

# --- Third-party ---
from fastapi import APIRouter, Depends, HTTPException, Query, Security
from fastapi.security import APIKeyHeader

# --- Local ---
from app.dependencies import get_query_service
from app.schemas import (
    AggregationResultModel,
    PageQueryRequest,
    PageResponse,
    ResultListResponse,
    StoredResultResponse,
    StreamQueryRequest,
    StreamResponse,
)
from app.services.query_service import QueryService, jsonable_rows
from app.settings import get_settings
from sqlpager.render import render_page, render_stored, render_stream
from sqlpager.types import AggregationSpec

logger = logging.getLogger(__name__)
settings = get_settings()

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def require_api_key(key: Optional[str] = Security(api_key_header)):
    """
    Simple API key check using X-API-Key header and configured API keys.

    - Settings.api_keys_raw is a comma-separated list of keys.
    - If api_keys_raw is empty → auth disabled (dev mode).
    """
    raw = settings.api_keys_raw or ""
    allowed = {k.strip() for k in raw.split(",") if k.strip()}
    if not allowed:
        # No keys configured → treat as dev mode (auth off).
        return
    if not key or key not in allowed:
        raise HTTPException(status_code=401, detail="invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post("/query/page", name="page_query", response_model=PageResponse)
def page_query(
    request: PageQueryRequest,
    svc: QueryService = Depends(get_query_service),
) -> PageResponse:
    out = svc.fetch_page(
        sql=request.sql,
        cursor_field=request.cursor_field,
        page_size=request.page_size,
        cursor=request.cursor,
        parameters=request.parameters,
        include_count=request.include_count,
        direction=request.direction,
        persist=request.persist,
    )
    page = out["page"]
    logger.debug(
        "Page served",
        extra={
            "rows": page.returned_rows,
            "has_more": page.has_more,
            "result_id": out["result_id"],
        },
    )
    return PageResponse(
        rows=out["rows"],
        columns=page.columns,
        pagination=page.pagination_meta(),
        result_id=out["result_id"],
        sink_error=out["sink_error"],
        elapsed_ms=page.elapsed_ms,
        notes=page.notes,
        markdown=render_page(
            page,
            sql=request.sql,
            result_id=out["result_id"],
            include_count=request.include_count,
        ),
    )


@router.post("/query/stream", name="stream_query", response_model=StreamResponse)
def stream_query(
    request: StreamQueryRequest,
    svc: QueryService = Depends(get_query_service),
) -> StreamResponse:
    specs = [
        AggregationSpec(field=a.field, operation=a.operation)
        for a in request.aggregations
    ]
    summary = svc.stream_aggregate(
        sql=request.sql,
        cursor_field=request.cursor_field,
        batch_size=request.batch_size,
        max_rows=request.max_rows,
        aggregations=specs,
        output_type=request.output_type,
        parameters=request.parameters,
        timeout_sec=request.timeout_sec,
    )
    return StreamResponse(
        result_id=summary.result_id,
        status=summary.status,
        termination=summary.termination,
        cursor_field=summary.cursor_field,
        output_type=summary.output_type,
        total_rows=summary.total_rows,
        batch_count=summary.batch_count,
        elapsed_ms=summary.elapsed_ms,
        rows_per_second=summary.rows_per_second,
        aggregations=[
            AggregationResultModel(field=a.field, operation=a.operation, value=a.value)
            for a in summary.aggregations
        ],
        last_cursor=summary.last_cursor,
        sample_rows=jsonable_rows(summary.sample_rows),
        error=summary.error,
        sink_error=summary.sink_error,
        stored=summary.stored,
        notes=summary.notes,
        markdown=render_stream(summary),
    )


@router.get("/results", name="list_results", response_model=ResultListResponse)
def list_results(
    limit: int = Query(10, ge=1, le=100),
    svc: QueryService = Depends(get_query_service),
) -> ResultListResponse:
    return ResultListResponse(results=svc.list_results(limit))


@router.get(
    "/results/{result_id}", name="get_result", response_model=StoredResultResponse
)
def get_result(
    result_id: str,
    preview: int = Query(10, ge=0, le=1000),
    svc: QueryService = Depends(get_query_service),
) -> StoredResultResponse:
    doc = svc.get_result(result_id)
    rows = doc.get("results") or []
    return StoredResultResponse(
        metadata=doc.get("metadata") or {},
        rows=rows[:preview],
        total_rows=len(rows),
        markdown=render_stored(doc, preview=preview),
    )
