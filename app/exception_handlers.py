from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, List

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.errors import AppError
from sqlpager.errors import BridgeError
from sqlpager.errors.mapper import map_error

logger = logging.getLogger(__name__)


def _error_response(
    request: Request,
    *,
    status: int,
    code: str,
    message: str,
    retryable: bool,
    details: Optional[List[str]],
    extra: Dict[str, Any],
) -> JSONResponse:
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    payload = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "retryable": retryable,
            "request_id": request_id,
            "extra": extra,
        }
    }

    headers = {"X-Request-ID": request_id}
    if retryable:
        headers["Retry-After"] = "2"

    return JSONResponse(status_code=status, content=payload, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers for the FastAPI application."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return _error_response(
            request,
            status=getattr(exc, "http_status", 500),
            code=getattr(exc, "code", "app_error"),
            message=getattr(exc, "message", str(exc)),
            retryable=bool(getattr(exc, "retryable", False)),
            details=getattr(exc, "details", None),
            extra=getattr(exc, "extra", {}) or {},
        )

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        # Single source of truth for HTTP semantics of core errors
        status, retryable = map_error(exc.code)
        logger.debug(
            "Core error mapped to HTTP",
            extra={"error_code": exc.code.value, "status": status},
        )
        return _error_response(
            request,
            status=status,
            code=exc.code.value,
            message=exc.message,
            retryable=retryable,
            details=list(exc.details) if exc.details else None,
            extra=dict(exc.extra or {}),
        )
