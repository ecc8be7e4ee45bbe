import logging
import time

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response, HTTPException
from fastapi.responses import PlainTextResponse, JSONResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

from sqlpager.prom import REGISTRY
from app.routers import query
from app.settings import get_settings
from app.exception_handlers import register_exception_handlers

load_dotenv()

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ----------------------------------------------------------------------------
#  App definition
# ----------------------------------------------------------------------------
app = FastAPI(
    title="sqlpager",
    version=settings.app_version,
    description="Cursor-paged and streamed read-only SQL with online aggregates",
)
register_exception_handlers(app)

# Register only versioned API
app.include_router(query.router, prefix="/api/v1")


@app.exception_handler(HTTPException)
async def http_exception_to_error_contract(request: Request, exc: HTTPException):
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ----------------------------------------------------------------------------
#  Prometheus Metrics Middleware
# ----------------------------------------------------------------------------
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["path", "method", "status_code"],
    registry=REGISTRY,
)
REQUEST_LATENCY = Histogram(
    "http_request_latency_seconds",
    "Request latency (seconds)",
    ["path", "method"],
    registry=REGISTRY,
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.perf_counter()
    response: Response = await call_next(request)
    elapsed = time.perf_counter() - start
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    name = getattr(route, "name", None) or path

    REQUEST_COUNT.labels(
        path=name,
        method=request.method,
        status_code=str(getattr(response, "status_code", 500)),
    ).inc()
    REQUEST_LATENCY.labels(path=name, method=request.method).observe(elapsed)
    return response


# ----------------------------------------------------------------------------
#  System Endpoints
# ----------------------------------------------------------------------------
@app.get("/healthz", response_class=PlainTextResponse, tags=["system"])
def healthz() -> str:
    return "ok"


@app.get("/readyz", response_class=PlainTextResponse, tags=["system"])
def readyz() -> str:
    """
    Lightweight readiness probe:

    - For postgres mode → ping PostgresAdapter using configured DSN.
    - For sqlite mode   → ping SQLiteAdapter using configured default path.
    """
    mode = settings.db_mode.lower()
    try:
        if mode == "postgres":
            from adapters.db.postgres_adapter import PostgresAdapter

            dsn = (settings.postgres_dsn or "").strip()
            if not dsn:
                raise RuntimeError("POSTGRES_DSN is not configured for readiness check")
            PostgresAdapter(dsn).ping()
        else:
            from adapters.db.sqlite_adapter import SQLiteAdapter

            SQLiteAdapter(settings.default_sqlite_path).ping()
        return "ready"
    except Exception as exc:
        logger.warning("Readiness check failed: %s", exc)
        raise HTTPException(status_code=503, detail="not ready")


@app.get("/")
def root():
    return {"status": "ok", "message": "sqlpager API is running"}


@app.get("/metrics", tags=["system"])
def metrics():
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
