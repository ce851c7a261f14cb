from __future__ import annotations

import logging
import os
import time
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from . import api_crud, db
from .aggregation import compute_dashboard_stats
from .api_crud import router as crud_router
from .narrative_ai import analyze_income
from .reporting import stats_to_dict
from .types import CategoryBreakdown, DashboardStats, QuarterBreakdown


# ---------------------------------------------------------------------------
# Rate limiter key: user_id from header if present, else remote IP
# ---------------------------------------------------------------------------

def _rate_key(request: Request) -> str:
    user_id = request.headers.get("X-User-ID")
    return f"user:{user_id}" if user_id else f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=_rate_key)
logger = logging.getLogger("salestracker.api")

app = FastAPI(title="Sales Tracker API", version="0.3.0")
app.state.limiter = limiter


def _request_id_from_request(request: Request) -> str:
    return getattr(request.state, "request_id", "") or request.headers.get("X-Request-ID", "")


def _http_error_code(status_code: int) -> str:
    return {
        400: "bad_request",
        404: "not_found",
        409: "conflict",
        422: "validation_error",
        429: "rate_limited",
        500: "internal_error",
        503: "service_unavailable",
    }.get(status_code, "http_error")


def _error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    detail: object,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error": {
                "code": code,
                "message": message,
                "request_id": _request_id_from_request(request),
            },
        },
    )


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_exception_handler(request: Request, _: RateLimitExceeded) -> JSONResponse:
    return _error_response(
        request,
        status_code=429,
        code="rate_limited",
        message="Rate limit exceeded. Please try again later.",
        detail="Rate limit exceeded",
    )


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        errors = detail.get("errors")
        message = "; ".join(errors) if errors else str(detail.get("message") or "Request failed")
    else:
        message = str(detail)
    return _error_response(
        request,
        status_code=exc.status_code,
        code=_http_error_code(exc.status_code),
        message=message,
        detail=detail,
    )


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(
        request,
        status_code=422,
        code="validation_error",
        message="Request validation failed",
        detail=exc.errors(),
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled server exception rid=%s method=%s path=%s",
        _request_id_from_request(request),
        request.method,
        request.url.path,
    )
    return _error_response(
        request,
        status_code=500,
        code="internal_error",
        message="Internal server error",
        detail="Internal server error",
    )


@app.middleware("http")
async def _request_context_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    response.headers["X-Request-ID"] = request.state.request_id
    logger.info(
        "%s %s -> %s in %.2fms rid=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.state.request_id,
    )
    return response


@app.on_event("startup")
def startup():
    """Initialize database tables on startup."""
    try:
        db.init_db(api_crud.DB_PATH)
    except Exception:
        logger.exception(
            "DB init failed during startup; DB-backed endpoints may fail until database is reachable"
        )


# ALLOWED_ORIGINS: comma-separated list of allowed origins, e.g.
#   ALLOWED_ORIGINS=https://sales.example.com,http://localhost:5173
_default_origins = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000"
_origins_env = os.environ.get("ALLOWED_ORIGINS", _default_origins)
_allowed_origins = [o.strip() for o in _origins_env.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(crud_router)


@app.get("/")
def root():
    return {"ok": True}


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.get("/readyz")
def readyz():
    conn = None
    try:
        conn = api_crud._conn()
        return {"ok": True}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"Database unavailable: {exc.__class__.__name__}") from exc
    finally:
        if conn is not None:
            conn.close()


# ---------------------------------------------------------------------------
# AI income analysis
# ---------------------------------------------------------------------------

def _analysis_limit(key: str) -> str:
    return "20/minute" if key.startswith("user:") else "5/minute"


class QuarterIn(BaseModel):
    quarter: str
    income: int = 0
    target: int = 0


class CategoryIn(BaseModel):
    name: str
    value: int = 0


class StatsIn(BaseModel):
    total_income: int = 0
    target: int = 0
    achievement_percent: float = 0.0
    gap: int = 0
    quarterly_breakdown: list[QuarterIn] = Field(default_factory=list)
    category_breakdown: list[CategoryIn] = Field(default_factory=list)

    def to_stats(self) -> DashboardStats:
        return DashboardStats(
            total_income=self.total_income,
            target=self.target,
            achievement_percent=self.achievement_percent,
            gap=self.gap,
            quarterly_breakdown=[QuarterBreakdown(q.quarter, q.income, q.target) for q in self.quarterly_breakdown],
            category_breakdown=[CategoryBreakdown(c.name, c.value) for c in self.category_breakdown],
        )


class AnalyzeRequest(BaseModel):
    year: int
    stats: StatsIn | None = None


@app.post("/api/analyze")
@limiter.limit(_analysis_limit)
def analyze(request: Request, body: AnalyzeRequest):
    """Commentary for a year's dashboard figures.

    Uses the posted stats when given, otherwise computes them from the store.
    The figures are returned unchanged whether or not the AI call succeeds.
    """
    if body.stats is not None:
        stats = body.stats.to_stats()
    else:
        conn = api_crud._conn()
        try:
            records = db.fetch_projects(conn, year=body.year)
            target = db.fetch_target(conn, body.year)
        finally:
            conn.close()
        stats = compute_dashboard_stats(records, target)

    result = analyze_income(stats, body.year, api_crud.CONFIG.narrative)
    return {
        "year": body.year,
        "analysis": result.text,
        "ai_generated": result.ai_generated,
        "stats": stats_to_dict(stats),
    }
