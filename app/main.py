"""
Condition Assessment & Penalty Engine — FastAPI Application Entry Point

POST /v1/assessments             → score + classify + penalize a returned item
GET  /v1/assessments             → history, optional analytics
     /v1/assessments/templates   → versioned inspection templates
     /v1/reservations, /v1/returns, /v1/damage
     /v1/users/{id}/reputation   → trust-score ledger
GET  /health                     → health check
GET  /metrics                    → Prometheus
GET  /docs                       → OpenAPI / Swagger UI
"""
import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from app.api.assessment_endpoint import router as assessment_router
from app.api.reputation_endpoint import router as reputation_router
from app.api.returns_endpoint import router as returns_router
from app.api.template_endpoint import router as template_router
from app.core.config import get_settings
from app.core.errors import DomainError
from app.services.event_publisher import stop_producer

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer() if get_settings().app_env == "development"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(get_settings().log_level.upper())),
)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("condition_engine_starting", engine_version=get_settings().engine_version)
    yield
    await stop_producer()
    logger.info("condition_engine_shutting_down")


app = FastAPI(
    title="Condition Assessment & Penalty Engine",
    description="Return inspection scoring, condition grading, penalties and borrower trust scores",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (lending frontend + internal tools) ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_methods=["POST", "GET", "PATCH"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "domain_error",
        code=exc.code,
        detail=exc.message,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# ── Prometheus metrics ──
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── Routes ──
app.include_router(assessment_router)
app.include_router(template_router)
app.include_router(returns_router)
app.include_router(reputation_router)


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok", "service": get_settings().app_name, "engine_version": get_settings().engine_version}


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": get_settings().app_name,
        "version": "1.0.0",
        "docs": "/docs",
        "submit": "POST /v1/assessments",
    }
