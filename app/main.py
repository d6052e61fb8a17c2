"""FastAPI application serving the discovery review and prospect ranking API."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.errors import map_error_code
from app.api.routes import discoveries, health, prospects, runs
from app.config import settings
from app.observability.metrics import metrics
from app.services.scoring.engine import get_scoring_engine
from app.services.scoring.errors import ScoringEngineError

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Rule or repository misconfiguration fails startup rather than the first request.
    if get_scoring_engine not in app.dependency_overrides:
        engine = get_scoring_engine()
        logger.info(
            "api.engine_ready",
            extra={
                "rules_version": engine.table.version,
                "rules_count": len(engine.table),
                "repository": engine.repository.backend,
            },
        )
    logger.info("api.started", extra={"service": settings.app_name, "version": settings.app_version})
    yield
    logger.info("api.stopped", extra={"service": settings.app_name})


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Finds companies showing buying signals, scores them and ranks warm introductions.",
    lifespan=lifespan,
    debug=settings.debug,
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def record_request(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "api.request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
        },
    )
    metrics.timing("api.request_ms", elapsed_ms, tags={"method": request.method, "status": response.status_code})
    return response


@app.exception_handler(ScoringEngineError)
async def scoring_error_handler(request: Request, exc: ScoringEngineError) -> JSONResponse:
    """Errors a route did not translate itself still answer with their mapped status."""
    logger.error("api.unhandled_scoring_error", extra={"path": request.url.path, "code": exc.code})
    return JSONResponse(
        status_code=map_error_code(exc.code),
        content={"detail": {"code": exc.code, "error": str(exc)}},
    )


app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(runs.router, prefix="/api", tags=["runs"])
app.include_router(discoveries.router, prefix="/api", tags=["discoveries"])
app.include_router(prospects.router, prefix="/api", tags=["prospects"])
