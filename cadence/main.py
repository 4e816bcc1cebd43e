"""
Cadence API - Audio Generation Job Engine
FastAPI Backend Entry Point
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cadence.core.config import settings
from cadence.core.database import SessionLocal, init_db
from cadence.core.errors import CadenceError
from cadence.core.logging import configure_logging
from cadence.core.redis import redis_health_check
from cadence.api import chain, credentials, jobs

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting Cadence API...")
    init_db()
    logger.info("Database tables created")
    yield
    logger.info("Shutting down Cadence API...")


app = FastAPI(
    title=settings.APP_NAME,
    description="Asynchronous audio generation, voice cloning and voice conversion jobs",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CadenceError)
async def cadence_error_handler(request: Request, exc: CadenceError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Include routers
app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])
app.include_router(chain.router, prefix="/api/v1", tags=["Voice Chain"])
app.include_router(credentials.router, prefix="/api/v1/credentials", tags=["Credentials"])


def _check_database() -> str:
    with SessionLocal() as db:
        db.execute(text("SELECT 1"))
    return "ok"


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness plus dependency state.

    Redis being down only degrades sweeps (they run inline), so it never
    marks the service unhealthy on its own. A missing vault secret does:
    no credential can be read without it.
    """
    services = {}
    healthy = True

    try:
        services["database"] = _check_database()
    except SQLAlchemyError as e:
        services["database"] = f"error: {e}"
        healthy = False

    redis_status = redis_health_check()
    if redis_status["connected"]:
        services["sweep_queue"] = {"status": "ok", "pending_sweeps": redis_status["pending_sweeps"]}
    else:
        services["sweep_queue"] = {"status": "inline", "error": redis_status["error"]}

    services["vault"] = "configured" if settings.VAULT_SECRET else "missing VAULT_SECRET"
    healthy = healthy and bool(settings.VAULT_SECRET)

    return {
        "status": "healthy" if healthy else "degraded",
        "version": VERSION,
        "mock_providers": settings.MOCK_PROVIDERS,
        "mock_storage": settings.MOCK_STORAGE,
        "services": services,
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Cadence API - Audio Generation Job Engine",
        "docs": "/docs",
        "health": "/health",
    }
