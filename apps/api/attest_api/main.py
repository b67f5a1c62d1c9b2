"""Attest API - Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from attest_api.db.session import SessionLocal, engine
from attest_api.errors import StorageError
from attest_api.middleware.correlation import CorrelationIDMiddleware
from attest_api.proofs.schema import get_schema_version
from attest_api.routes import proofs, provenance, reports, verify
from attest_api.settings import get_settings
from attest_api.storage.service import get_storage_service
from attest_api.utils.logging import configure_logging

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Attest API...")
    try:
        settings.validate_production_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    # Resolve the proofs schema once; writes fail per request if it is absent.
    version = get_schema_version(engine)
    if version is None:
        logger.warning("proofs table not found; proof recording will fail until migrations run")
    app.state.proof_schema_version = version

    yield
    logger.info("Shutting down Attest API...")


app = FastAPI(
    title="Attest API",
    description="Proof and provenance integrity service",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)
app.add_middleware(CorrelationIDMiddleware)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

app.include_router(proofs.router)
app.include_router(provenance.router)
app.include_router(verify.router)
app.include_router(reports.router)


@app.get("/health")
async def health_check():
    """Health check endpoint (basic liveness)."""
    return {
        "status": "healthy",
        "service": "attest-api",
        "version": "0.1.0",
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (verifies dependencies)."""
    checks = {
        "database": False,
        "proofs_schema": False,
        "storage": False,
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}")
    finally:
        db.close()

    if checks["database"]:
        version = get_schema_version(engine)
        checks["proofs_schema"] = version.name if version else False

    try:
        checks["storage"] = get_storage_service().available()
    except StorageError as e:
        logger.error(f"Storage check failed: {e}")

    all_ready = all(bool(value) for value in checks.values())
    return JSONResponse(
        content={
            "status": "ready" if all_ready else "not_ready",
            "checks": checks,
        },
        status_code=200 if all_ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Attest API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
