"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers all API routers.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.dependencies import get_import_service, progress_hub
from .api.routers import imports, jobs, progress
from .core.config import settings
from .core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown events."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
        yield
        progress_hub.close()
        return

    try:
        logger.info("Initializing database tables...")
        get_import_service().store.ensure_tables()
        logger.info("contacts, companies and import_jobs tables ready")
    except Exception:
        logger.exception("Failed to initialize database tables; the application cannot start")
        raise

    yield  # Application runs here

    progress_hub.close()


# Initialize FastAPI application
app = FastAPI(
    title="CRM Import API",
    version="1.0.0",
    description="Bulk CSV import of CRM contacts and companies with live progress",
    lifespan=lifespan,
)

# Allow origins from environment variable or defaults for development
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(imports.router)
app.include_router(jobs.router)
app.include_router(progress.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "CRM Import API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "crm-import-api",
        "progress": progress_hub.get_stats(),
    }
