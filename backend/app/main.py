"""LiftPulse - FastAPI Application Entry Point."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from app.config import get_settings
from app.database import engine, Base, SessionLocal
from app.exceptions import TransientDataError
from app.logging_config import setup_logging
from app.routers import analytics_router, notifications_router
from app.services.exercise_catalog import seed_exercise_catalog
from app.services.push_service import validate_push_settings


settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging(logging.DEBUG if settings.debug else logging.INFO)
    # Missing push credentials stop the process here
    validate_push_settings(settings)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_exercise_catalog(db)
    finally:
        db.close()

    logger.info("%s started", settings.app_name)
    yield


app = FastAPI(
    title="LiftPulse API",
    description="Training-load analytics and adaptive workout notifications",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        settings.frontend_url,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TransientDataError)
async def transient_data_error_handler(request: Request, exc: TransientDataError):
    logger.error("Data error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Data temporarily unavailable"})


# Include routers
app.include_router(analytics_router, prefix="/api/v1")
app.include_router(notifications_router, prefix="/api/v1")


@app.get("/")
def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}
