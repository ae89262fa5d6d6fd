"""FastAPI application setup"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from journal_insights.api.models import ErrorResponse
from journal_insights.api.routes import router
from journal_insights.cache.redis_client import init_cache
from journal_insights.config import ENABLE_REDIS, LOG_LEVEL, OPENAI_API_KEY, REDIS_URL, validate_config
from journal_insights.db.connection import db
from journal_insights.db.document_store import PostgresDocumentStore
from journal_insights.db.entry_store import PostgresBiometricProvider, PostgresEntryStore
from journal_insights.exceptions import (
    ExternalServiceError,
    InputError,
    InsightEngineError,
    PersistenceError,
    ValidationError,
)
from journal_insights.services.container import ServiceContainer, init_container, reset_container, set_container

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (InputError, 400),
    (ValidationError, 422),
    (PersistenceError, 503),
    (ExternalServiceError, 502),
)


def status_for(exc: InsightEngineError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application"""
    # Startup
    logger.info("Starting API server...")
    validate_config()
    await db.init_pool()
    await db.ensure_schema()
    logger.info("Database pool initialized")

    cache = await init_cache(REDIS_URL, enabled=ENABLE_REDIS)
    init_container(
        entry_store=PostgresEntryStore(db),
        documents=PostgresDocumentStore(db),
        key_value=cache,
        biometrics=PostgresBiometricProvider(db),
        openai_api_key=OPENAI_API_KEY or None,
    )

    yield

    # Shutdown
    logger.info("Shutting down API server...")
    await cache.close()
    await db.close_pool()
    reset_container()
    logger.info("Database pool closed")


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware"""
    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    cors_origins = [origin.strip() for origin in cors_origins if origin.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info(f"CORS configured for origins: {cors_origins}")


def create_api_application(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        container: Pre-built service container. When given, startup skips
            the Postgres/Redis wiring (used by tests and local runs).
    """
    if container is not None:
        set_container(container)

        @asynccontextmanager
        async def app_lifespan(app: FastAPI):
            yield
    else:
        app_lifespan = lifespan

    app = FastAPI(
        title="Journal Insights API",
        description="REST API for the journaling insight engine",
        version="1.0.0",
        lifespan=app_lifespan
    )

    setup_cors(app)
    app.include_router(router)

    @app.exception_handler(InsightEngineError)
    async def engine_exception_handler(request: Request, exc: InsightEngineError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal server error", detail=str(exc)).model_dump(mode="json")
        )

    logger.info("FastAPI application created")

    return app
