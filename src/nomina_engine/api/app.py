"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nomina_engine.api.routes import (
    benefits_router,
    calculations_router,
    health_router,
    periods_router,
)
from nomina_engine.config import get_settings
from nomina_engine.database import create_schema, dispose_db, init_db
from nomina_engine.errors import PayrollError

logger = logging.getLogger(__name__)

# HTTP status per error kind; anything unlisted is a 400
ERROR_STATUS: dict[str, int] = {
    "InvalidInput": 422,
    "ValidationFailed": 422,
    "MissingDependency": 422,
    "UnsupportedPeriodicity": 422,
    "NotFound": 404,
    "InvalidStateTransition": 409,
    "ConcurrentModification": 409,
    "StaleAdjustmentSet": 409,
    "DuplicatePeriod": 409,
    "PeriodLocked": 409,
    "Timeout": 504,
    "CriticalInconsistency": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    init_db()
    if get_settings().create_schema:
        await create_schema()
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="Nomina Engine API",
        description="Colombian payroll calculation and period closure",
        version=settings.engine_version,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollError)
    async def payroll_error_handler(request: Request, exc: PayrollError) -> JSONResponse:
        """Map domain errors to their HTTP status with structured details."""
        status_code = ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "kind": "InternalError",
                "message": "An unexpected error occurred",
                "details": [],
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(calculations_router, prefix="/api/v1")
    app.include_router(periods_router, prefix="/api/v1")
    app.include_router(benefits_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
