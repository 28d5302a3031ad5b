"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pms_engine.api.routes import (
    health_router,
    meter_readings_router,
    pms_calculations_router,
    pump_configurations_router,
)
from pms_engine.config import ReconciliationConfig
from pms_engine.database import init_db
from pms_engine.facade import PmsEngine

logger = logging.getLogger(__name__)


def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    config: ReconciliationConfig | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Without a session factory the configured database is initialized on
    startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        if session_factory is None:
            _, factory = init_db()
            app.state.session_factory = factory
            app.state.pms_engine = PmsEngine(factory, config)
        yield

    app = FastAPI(
        title="PMS Engine API",
        description="Fuel pump meter reading reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    if session_factory is not None:
        app.state.session_factory = session_factory
        app.state.pms_engine = PmsEngine(session_factory, config)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed requests in the standard envelope."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "data": None,
                "error": "Invalid request",
                "error_kind": "validation",
                "details": {"errors": jsonable_encoder(exc.errors())},
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "data": None,
                "error": "An unexpected error occurred",
                "error_kind": "internal",
                "details": {},
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(pump_configurations_router, prefix="/api/v1")
    app.include_router(meter_readings_router, prefix="/api/v1")
    app.include_router(pms_calculations_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
