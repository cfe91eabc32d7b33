"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrun_engine.api.dependencies import OperationFailed
from payrun_engine.api.routes import health_router, loans_router, payruns_router
from payrun_engine.config import Settings, get_settings
from payrun_engine.database import dispose_db, init_db
from payrun_engine.services.notifications import NotificationEmitter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    owns_engine = app.state.session_factory is None
    if owns_engine:
        _, app.state.session_factory = init_db()
    yield
    # Shutdown
    if owns_engine:
        await dispose_db()


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    notifier: NotificationEmitter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    app = FastAPI(
        title="Payrun Engine API",
        description="Payroll payruns and loan amortization",
        version=settings.engine_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.session_factory = session_factory
    app.state.notifier = notifier or NotificationEmitter()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(OperationFailed)
    async def operation_failed_handler(request: Request, exc: OperationFailed) -> JSONResponse:
        """Render engine failures as ErrorResponse bodies."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.reason, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payruns_router, prefix="/api/v1")
    app.include_router(loans_router, prefix="/api/v1")

    return app
