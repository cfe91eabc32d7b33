"""API routes."""

from payrun_engine.api.routes.health import router as health_router
from payrun_engine.api.routes.loans import router as loans_router
from payrun_engine.api.routes.payruns import router as payruns_router

__all__ = ["health_router", "loans_router", "payruns_router"]
