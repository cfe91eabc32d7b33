"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from payrun_engine.api.dependencies import DbSession
from payrun_engine.config import get_settings
from payrun_engine.enums import LoanStatus
from payrun_engine.models import LoanApplication, Payrun
from payrun_engine.services.state_machine import PayrunStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Engine health: database reachability plus outstanding work."""

    status: str
    timestamp: datetime
    database: str
    version: str
    payruns_awaiting_approval: int | None = None
    active_loans: int | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession) -> HealthResponse:
    """Check database health and count payruns and loans in flight."""
    awaiting = active = None
    try:
        awaiting = await db.scalar(
            select(func.count())
            .select_from(Payrun)
            .where(Payrun.status.in_(list(PayrunStateMachine.AWAITING_APPROVAL)))
        )
        active = await db.scalar(
            select(func.count())
            .select_from(LoanApplication)
            .where(LoanApplication.status == LoanStatus.ACTIVE)
        )
    except SQLAlchemyError:
        logger.exception("Database health check failed")

    healthy = active is not None
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(timezone.utc),
        database="healthy" if healthy else "unhealthy",
        version=get_settings().engine_version,
        payruns_awaiting_approval=awaiting,
        active_loans=active,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check() -> dict[str, str]:
    """Readiness probe."""
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}
