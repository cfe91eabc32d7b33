"""Payrun API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from payrun_engine.api.dependencies import ActorId, DbSession, Notifier, unwrap
from payrun_engine.api.schemas import (
    ErrorResponse,
    PayrunDetailResponse,
    PayrunGenerate,
    PayrunListResponse,
    PayrunResponse,
)
from payrun_engine.enums import PayrunStatus, PayrunType
from payrun_engine.operations import run_operation

router = APIRouter(prefix="/payruns", tags=["payruns"])

ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# ============================================================================
# Generation and queries
# ============================================================================


@router.post(
    "",
    response_model=PayrunDetailResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def generate_payrun(
    db: DbSession,
    notifier: Notifier,
    actor_id: ActorId,
    payload: PayrunGenerate,
) -> PayrunDetailResponse:
    """Generate a salary or allowance payrun for a period."""
    result = await run_operation(
        db,
        lambda ctx: ctx.payruns.generate_payrun(
            payload.payrun_type,
            month=payload.month,
            year=payload.year,
            allowance_id=payload.allowance_id,
            generated_by=actor_id,
        ),
        notifier,
    )
    return PayrunDetailResponse.model_validate(unwrap(result))


@router.get("", response_model=PayrunListResponse, responses=ERRORS)
async def list_payruns(
    db: DbSession,
    notifier: Notifier,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    status_filter: Annotated[PayrunStatus | None, Query(alias="status")] = None,
    payrun_type: PayrunType | None = None,
    year: int | None = None,
    month: int | None = None,
) -> PayrunListResponse:
    """List payruns with optional filters."""
    result = await run_operation(
        db,
        lambda ctx: ctx.payruns.list_payruns(
            status=status_filter,
            payrun_type=payrun_type,
            year=year,
            month=month,
            page=page,
            page_size=page_size,
        ),
        notifier,
    )
    payruns, total = unwrap(result)
    return PayrunListResponse(
        items=[PayrunResponse.model_validate(p) for p in payruns],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/approved", response_model=PayrunListResponse, responses=ERRORS)
async def list_approved_payruns(
    db: DbSession,
    notifier: Notifier,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> PayrunListResponse:
    """Finance view of approved and paid payruns."""
    result = await run_operation(
        db,
        lambda ctx: ctx.payruns.list_approved_payruns(page=page, page_size=page_size),
        notifier,
    )
    payruns, total = unwrap(result)
    return PayrunListResponse(
        items=[PayrunResponse.model_validate(p) for p in payruns],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{payrun_id}", response_model=PayrunDetailResponse, responses=ERRORS)
async def get_payrun(
    db: DbSession,
    notifier: Notifier,
    payrun_id: Annotated[UUID, Path()],
) -> PayrunDetailResponse:
    """Get a payrun with its items and lines."""
    result = await run_operation(db, lambda ctx: ctx.payruns.require_payrun(payrun_id), notifier)
    return PayrunDetailResponse.model_validate(unwrap(result))


# ============================================================================
# Lifecycle
# ============================================================================


@router.post("/{payrun_id}/approve", response_model=PayrunResponse, responses=ERRORS)
async def approve_payrun(
    db: DbSession,
    notifier: Notifier,
    actor_id: ActorId,
    payrun_id: Annotated[UUID, Path()],
) -> PayrunResponse:
    """Approve a draft or pending payrun."""
    result = await run_operation(
        db, lambda ctx: ctx.payruns.approve_payrun(payrun_id, approved_by=actor_id), notifier
    )
    return PayrunResponse.model_validate(unwrap(result))


@router.delete(
    "/{payrun_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERRORS,
)
async def rollback_payrun(
    db: DbSession,
    notifier: Notifier,
    payrun_id: Annotated[UUID, Path()],
) -> None:
    """Roll back (delete) a payrun that has not been approved."""
    result = await run_operation(db, lambda ctx: ctx.payruns.rollback_payrun(payrun_id), notifier)
    unwrap(result)


@router.post("/{payrun_id}/complete", response_model=PayrunResponse, responses=ERRORS)
async def complete_payrun(
    db: DbSession,
    notifier: Notifier,
    actor_id: ActorId,
    payrun_id: Annotated[UUID, Path()],
) -> PayrunResponse:
    """Mark an approved payrun as paid and settle its loan installments."""
    result = await run_operation(
        db, lambda ctx: ctx.payruns.complete_payrun(payrun_id, completed_by=actor_id), notifier
    )
    return PayrunResponse.model_validate(unwrap(result))


@router.post("/{payrun_id}/archive", response_model=PayrunResponse, responses=ERRORS)
async def archive_payrun(
    db: DbSession,
    notifier: Notifier,
    payrun_id: Annotated[UUID, Path()],
) -> PayrunResponse:
    """Archive a paid payrun."""
    result = await run_operation(db, lambda ctx: ctx.payruns.archive_payrun(payrun_id), notifier)
    return PayrunResponse.model_validate(unwrap(result))
