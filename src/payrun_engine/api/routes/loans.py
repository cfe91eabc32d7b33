"""Loan API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from payrun_engine.api.dependencies import ActorId, DbSession, Notifier, unwrap
from payrun_engine.api.schemas import (
    EarlyRepayment,
    EligibilityResponse,
    ErrorResponse,
    InstallmentSettle,
    LoanApplicationListResponse,
    LoanApplicationResponse,
    LoanApply,
    LoanCancel,
    LoanDisburse,
    LoanHistoryResponse,
    LoanReview,
    LoanStatisticsResponse,
    LoanTypeResponse,
    MarkOverdue,
    OverdueResponse,
    RepaymentResponse,
    SettlementResponse,
)
from payrun_engine.enums import LoanStatus
from payrun_engine.operations import run_operation
from payrun_engine.services.settlement_service import SettlementOutcome

router = APIRouter(prefix="/loans", tags=["loans"])

ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    424: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _settlement_response(outcome: SettlementOutcome) -> SettlementResponse:
    return SettlementResponse(
        installments_paid=outcome.installments_paid,
        amount_settled=outcome.amount_settled,
        completed_loan_ids=[loan.loan_application_id for loan in outcome.completed_loans],
    )


# ============================================================================
# Loan types and eligibility
# ============================================================================


@router.get("/types", response_model=list[LoanTypeResponse], responses=ERRORS)
async def list_loan_types(
    db: DbSession,
    notifier: Notifier,
    active_only: bool = True,
) -> list[LoanTypeResponse]:
    """List loan products."""
    result = await run_operation(
        db, lambda ctx: ctx.loans.list_loan_types(active_only=active_only), notifier
    )
    return [LoanTypeResponse.model_validate(t) for t in unwrap(result)]


@router.get(
    "/types/eligible/{employee_id}",
    response_model=list[LoanTypeResponse],
    responses=ERRORS,
)
async def list_eligible_loan_types(
    db: DbSession,
    notifier: Notifier,
    employee_id: Annotated[UUID, Path()],
) -> list[LoanTypeResponse]:
    """Loan products the employee currently qualifies for."""
    result = await run_operation(
        db, lambda ctx: ctx.loans.get_eligible_loan_types(employee_id), notifier
    )
    return [LoanTypeResponse.model_validate(t) for t in unwrap(result)]


@router.get("/eligibility", response_model=EligibilityResponse, responses=ERRORS)
async def get_eligibility(
    db: DbSession,
    notifier: Notifier,
    employee_id: UUID,
    loan_type_id: UUID,
    as_of: date | None = None,
) -> EligibilityResponse:
    """Maximum amount an employee may borrow under a loan type."""
    result = await run_operation(
        db,
        lambda ctx: ctx.loans.calculate_max_eligible_amount(employee_id, loan_type_id, as_of),
        notifier,
    )
    return EligibilityResponse.model_validate(unwrap(result))


# ============================================================================
# Applications
# ============================================================================


@router.post(
    "",
    response_model=LoanApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def apply_for_loan(
    db: DbSession,
    notifier: Notifier,
    payload: LoanApply,
) -> LoanApplicationResponse:
    """Submit a loan application."""
    result = await run_operation(
        db,
        lambda ctx: ctx.loans.apply_for_loan(
            payload.employee_id,
            payload.loan_type_id,
            payload.requested_amount,
            payload.reason,
            as_of=payload.as_of,
        ),
        notifier,
    )
    return LoanApplicationResponse.model_validate(unwrap(result))


@router.get("", response_model=LoanApplicationListResponse, responses=ERRORS)
async def list_loan_applications(
    db: DbSession,
    notifier: Notifier,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    status_filter: Annotated[LoanStatus | None, Query(alias="status")] = None,
    employee_id: UUID | None = None,
    loan_type_id: UUID | None = None,
    reference: str | None = None,
) -> LoanApplicationListResponse:
    """List loan applications with optional filters."""
    result = await run_operation(
        db,
        lambda ctx: ctx.loans.list_loan_applications(
            status=status_filter,
            employee_id=employee_id,
            loan_type_id=loan_type_id,
            reference=reference,
            page=page,
            page_size=page_size,
        ),
        notifier,
    )
    loans, total = unwrap(result)
    return LoanApplicationListResponse(
        items=[LoanApplicationResponse.model_validate(loan) for loan in loans],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/statistics", response_model=LoanStatisticsResponse, responses=ERRORS)
async def get_loan_statistics(db: DbSession, notifier: Notifier) -> LoanStatisticsResponse:
    """Counts and totals across all loan applications."""
    result = await run_operation(db, lambda ctx: ctx.loans.get_loan_statistics(), notifier)
    return LoanStatisticsResponse.model_validate(unwrap(result))


@router.post("/repayments/mark-overdue", response_model=OverdueResponse, responses=ERRORS)
async def mark_overdue_repayments(
    db: DbSession,
    notifier: Notifier,
    payload: MarkOverdue,
) -> OverdueResponse:
    """Flag pending installments whose due date has passed."""
    as_of = payload.as_of or date.today()
    result = await run_operation(
        db, lambda ctx: ctx.loans.mark_overdue_repayments(as_of), notifier
    )
    return OverdueResponse(marked_overdue=unwrap(result))


@router.get("/{loan_id}", response_model=LoanApplicationResponse, responses=ERRORS)
async def get_loan_application(
    db: DbSession,
    notifier: Notifier,
    loan_id: Annotated[UUID, Path()],
) -> LoanApplicationResponse:
    """Get a loan application."""
    result = await run_operation(db, lambda ctx: ctx.loans.require_loan(loan_id), notifier)
    return LoanApplicationResponse.model_validate(unwrap(result))


@router.post("/{loan_id}/review", response_model=LoanApplicationResponse, responses=ERRORS)
async def review_loan(
    db: DbSession,
    notifier: Notifier,
    actor_id: ActorId,
    loan_id: Annotated[UUID, Path()],
    payload: LoanReview,
) -> LoanApplicationResponse:
    """HR approval or rejection of a pending application."""
    result = await run_operation(
        db,
        lambda ctx: ctx.loans.hr_review_loan(
            loan_id,
            payload.action,
            approved_amount=payload.approved_amount,
            remarks=payload.remarks,
            reviewed_by=actor_id,
        ),
        notifier,
    )
    return LoanApplicationResponse.model_validate(unwrap(result))


@router.post("/{loan_id}/disburse", response_model=LoanApplicationResponse, responses=ERRORS)
async def disburse_loan(
    db: DbSession,
    notifier: Notifier,
    actor_id: ActorId,
    loan_id: Annotated[UUID, Path()],
    payload: LoanDisburse,
) -> LoanApplicationResponse:
    """Disburse an HR-approved loan and generate its schedule."""
    result = await run_operation(
        db,
        lambda ctx: ctx.loans.disburse_loan(
            loan_id,
            remarks=payload.remarks,
            disbursed_by=actor_id,
            as_of=payload.as_of,
        ),
        notifier,
    )
    return LoanApplicationResponse.model_validate(unwrap(result))


@router.post("/{loan_id}/cancel", response_model=LoanApplicationResponse, responses=ERRORS)
async def cancel_loan_application(
    db: DbSession,
    notifier: Notifier,
    actor_id: ActorId,
    loan_id: Annotated[UUID, Path()],
    payload: LoanCancel,
) -> LoanApplicationResponse:
    """Cancel an application before disbursement."""
    result = await run_operation(
        db,
        lambda ctx: ctx.loans.cancel_loan_application(
            loan_id, reason=payload.reason, cancelled_by=actor_id
        ),
        notifier,
    )
    return LoanApplicationResponse.model_validate(unwrap(result))


# ============================================================================
# Repayments
# ============================================================================


@router.get(
    "/{loan_id}/schedule",
    response_model=list[RepaymentResponse],
    responses=ERRORS,
)
async def get_repayment_schedule(
    db: DbSession,
    notifier: Notifier,
    loan_id: Annotated[UUID, Path()],
) -> list[RepaymentResponse]:
    """Full installment schedule of a loan."""
    result = await run_operation(
        db, lambda ctx: ctx.loans.get_repayment_schedule(loan_id), notifier
    )
    return [RepaymentResponse.model_validate(r) for r in unwrap(result)]


@router.get(
    "/{loan_id}/history",
    response_model=list[LoanHistoryResponse],
    responses=ERRORS,
)
async def get_loan_history(
    db: DbSession,
    notifier: Notifier,
    loan_id: Annotated[UUID, Path()],
) -> list[LoanHistoryResponse]:
    """Audit trail of a loan."""
    result = await run_operation(db, lambda ctx: ctx.loans.get_loan_history(loan_id), notifier)
    return [LoanHistoryResponse.model_validate(h) for h in unwrap(result)]


@router.post("/{loan_id}/settle", response_model=SettlementResponse, responses=ERRORS)
async def settle_installment(
    db: DbSession,
    notifier: Notifier,
    actor_id: ActorId,
    loan_id: Annotated[UUID, Path()],
    payload: InstallmentSettle,
) -> SettlementResponse:
    """Manually settle one installment."""
    result = await run_operation(
        db,
        lambda ctx: ctx.loans.settle_installment(
            loan_id, payload.installment_number, settled_by=actor_id, note=payload.note
        ),
        notifier,
    )
    return _settlement_response(unwrap(result))


@router.post("/{loan_id}/early-repayment", response_model=SettlementResponse, responses=ERRORS)
async def make_early_repayment(
    db: DbSession,
    notifier: Notifier,
    actor_id: ActorId,
    loan_id: Annotated[UUID, Path()],
    payload: EarlyRepayment,
) -> SettlementResponse:
    """Pay the next whole installments with a lump sum."""
    result = await run_operation(
        db,
        lambda ctx: ctx.loans.make_early_repayment(loan_id, payload.amount, paid_by=actor_id),
        notifier,
    )
    return _settlement_response(unwrap(result))
