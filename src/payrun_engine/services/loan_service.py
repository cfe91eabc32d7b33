"""Loan service - eligibility, application lifecycle and repayments."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payrun_engine.calculators.amortization import build_schedule, calculate_terms, can_amortize
from payrun_engine.calculators.compensation_resolver import SalaryStructureResolver
from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.types import PayPeriod, Percentage
from payrun_engine.config import get_settings
from payrun_engine.enums import OPEN_LOAN_STATUSES, LoanStatus, RepaymentStatus
from payrun_engine.errors import (
    DependencyMissingError,
    InvalidTransitionError,
    NotFoundError,
    PolicyViolationError,
    StateConflictError,
    ValidationError,
)
from payrun_engine.models import (
    LoanApplication,
    LoanHistory,
    LoanRepayment,
    LoanType,
)
from payrun_engine.models.base import utcnow
from payrun_engine.services.directory import EmployeeDirectory, SqlEmployeeDirectory
from payrun_engine.services.notifications import (
    NotificationEmitter,
    NotificationEvent,
    NotificationKind,
)
from payrun_engine.services.settlement_service import LoanSettlementService, SettlementOutcome
from payrun_engine.services.state_machine import LoanStateMachine

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class LoanEligibility:
    """Maximum amount an employee may borrow under a loan type."""

    loan_type_id: UUID
    ceiling: Decimal
    open_exposure: Decimal
    max_amount: Decimal
    interest_rate: Decimal
    tenure_months: int
    total_interest: Decimal
    total_repayment: Decimal
    monthly_payment: Decimal


@dataclass(frozen=True)
class LoanStatistics:
    pending: int
    awaiting_disbursement: int
    active: int
    completed: int
    total_disbursed: Decimal
    total_repaid: Decimal
    outstanding_balance: Decimal


def months_of_service(hire_date: date, as_of: date) -> int:
    """Whole months between hire date and ``as_of``."""
    months = (as_of.year - hire_date.year) * 12 + (as_of.month - hire_date.month)
    if as_of.day < hire_date.day:
        months -= 1
    return max(months, 0)


class LoanService:
    """Service for loan applications and their repayment schedules.

    Lifecycle:
    - apply_for_loan: pending
    - hr_review_loan: pending → hr_approved | hr_rejected
    - disburse_loan: hr_approved → disbursed → active (schedule generated)
    - cancel_loan_application: pending | hr_approved → cancelled
    - installments settle through payrun completion or manual settlement;
      the loan completes when its balance reaches zero

    Mutations are flushed, never committed; the caller owns the transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationEmitter | None = None,
        directory: EmployeeDirectory | None = None,
        reference_prefix: str | None = None,
    ):
        self.session = session
        self.notifier = notifier or NotificationEmitter()
        self.directory = directory or SqlEmployeeDirectory(session)
        self.reference_prefix = reference_prefix or get_settings().loan_reference_prefix
        self.resolver = SalaryStructureResolver(session)
        self.settlement = LoanSettlementService(session)

    # ------------------------------------------------------------------
    # Loan types and eligibility
    # ------------------------------------------------------------------

    async def list_loan_types(self, active_only: bool = True) -> list[LoanType]:
        query = select(LoanType).options(selectinload(LoanType.eligible_structures))
        if active_only:
            query = query.where(LoanType.is_active.is_(True))
        result = await self.session.execute(query.order_by(LoanType.name))
        return list(result.scalars().all())

    async def require_loan_type(self, loan_type_id: UUID) -> LoanType:
        result = await self.session.execute(
            select(LoanType)
            .where(LoanType.loan_type_id == loan_type_id)
            .options(selectinload(LoanType.eligible_structures))
        )
        loan_type = result.scalar_one_or_none()
        if loan_type is None:
            raise NotFoundError("LoanType", loan_type_id)
        return loan_type

    async def calculate_max_eligible_amount(
        self,
        employee_id: UUID,
        loan_type_id: UUID,
        as_of: date | None = None,
    ) -> LoanEligibility:
        """Ceiling from the loan type policy minus open exposure of the same type.

        Fixed ceilings are used as is; percentage ceilings apply to the base
        salary resolved for the month of ``as_of``. Pure read.
        """
        as_of = as_of or date.today()
        loan_type = await self.require_loan_type(loan_type_id)

        mode = loan_type.calculation_mode
        if isinstance(mode, Percentage):
            base = await self.resolver.resolve_base_salary(employee_id, PayPeriod.containing(as_of))
            ceiling = LineItemBuilder.apply_mode(mode, base)
        else:
            ceiling = LineItemBuilder.apply_mode(mode, ZERO)

        exposure = await self._open_exposure(employee_id, loan_type_id)
        max_amount = max(ceiling - exposure, ZERO)

        total_interest = total_repayment = monthly = ZERO
        if can_amortize(max_amount, loan_type.interest_rate, loan_type.tenure_months):
            terms = calculate_terms(max_amount, loan_type.interest_rate, loan_type.tenure_months)
            total_interest = terms.total_interest
            total_repayment = terms.total_repayment
            monthly = terms.monthly_payment

        return LoanEligibility(
            loan_type_id=loan_type.loan_type_id,
            ceiling=ceiling,
            open_exposure=exposure,
            max_amount=max_amount,
            interest_rate=loan_type.interest_rate,
            tenure_months=loan_type.tenure_months,
            total_interest=total_interest,
            total_repayment=total_repayment,
            monthly_payment=monthly,
        )

    async def get_eligible_loan_types(
        self, employee_id: UUID, as_of: date | None = None
    ) -> list[LoanType]:
        """Active loan types whose structure and service rules the employee meets."""
        as_of = as_of or date.today()
        employee = await self.directory.get_employee(employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)

        eligible: list[LoanType] = []
        for loan_type in await self.list_loan_types(active_only=True):
            if await self._policy_problem(loan_type, employee.employee_id, employee.hire_date, as_of):
                continue
            eligible.append(loan_type)
        return eligible

    # ------------------------------------------------------------------
    # Application lifecycle
    # ------------------------------------------------------------------

    async def apply_for_loan(
        self,
        employee_id: UUID,
        loan_type_id: UUID,
        requested_amount: Decimal,
        reason: str,
        as_of: date | None = None,
    ) -> LoanApplication:
        """Submit a loan application in ``pending`` status.

        Raises:
            ValidationError: Non-positive amount, an amount too small to spread
                over the tenure, or an empty reason
            PolicyViolationError: AlreadyOpen, ExceedsEligibility, LoanTypeInactive,
                IneligibleSalaryStructure, InsufficientService, EmployeeInactive
        """
        as_of = as_of or date.today()
        requested_amount = LineItemBuilder.round_to_cents(Decimal(requested_amount))
        if requested_amount <= 0:
            raise ValidationError(f"Requested amount must be positive (got {requested_amount})")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required")

        employee = await self.directory.get_employee(employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        if not employee.is_active:
            raise PolicyViolationError(
                f"Employee {employee_id} is {employee.status.value}", "EmployeeInactive"
            )

        loan_type = await self.require_loan_type(loan_type_id)
        calculate_terms(requested_amount, loan_type.interest_rate, loan_type.tenure_months)
        problem = await self._policy_problem(loan_type, employee_id, employee.hire_date, as_of)
        if problem is not None:
            raise PolicyViolationError(*problem)

        open_loan = await self.session.scalar(
            select(LoanApplication.reference_number).where(
                LoanApplication.employee_id == employee_id,
                LoanApplication.loan_type_id == loan_type_id,
                LoanApplication.status.in_(list(OPEN_LOAN_STATUSES)),
            )
        )
        if open_loan is not None:
            raise PolicyViolationError(
                f"An open {loan_type.name} loan already exists ({open_loan})", "AlreadyOpen"
            )

        eligibility = await self.calculate_max_eligible_amount(employee_id, loan_type_id, as_of)
        if requested_amount > eligibility.max_amount:
            raise PolicyViolationError(
                f"Requested amount {requested_amount} exceeds maximum eligible amount "
                f"{eligibility.max_amount}",
                "ExceedsEligibility",
            )

        loan = LoanApplication(
            reference_number=await self._new_reference_number(as_of),
            employee_id=employee_id,
            loan_type_id=loan_type_id,
            requested_amount=requested_amount,
            tenure_months=loan_type.tenure_months,
            interest_rate=loan_type.interest_rate,
            reason=reason.strip(),
            status=LoanStatus.PENDING,
            total_repaid=ZERO,
            remaining_balance=requested_amount,
        )
        self.session.add(loan)
        await self.session.flush()
        self._record_history(
            loan,
            "applied",
            f"Applied for {requested_amount} ({loan_type.name}, {loan.tenure_months} months)",
            employee_id,
        )
        await self.session.flush()

        logger.info("Loan application %s submitted by %s", loan.reference_number, employee_id)
        return loan

    async def hr_review_loan(
        self,
        loan_id: UUID,
        action: ReviewAction | str,
        approved_amount: Decimal | None = None,
        remarks: str | None = None,
        reviewed_by: UUID | None = None,
    ) -> LoanApplication:
        """Approve (possibly reducing the amount) or reject a pending application."""
        action = ReviewAction(action)
        loan = await self.require_loan(loan_id, for_update=True)
        now = utcnow()

        if action == ReviewAction.APPROVE:
            LoanStateMachine.validate_transition(loan.status, LoanStatus.HR_APPROVED)
            if approved_amount is None:
                raise ValidationError("An approved amount is required")
            approved_amount = LineItemBuilder.round_to_cents(Decimal(approved_amount))
            if approved_amount <= 0 or approved_amount > loan.requested_amount:
                raise ValidationError(
                    f"Approved amount must be greater than 0 and at most the requested "
                    f"amount {loan.requested_amount} (got {approved_amount})"
                )

            terms = calculate_terms(approved_amount, loan.interest_rate, loan.tenure_months)
            await self._claim(loan, LoanStatus.PENDING, LoanStatus.HR_APPROVED)
            loan.approved_amount = approved_amount
            loan.total_interest = terms.total_interest
            loan.total_repayment = terms.total_repayment
            loan.monthly_deduction = terms.monthly_payment
            loan.remaining_balance = terms.total_repayment
            loan.hr_reviewed_by = reviewed_by
            loan.hr_reviewed_at = now
            loan.hr_remarks = remarks
            self._record_history(
                loan,
                "hr_approved",
                f"Approved {approved_amount}; monthly deduction {terms.monthly_payment} "
                f"over {loan.tenure_months} months",
                reviewed_by,
            )
            self._notify(
                loan,
                NotificationKind.LOAN_APPROVED,
                "Loan approved",
                f"Your loan {loan.reference_number} was approved for {approved_amount}.",
            )
        else:
            LoanStateMachine.validate_transition(loan.status, LoanStatus.HR_REJECTED)
            if not remarks or not remarks.strip():
                raise ValidationError("Remarks are required when rejecting a loan")
            await self._claim(loan, LoanStatus.PENDING, LoanStatus.HR_REJECTED)
            loan.hr_reviewed_by = reviewed_by
            loan.hr_reviewed_at = now
            loan.hr_remarks = remarks.strip()
            self._record_history(loan, "hr_rejected", f"Rejected: {loan.hr_remarks}", reviewed_by)
            self._notify(
                loan,
                NotificationKind.LOAN_REJECTED,
                "Loan rejected",
                f"Your loan {loan.reference_number} was rejected: {loan.hr_remarks}",
            )

        await self.session.flush()
        logger.info("Loan %s reviewed: %s", loan.reference_number, loan.status.value)
        return loan

    async def disburse_loan(
        self,
        loan_id: UUID,
        remarks: str | None = None,
        disbursed_by: UUID | None = None,
        as_of: date | None = None,
    ) -> LoanApplication:
        """Disburse an approved loan and precompute its repayment schedule.

        The first installment is due on the 1st of the month after ``as_of``.
        The loan passes through ``disbursed`` to ``active`` in this transaction.

        Raises:
            DependencyMissingError: MissingBankDetails
        """
        as_of = as_of or date.today()
        loan = await self.require_loan(loan_id, for_update=True)
        LoanStateMachine.validate_transition(loan.status, LoanStatus.DISBURSED)

        bank = await self.directory.get_bank_details(loan.employee_id)
        if bank is None or not bank.is_complete():
            raise DependencyMissingError(
                f"Employee {loan.employee_id} has no bank details on file", "MissingBankDetails"
            )
        if loan.approved_amount is None:
            raise StateConflictError(f"Loan {loan.reference_number} has no approved amount")

        terms = calculate_terms(loan.approved_amount, loan.interest_rate, loan.tenure_months)
        schedule = build_schedule(terms, PayPeriod.containing(as_of).next())

        await self._claim(loan, LoanStatus.HR_APPROVED, LoanStatus.DISBURSED)
        loan.disbursed_by = disbursed_by
        loan.disbursed_at = utcnow()
        loan.disbursement_remarks = remarks
        loan.total_interest = terms.total_interest
        loan.total_repayment = terms.total_repayment
        loan.monthly_deduction = terms.monthly_payment
        loan.remaining_balance = terms.total_repayment
        loan.total_repaid = ZERO
        self._record_history(
            loan,
            "disbursed",
            f"Disbursed {loan.approved_amount} to {bank.bank_name} account ending "
            f"{bank.account_number[-4:]}",
            disbursed_by,
        )

        for row in schedule:
            self.session.add(
                LoanRepayment(
                    loan_application_id=loan.loan_application_id,
                    employee_id=loan.employee_id,
                    installment_number=row.installment_number,
                    due_date=row.due_date,
                    expected_amount=row.expected_amount,
                    paid_amount=ZERO,
                    balance_after=row.balance_after,
                    status=RepaymentStatus.PENDING,
                )
            )
        await self.session.flush()

        await self._claim(loan, LoanStatus.DISBURSED, LoanStatus.ACTIVE)
        self._record_history(
            loan,
            "activated",
            f"Repayment schedule of {len(schedule)} installments starting "
            f"{schedule[0].due_date.isoformat()}",
            disbursed_by,
        )
        self._notify(
            loan,
            NotificationKind.LOAN_DISBURSED,
            "Loan disbursed",
            f"Your loan {loan.reference_number} of {loan.approved_amount} has been disbursed.",
        )
        await self.session.flush()

        logger.info(
            "Loan %s disbursed: %d installments, total %s",
            loan.reference_number,
            len(schedule),
            terms.total_repayment,
        )
        return loan

    async def cancel_loan_application(
        self,
        loan_id: UUID,
        reason: str | None = None,
        cancelled_by: UUID | None = None,
    ) -> LoanApplication:
        """Cancel an application before disbursement."""
        loan = await self.require_loan(loan_id, for_update=True)
        LoanStateMachine.validate_transition(loan.status, LoanStatus.CANCELLED)

        await self._claim(loan, loan.status, LoanStatus.CANCELLED)
        self._record_history(
            loan,
            "cancelled",
            f"Cancelled: {reason.strip()}" if reason and reason.strip() else "Cancelled",
            cancelled_by,
        )
        await self.session.flush()
        logger.info("Loan %s cancelled", loan.reference_number)
        return loan

    # ------------------------------------------------------------------
    # Repayments
    # ------------------------------------------------------------------

    async def settle_installment(
        self,
        loan_id: UUID,
        installment_number: int,
        settled_by: UUID | None = None,
        note: str | None = None,
    ) -> SettlementOutcome:
        """Manually settle one installment at its expected amount.

        Raises:
            StateConflictError: If the installment is carried by an unpaid payrun
        """
        loan = await self.require_loan(loan_id)
        result = await self.session.execute(
            select(LoanRepayment).where(
                LoanRepayment.loan_application_id == loan.loan_application_id,
                LoanRepayment.installment_number == installment_number,
            )
        )
        repayment = result.scalar_one_or_none()
        if repayment is None:
            raise NotFoundError("Installment", f"{loan.reference_number}#{installment_number}")

        await self._ensure_not_reserved([repayment])
        plan = await self.settlement.plan_installments([repayment])
        outcome = await self.settlement.apply(
            plan, performed_by=settled_by, note=note or "manual settlement"
        )
        logger.info(
            "Installment %d of loan %s settled manually",
            installment_number,
            loan.reference_number,
        )
        return outcome

    async def make_early_repayment(
        self,
        loan_id: UUID,
        amount: Decimal,
        paid_by: UUID | None = None,
    ) -> SettlementOutcome:
        """Pay whole installments in order with a lump sum.

        The amount must equal the sum of the next N open installments.
        """
        amount = LineItemBuilder.round_to_cents(Decimal(amount))
        if amount <= 0:
            raise ValidationError(f"Repayment amount must be positive (got {amount})")

        loan = await self.require_loan(loan_id)
        if loan.status != LoanStatus.ACTIVE:
            raise StateConflictError(
                f"Loan {loan.reference_number} is {loan.status.value}, expected active"
            )
        if amount > loan.remaining_balance:
            raise ValidationError(
                f"Repayment {amount} exceeds remaining balance {loan.remaining_balance}"
            )

        result = await self.session.execute(
            select(LoanRepayment)
            .where(
                LoanRepayment.loan_application_id == loan.loan_application_id,
                LoanRepayment.status.in_([RepaymentStatus.PENDING, RepaymentStatus.OVERDUE]),
            )
            .order_by(LoanRepayment.installment_number)
        )
        selected: list[LoanRepayment] = []
        covered = ZERO
        for repayment in result.scalars().all():
            if covered + repayment.expected_amount > amount:
                break
            selected.append(repayment)
            covered += repayment.expected_amount

        if not selected or covered != amount:
            raise ValidationError(
                f"Early repayment must cover whole installments; {amount} would pay "
                f"{len(selected)} installment(s) totalling {covered}"
            )

        await self._ensure_not_reserved(selected)
        plan = await self.settlement.plan_installments(selected)
        outcome = await self.settlement.apply(plan, performed_by=paid_by, note="early repayment")
        logger.info(
            "Early repayment of %s on loan %s covered %d installment(s)",
            amount,
            loan.reference_number,
            len(selected),
        )
        return outcome

    async def mark_overdue_repayments(self, as_of: date) -> int:
        """Flag pending installments of active loans due before ``as_of``."""
        active_loans = select(LoanApplication.loan_application_id).where(
            LoanApplication.status == LoanStatus.ACTIVE
        )
        result = await self.session.execute(
            update(LoanRepayment)
            .where(
                LoanRepayment.status == RepaymentStatus.PENDING,
                LoanRepayment.due_date < as_of,
                LoanRepayment.loan_application_id.in_(active_loans),
            )
            .values(status=RepaymentStatus.OVERDUE, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        logger.info("Marked %d installment(s) overdue as of %s", count, as_of.isoformat())
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_loan(self, loan_id: UUID, for_update: bool = False) -> LoanApplication | None:
        query = (
            select(LoanApplication)
            .where(LoanApplication.loan_application_id == loan_id)
            .options(selectinload(LoanApplication.loan_type))
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def require_loan(self, loan_id: UUID, for_update: bool = False) -> LoanApplication:
        loan = await self.get_loan(loan_id, for_update=for_update)
        if loan is None:
            raise NotFoundError("LoanApplication", loan_id)
        return loan

    async def get_repayment_schedule(self, loan_id: UUID) -> list[LoanRepayment]:
        await self.require_loan(loan_id)
        result = await self.session.execute(
            select(LoanRepayment)
            .where(LoanRepayment.loan_application_id == loan_id)
            .order_by(LoanRepayment.installment_number)
        )
        return list(result.scalars().all())

    async def get_loan_history(self, loan_id: UUID) -> list[LoanHistory]:
        await self.require_loan(loan_id)
        result = await self.session.execute(
            select(LoanHistory)
            .where(LoanHistory.loan_application_id == loan_id)
            .order_by(LoanHistory.created_at, LoanHistory.loan_history_id)
        )
        return list(result.scalars().all())

    async def list_loan_applications(
        self,
        status: LoanStatus | None = None,
        employee_id: UUID | None = None,
        loan_type_id: UUID | None = None,
        reference: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[LoanApplication], int]:
        """List applications, newest first. Returns ``(applications, total)``."""
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive")

        query = select(LoanApplication)
        if status is not None:
            query = query.where(LoanApplication.status == status)
        if employee_id is not None:
            query = query.where(LoanApplication.employee_id == employee_id)
        if loan_type_id is not None:
            query = query.where(LoanApplication.loan_type_id == loan_type_id)
        if reference:
            query = query.where(LoanApplication.reference_number.ilike(f"%{reference}%"))

        total = await self.session.scalar(select(func.count()).select_from(query.subquery())) or 0

        query = (
            query.options(selectinload(LoanApplication.loan_type))
            .order_by(LoanApplication.applied_at.desc(), LoanApplication.reference_number)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def get_loan_statistics(self) -> LoanStatistics:
        counts = dict(
            (
                await self.session.execute(
                    select(LoanApplication.status, func.count()).group_by(LoanApplication.status)
                )
            ).all()
        )
        disbursed_statuses = [LoanStatus.DISBURSED, LoanStatus.ACTIVE, LoanStatus.COMPLETED]
        total_disbursed = await self.session.scalar(
            select(func.coalesce(func.sum(LoanApplication.approved_amount), 0)).where(
                LoanApplication.status.in_(disbursed_statuses)
            )
        )
        total_repaid = await self.session.scalar(
            select(func.coalesce(func.sum(LoanApplication.total_repaid), 0))
        )
        outstanding = await self.session.scalar(
            select(func.coalesce(func.sum(LoanApplication.remaining_balance), 0)).where(
                LoanApplication.status.in_([LoanStatus.DISBURSED, LoanStatus.ACTIVE])
            )
        )
        return LoanStatistics(
            pending=counts.get(LoanStatus.PENDING, 0),
            awaiting_disbursement=counts.get(LoanStatus.HR_APPROVED, 0),
            active=counts.get(LoanStatus.ACTIVE, 0),
            completed=counts.get(LoanStatus.COMPLETED, 0),
            total_disbursed=LineItemBuilder.round_to_cents(Decimal(total_disbursed or 0)),
            total_repaid=LineItemBuilder.round_to_cents(Decimal(total_repaid or 0)),
            outstanding_balance=LineItemBuilder.round_to_cents(Decimal(outstanding or 0)),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _policy_problem(
        self,
        loan_type: LoanType,
        employee_id: UUID,
        hire_date: date | None,
        as_of: date,
    ) -> tuple[str, str] | None:
        """Return ``(reason, code)`` if the loan type's rules exclude the employee."""
        if not loan_type.is_active:
            return f"Loan type {loan_type.name} is not available", "LoanTypeInactive"

        if loan_type.min_service_months:
            served = months_of_service(hire_date, as_of) if hire_date else 0
            if served < loan_type.min_service_months:
                return (
                    f"{loan_type.name} requires {loan_type.min_service_months} months of "
                    f"service (has {served})",
                    "InsufficientService",
                )

        allowed = {link.salary_structure_id for link in loan_type.eligible_structures}
        if allowed:
            assignment = await self.resolver.get_effective_assignment(
                employee_id, PayPeriod.containing(as_of)
            )
            if assignment is None or assignment.salary_structure_id not in allowed:
                return (
                    f"Employee's salary structure is not eligible for {loan_type.name}",
                    "IneligibleSalaryStructure",
                )
        return None

    async def _open_exposure(self, employee_id: UUID, loan_type_id: UUID) -> Decimal:
        result = await self.session.execute(
            select(LoanApplication).where(
                LoanApplication.employee_id == employee_id,
                LoanApplication.loan_type_id == loan_type_id,
                LoanApplication.status.in_(list(OPEN_LOAN_STATUSES)),
            )
        )
        exposure = ZERO
        for loan in result.scalars().all():
            if loan.status in (LoanStatus.DISBURSED, LoanStatus.ACTIVE):
                exposure += loan.remaining_balance
            else:
                exposure += loan.approved_amount or loan.requested_amount
        return exposure

    async def _ensure_not_reserved(self, repayments: list[LoanRepayment]) -> None:
        reserved = await self.settlement.find_reserved_repayments(
            r.loan_repayment_id for r in repayments
        )
        if reserved:
            numbers = sorted(r.installment_number for r in repayments if r.loan_repayment_id in reserved)
            raise StateConflictError(
                f"Installment(s) {numbers} are included in a payrun awaiting payment",
                "ReservedByPayrun",
            )

    async def _claim(
        self, loan: LoanApplication, from_status: LoanStatus, to_status: LoanStatus
    ) -> None:
        """Conditional status update; a lost race is a conflict."""
        LoanStateMachine.validate_transition(from_status, to_status)
        now = utcnow()
        result = await self.session.execute(
            update(LoanApplication)
            .where(
                LoanApplication.loan_application_id == loan.loan_application_id,
                LoanApplication.status == from_status,
            )
            .values(status=to_status, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.refresh(loan)
            raise InvalidTransitionError(
                loan.status.value, to_status.value, "Status changed concurrently"
            )
        loan.status = to_status
        loan.updated_at = now

    async def _new_reference_number(self, as_of: date) -> str:
        for _ in range(10):
            candidate = f"{self.reference_prefix}-{as_of:%Y%m%d}-{secrets.token_hex(3).upper()}"
            taken = await self.session.scalar(
                select(LoanApplication.loan_application_id).where(
                    LoanApplication.reference_number == candidate
                )
            )
            if taken is None:
                return candidate
        raise StateConflictError("Could not allocate a unique loan reference number")

    def _record_history(
        self,
        loan: LoanApplication,
        action: str,
        description: str,
        performed_by: UUID | None,
    ) -> None:
        self.session.add(
            LoanHistory(
                loan_application_id=loan.loan_application_id,
                action=action,
                description=description,
                performed_by=performed_by,
            )
        )

    def _notify(
        self,
        loan: LoanApplication,
        kind: NotificationKind,
        title: str,
        message: str,
    ) -> None:
        self.notifier.queue(
            NotificationEvent(
                kind=kind,
                user_id=loan.employee_id,
                title=title,
                message=message,
                reference_id=loan.loan_application_id,
            )
        )
