"""Payrun service - generation, approval, rollback and completion."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payrun_engine.calculators.payrun_calculator import PayrunCalculator
from payrun_engine.calculators.types import EmployeePay, PayPeriod
from payrun_engine.database import acquire_advisory_lock
from payrun_engine.enums import PayrunStatus, PayrunType
from payrun_engine.errors import (
    InvalidTransitionError,
    NotFoundError,
    PolicyViolationError,
    StateConflictError,
    ValidationError,
)
from payrun_engine.models import (
    Allowance,
    Payrun,
    PayrunItem,
    PayrunItemDetail,
    build_period_key,
)
from payrun_engine.models.base import utcnow
from payrun_engine.services.notifications import (
    NotificationEmitter,
    NotificationEvent,
    NotificationKind,
)
from payrun_engine.services.settlement_service import LoanSettlementService
from payrun_engine.services.state_machine import PayrunStateMachine

logger = logging.getLogger(__name__)


class PayrunService:
    """Service for managing payrun lifecycle.

    Operations:
    - generate_payrun: Snapshot pay for every eligible employee (draft)
    - approve_payrun: draft|pending → approved, no recomputation
    - rollback_payrun: Delete an unapproved payrun with its items
    - complete_payrun: Settle loan installments and mark paid, atomically
    - archive_payrun: paid → archived

    Mutations are flushed, never committed; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession, notifier: NotificationEmitter | None = None):
        self.session = session
        self.notifier = notifier or NotificationEmitter()
        self.settlement = LoanSettlementService(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_payrun(
        self,
        payrun_id: UUID,
        load_items: bool = True,
        for_update: bool = False,
    ) -> Payrun | None:
        """Load a payrun with optional items and their details."""
        query = select(Payrun).where(Payrun.payrun_id == payrun_id)
        if load_items:
            query = query.options(selectinload(Payrun.items).selectinload(PayrunItem.details))
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def require_payrun(
        self,
        payrun_id: UUID,
        load_items: bool = True,
        for_update: bool = False,
    ) -> Payrun:
        payrun = await self.get_payrun(payrun_id, load_items=load_items, for_update=for_update)
        if payrun is None:
            raise NotFoundError("Payrun", payrun_id)
        return payrun

    async def list_payruns(
        self,
        status: PayrunStatus | list[PayrunStatus] | None = None,
        payrun_type: PayrunType | None = None,
        year: int | None = None,
        month: int | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Payrun], int]:
        """List payruns, newest period first. Returns ``(payruns, total)``."""
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive")

        query = select(Payrun)
        if isinstance(status, list):
            query = query.where(Payrun.status.in_(status))
        elif status is not None:
            query = query.where(Payrun.status == status)
        if payrun_type is not None:
            query = query.where(Payrun.payrun_type == payrun_type)
        if year is not None:
            query = query.where(Payrun.year == year)
        if month is not None:
            query = query.where(Payrun.month == month)

        total = await self.session.scalar(select(func.count()).select_from(query.subquery())) or 0

        query = (
            query.order_by(Payrun.year.desc(), Payrun.month.desc(), Payrun.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def list_approved_payruns(
        self, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payrun], int]:
        """Finance view: payruns that are approved or already paid."""
        return await self.list_payruns(
            status=[PayrunStatus.APPROVED, PayrunStatus.PAID],
            page=page,
            page_size=page_size,
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_payrun(
        self,
        payrun_type: PayrunType,
        month: int,
        year: int,
        allowance_id: UUID | None = None,
        generated_by: UUID | None = None,
    ) -> Payrun:
        """Generate a payrun for one period.

        Args:
            payrun_type: salary or allowance
            month: Target month (1-12)
            year: Target year
            allowance_id: Allowance to pay (allowance payruns only)
            generated_by: Acting user

        Returns:
            The new payrun in ``draft`` status, items and details loaded

        Raises:
            ValidationError: Bad period or type/allowance combination
            PolicyViolationError: DuplicatePeriod, NoEligibleEmployees, NegativeNetPay
        """
        payrun_type = PayrunType(payrun_type)
        period = PayPeriod(year=year, month=month)

        allowance: Allowance | None = None
        if payrun_type == PayrunType.ALLOWANCE:
            if allowance_id is None:
                raise ValidationError("Allowance payruns require an allowance")
            allowance = await self.session.get(Allowance, allowance_id)
            if allowance is None:
                raise NotFoundError("Allowance", allowance_id)
        elif allowance_id is not None:
            raise ValidationError("Salary payruns cannot be scoped to an allowance")

        period_key = build_period_key(payrun_type, allowance_id, period)
        existing = await self.session.scalar(
            select(Payrun.payrun_id).where(Payrun.period_key == period_key)
        )
        if existing is not None:
            raise PolicyViolationError(
                "A payrun already exists for this period and type", "DuplicatePeriod"
            )

        calculator = PayrunCalculator(self.session)
        if allowance is not None:
            pays = await calculator.calculate_allowance_pay(allowance, period)
            name = f"{allowance.name} Payrun - {period.label}"
        else:
            pays = await calculator.calculate_salary_pay(period)
            name = f"Salary Payrun - {period.label}"

        if not pays:
            raise PolicyViolationError("No eligible employees found", "NoEligibleEmployees")

        negative = [pay for pay in pays if pay.net_pay < 0]
        if negative:
            listing = ", ".join(f"{pay.employee_id} ({pay.net_pay})" for pay in negative)
            raise PolicyViolationError(
                f"Net pay would be negative for {len(negative)} employee(s): {listing}; "
                "review their compensation",
                "NegativeNetPay",
            )

        payrun = self._build_payrun(
            name=name,
            payrun_type=payrun_type,
            allowance_id=allowance_id,
            period=period,
            period_key=period_key,
            pays=pays,
            generated_by=generated_by,
        )
        self.session.add(payrun)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # A concurrent writer claimed the period first
            raise PolicyViolationError(
                "A payrun already exists for this period and type", "DuplicatePeriod"
            ) from e

        logger.info(
            "Generated %s for %d employee(s): gross=%s net=%s",
            name,
            payrun.total_employees,
            payrun.total_gross_pay,
            payrun.total_net_pay,
        )
        return payrun

    @staticmethod
    def _build_payrun(
        name: str,
        payrun_type: PayrunType,
        allowance_id: UUID | None,
        period: PayPeriod,
        period_key: str,
        pays: list[EmployeePay],
        generated_by: UUID | None,
    ) -> Payrun:
        items: list[PayrunItem] = []
        for position, pay in enumerate(pays):
            details = [
                PayrunItemDetail(
                    employee_id=pay.employee_id,
                    position=line_position,
                    **line.to_detail_values(),
                )
                for line_position, line in enumerate(pay.lines)
            ]
            items.append(
                PayrunItem(
                    employee_id=pay.employee_id,
                    position=position,
                    base_salary=pay.base_salary,
                    total_allowances=pay.total_allowances,
                    total_deductions=pay.total_deductions,
                    total_taxes=pay.total_taxes,
                    gross_pay=pay.gross_pay,
                    net_pay=pay.net_pay,
                    details=details,
                )
            )

        zero = Decimal("0")
        return Payrun(
            name=name,
            payrun_type=payrun_type,
            allowance_id=allowance_id,
            month=period.month,
            year=period.year,
            period_key=period_key,
            total_employees=len(items),
            total_gross_pay=sum((i.gross_pay for i in items), zero),
            total_deductions=sum((i.total_deductions + i.total_taxes for i in items), zero),
            total_net_pay=sum((i.net_pay for i in items), zero),
            status=PayrunStatus.DRAFT,
            generated_by=generated_by,
            items=items,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def approve_payrun(self, payrun_id: UUID, approved_by: UUID | None = None) -> Payrun:
        """Approve a payrun awaiting approval. Totals are not recomputed."""
        payrun = await self.require_payrun(payrun_id, for_update=True)
        PayrunStateMachine.validate_transition(payrun.status, PayrunStatus.APPROVED)

        now = utcnow()
        await self._conditional_status_update(
            payrun,
            expected=PayrunStateMachine.AWAITING_APPROVAL,
            to_status=PayrunStatus.APPROVED,
            approved_by=approved_by,
            approved_at=now,
        )

        self.notifier.queue(
            NotificationEvent(
                kind=NotificationKind.PAYRUN_APPROVED,
                user_id=payrun.generated_by,
                title="Payrun approved",
                message=f"{payrun.name} has been approved and is ready for payment.",
                reference_id=payrun.payrun_id,
            )
        )
        logger.info("Approved payrun %s (%s)", payrun.payrun_id, payrun.name)
        return payrun

    async def rollback_payrun(self, payrun_id: UUID) -> None:
        """Delete an unapproved payrun together with its items and details.

        Raises:
            StateConflictError: If the payrun is approved or later
        """
        payrun = await self.require_payrun(payrun_id, load_items=False, for_update=True)
        if not PayrunStateMachine.can_rollback(payrun.status):
            raise StateConflictError(
                f"Cannot roll back payrun in status '{payrun.status.value}'; "
                "only draft or pending payruns can be rolled back",
                "InvalidState",
            )

        item_ids = select(PayrunItem.payrun_item_id).where(PayrunItem.payrun_id == payrun_id)
        await self.session.execute(
            delete(PayrunItemDetail)
            .where(PayrunItemDetail.payrun_item_id.in_(item_ids))
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(PayrunItem)
            .where(PayrunItem.payrun_id == payrun_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            delete(Payrun)
            .where(
                Payrun.payrun_id == payrun_id,
                Payrun.status.in_(list(PayrunStateMachine.AWAITING_APPROVAL)),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StateConflictError(
                f"Payrun {payrun_id} changed status during rollback", "InvalidState"
            )

        self.session.expunge(payrun)
        logger.info("Rolled back payrun %s (%s)", payrun_id, payrun.name)

    async def complete_payrun(self, payrun_id: UUID, completed_by: UUID | None = None) -> Payrun:
        """Mark an approved payrun as paid, settling its loan installments.

        This method:
        1. Acquires advisory lock for concurrency control
        2. Validates status is approved
        3. Plans settlement of every loan line, validating all installments
           and loans before touching any
        4. Applies the settlement
        5. Finalizes run status with conditional update

        Any failure leaves every row untouched once the caller rolls back;
        the payrun stays ``approved``.
        """
        lock_acquired = await acquire_advisory_lock(self.session, f"payrun:{payrun_id}")
        if not lock_acquired:
            raise StateConflictError(
                f"Payrun {payrun_id} is being completed by another request", "Locked"
            )

        payrun = await self.require_payrun(payrun_id, load_items=False, for_update=True)
        PayrunStateMachine.validate_transition(payrun.status, PayrunStatus.PAID)

        plan = await self.settlement.plan_payrun_settlement(payrun)
        now = utcnow()
        outcome = await self.settlement.apply(
            plan,
            payrun_id=payrun.payrun_id,
            performed_by=completed_by,
            paid_at=now,
        )

        await self._conditional_status_update(
            payrun,
            expected={PayrunStatus.APPROVED},
            to_status=PayrunStatus.PAID,
            completed_by=completed_by,
            completed_at=now,
        )

        self.notifier.queue(
            NotificationEvent(
                kind=NotificationKind.PAYRUN_PAID,
                user_id=payrun.generated_by,
                title="Payrun paid",
                message=f"{payrun.name} has been marked as paid.",
                reference_id=payrun.payrun_id,
            )
        )
        logger.info(
            "Completed payrun %s: %d installment(s) settled for %s, %d loan(s) closed",
            payrun.payrun_id,
            outcome.installments_paid,
            outcome.amount_settled,
            len(outcome.completed_loans),
        )
        return payrun

    async def archive_payrun(self, payrun_id: UUID) -> Payrun:
        """Archive a paid payrun."""
        payrun = await self.require_payrun(payrun_id, load_items=False, for_update=True)
        PayrunStateMachine.validate_transition(payrun.status, PayrunStatus.ARCHIVED)
        await self._conditional_status_update(
            payrun,
            expected={PayrunStatus.PAID},
            to_status=PayrunStatus.ARCHIVED,
        )
        logger.info("Archived payrun %s", payrun.payrun_id)
        return payrun

    async def _conditional_status_update(
        self,
        payrun: Payrun,
        expected: set[PayrunStatus] | frozenset[PayrunStatus],
        to_status: PayrunStatus,
        **values: object,
    ) -> None:
        """UPDATE ... WHERE status IN expected; a lost race is a conflict."""
        now = utcnow()
        result = await self.session.execute(
            update(Payrun)
            .where(
                Payrun.payrun_id == payrun.payrun_id,
                Payrun.status.in_(list(expected)),
            )
            .values(status=to_status, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.refresh(payrun)
            raise InvalidTransitionError(
                payrun.status.value, to_status.value, "Status changed concurrently"
            )

        payrun.status = to_status
        payrun.updated_at = now
        for key, value in values.items():
            setattr(payrun, key, value)
