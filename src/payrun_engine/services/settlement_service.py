"""Loan installment settlement.

Settlement runs in two phases so a batch is all-or-nothing:

1. ``plan_*`` loads the installments and their loans (locked for update)
   and validates every precondition, collecting all problems.
2. ``apply`` mutates installments and loans only once the whole plan is
   valid.

Callers own the transaction; nothing here commits.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.enums import LoanStatus, PayrunLineType, PayrunStatus, RepaymentStatus
from payrun_engine.errors import StateConflictError
from payrun_engine.models import (
    LoanApplication,
    LoanHistory,
    LoanRepayment,
    Payrun,
    PayrunItem,
    PayrunItemDetail,
)
from payrun_engine.models.base import utcnow
from payrun_engine.services.state_machine import LoanStateMachine, PayrunStateMachine

logger = logging.getLogger(__name__)


@dataclass
class InstallmentSettlement:
    """One installment payment within a settlement plan."""

    repayment: LoanRepayment
    loan: LoanApplication
    amount: Decimal


@dataclass
class SettlementPlan:
    """Validated installment payments, ready to apply."""

    settlements: list[InstallmentSettlement] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((s.amount for s in self.settlements), Decimal("0"))

    @property
    def loan_ids(self) -> set[UUID]:
        return {s.loan.loan_application_id for s in self.settlements}


@dataclass
class SettlementOutcome:
    """What applying a plan changed."""

    installments_paid: int
    amount_settled: Decimal
    completed_loans: list[LoanApplication]


class LoanSettlementService:
    """Marks installments paid and moves loan balances."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def plan_payrun_settlement(self, payrun: Payrun) -> SettlementPlan:
        """Plan settlement of every loan line carried by a payrun.

        Raises:
            StateConflictError: If any installment or loan cannot be settled
        """
        result = await self.session.execute(
            select(PayrunItemDetail)
            .join(PayrunItem)
            .where(
                PayrunItem.payrun_id == payrun.payrun_id,
                PayrunItemDetail.line_type == PayrunLineType.LOAN,
            )
            .order_by(PayrunItem.position, PayrunItemDetail.position)
        )
        details = list(result.scalars().all())
        requests = [(d.loan_repayment_id, -d.amount) for d in details]
        return await self._plan(requests)

    async def plan_installments(
        self, repayments: Iterable[LoanRepayment]
    ) -> SettlementPlan:
        """Plan settlement of specific installments at their expected amounts."""
        return await self._plan(
            [(r.loan_repayment_id, r.expected_amount) for r in repayments]
        )

    async def apply(
        self,
        plan: SettlementPlan,
        *,
        payrun_id: UUID | None = None,
        performed_by: UUID | None = None,
        paid_at: datetime | None = None,
        note: str | None = None,
    ) -> SettlementOutcome:
        """Apply a validated plan: installments paid, balances moved, loans closed."""
        paid_at = paid_at or utcnow()
        completed: list[LoanApplication] = []

        for settlement in plan.settlements:
            repayment = settlement.repayment
            loan = settlement.loan
            amount = settlement.amount

            balance = LineItemBuilder.round_to_cents(loan.remaining_balance - amount)
            repayment.status = RepaymentStatus.PAID
            repayment.paid_amount = amount
            repayment.paid_at = paid_at
            repayment.balance_after = balance
            repayment.payrun_id = payrun_id
            if note:
                repayment.notes = note

            loan.remaining_balance = balance
            loan.total_repaid = LineItemBuilder.round_to_cents(loan.total_repaid + amount)

            source = f"payrun {payrun_id}" if payrun_id else (note or "manual settlement")
            self.session.add(
                LoanHistory(
                    loan_application_id=loan.loan_application_id,
                    action="repayment",
                    description=(
                        f"Installment {repayment.installment_number} of {amount} "
                        f"settled via {source}; remaining balance {balance}"
                    ),
                    performed_by=performed_by,
                )
            )

            if balance == 0:
                LoanStateMachine.validate_transition(loan.status, LoanStatus.COMPLETED)
                loan.status = LoanStatus.COMPLETED
                loan.completed_at = paid_at
                self.session.add(
                    LoanHistory(
                        loan_application_id=loan.loan_application_id,
                        action="completed",
                        description=f"Loan {loan.reference_number} fully repaid",
                        performed_by=performed_by,
                    )
                )
                completed.append(loan)
                logger.info("Loan %s completed", loan.reference_number)

        await self.session.flush()
        return SettlementOutcome(
            installments_paid=len(plan.settlements),
            amount_settled=plan.total,
            completed_loans=completed,
        )

    async def find_reserved_repayments(self, repayment_ids: Iterable[UUID]) -> set[UUID]:
        """Installments carried by a payrun that is not yet paid."""
        ids = list(repayment_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(PayrunItemDetail.loan_repayment_id)
            .join(PayrunItem)
            .join(Payrun)
            .where(
                PayrunItemDetail.loan_repayment_id.in_(ids),
                Payrun.status.in_(list(PayrunStateMachine.UNFINISHED)),
            )
        )
        return {row for row in result.scalars().all()}

    async def _plan(self, requests: list[tuple[UUID | None, Decimal]]) -> SettlementPlan:
        plan = SettlementPlan()
        if not requests:
            return plan

        repayment_ids = [rid for rid, _ in requests if rid is not None]
        repayments = await self._lock_repayments(repayment_ids)
        loans = await self._lock_loans({r.loan_application_id for r in repayments.values()})

        errors: list[str] = []
        remaining: dict[UUID, Decimal] = {
            loan_id: loan.remaining_balance for loan_id, loan in loans.items()
        }
        seen: set[UUID] = set()

        for repayment_id, amount in requests:
            if repayment_id is None:
                errors.append("Loan line has no installment reference")
                continue
            repayment = repayments.get(repayment_id)
            if repayment is None:
                errors.append(f"Installment {repayment_id} not found")
                continue
            if repayment_id in seen:
                errors.append(f"Installment {repayment_id} appears more than once")
                continue
            seen.add(repayment_id)

            loan = loans[repayment.loan_application_id]
            label = f"{loan.reference_number} installment {repayment.installment_number}"
            if not repayment.is_open:
                errors.append(f"{label} is already {repayment.status.value}")
                continue
            if loan.status != LoanStatus.ACTIVE:
                errors.append(f"{label}: loan is {loan.status.value}, expected active")
                continue
            if amount <= 0:
                errors.append(f"{label}: amount must be positive (got {amount})")
                continue
            if amount > remaining[loan.loan_application_id]:
                errors.append(
                    f"{label}: amount {amount} exceeds remaining balance "
                    f"{remaining[loan.loan_application_id]}"
                )
                continue

            remaining[loan.loan_application_id] -= amount
            plan.settlements.append(
                InstallmentSettlement(repayment=repayment, loan=loan, amount=amount)
            )

        if errors:
            raise StateConflictError(
                "Cannot settle loan installments: " + "; ".join(errors),
                "SettlementConflict",
            )
        return plan

    async def _lock_repayments(self, repayment_ids: list[UUID]) -> dict[UUID, LoanRepayment]:
        if not repayment_ids:
            return {}
        result = await self.session.execute(
            select(LoanRepayment)
            .where(LoanRepayment.loan_repayment_id.in_(repayment_ids))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {r.loan_repayment_id: r for r in result.scalars().all()}

    async def _lock_loans(self, loan_ids: set[UUID]) -> dict[UUID, LoanApplication]:
        if not loan_ids:
            return {}
        result = await self.session.execute(
            select(LoanApplication)
            .where(LoanApplication.loan_application_id.in_(list(loan_ids)))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {loan.loan_application_id: loan for loan in result.scalars().all()}
