"""Per-employee pay calculation for salary and allowance payruns."""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.calculators.compensation_resolver import SalaryStructureResolver
from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.types import EmployeePay, LineCandidate, PayPeriod
from payrun_engine.enums import (
    EmployeeStatus,
    LoanStatus,
    PayrunLineType,
    RepaymentStatus,
)
from payrun_engine.models import (
    Allowance,
    Employee,
    EmployeeAllowance,
    LoanApplication,
    LoanRepayment,
)

logger = logging.getLogger(__name__)


class PayrunCalculator:
    """Computes employee pay for a payrun period.

    Salary runs: every active employee with an effective salary structure,
    plus one loan line per installment of an active loan due in the period.

    Allowance runs: every active employee entitled to the allowance directly
    or through their salary structure; one allowance line and its tax line.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.resolver = SalaryStructureResolver(session)

    async def calculate_salary_pay(self, period: PayPeriod) -> list[EmployeePay]:
        """Calculate pay for every eligible employee of a salary payrun."""
        employees = await self._get_active_employees()
        due = await self.get_due_installments(period)

        results: list[EmployeePay] = []
        for employee in employees:
            assignment = await self.resolver.get_effective_assignment(employee.employee_id, period)
            if assignment is None:
                logger.warning(
                    "Skipping employee %s: no salary structure effective in %s",
                    employee.employee_id,
                    period.label,
                )
                continue

            employee_deductions = await self.resolver.get_employee_deductions(employee.employee_id)
            compensation = self.resolver.build_lines(assignment, employee_deductions, period)
            lines = list(compensation.lines)
            lines.extend(self.build_loan_lines(due.get(employee.employee_id, [])))

            results.append(self.summarize(employee.employee_id, compensation.base_salary, lines))

        return results

    async def calculate_allowance_pay(
        self, allowance: Allowance, period: PayPeriod
    ) -> list[EmployeePay]:
        """Calculate pay for every employee entitled to an allowance."""
        employees = await self._get_active_employees()
        direct = await self._get_direct_entitlements(allowance.allowance_id, period)

        results: list[EmployeePay] = []
        for employee in employees:
            assignment = await self.resolver.get_effective_assignment(employee.employee_id, period)
            via_structure = assignment is not None and any(
                attachment.allowance_id == allowance.allowance_id
                and attachment.is_effective_between(period.start, period.end)
                for attachment in assignment.salary_structure.allowances
            )
            entitlement = direct.get(employee.employee_id)
            if entitlement is None and not via_structure:
                continue

            if assignment is not None:
                base = LineItemBuilder.round_to_cents(assignment.salary_structure.base_salary)
            elif allowance.percentage is not None:
                logger.warning(
                    "Skipping employee %s: percentage allowance %s needs a salary structure in %s",
                    employee.employee_id,
                    allowance.name,
                    period.label,
                )
                continue
            else:
                base = Decimal("0")

            amount = LineItemBuilder.apply_mode(allowance.calculation_mode, base)
            lines = [
                LineItemBuilder.create_allowance_line(
                    allowance.allowance_id,
                    allowance.name,
                    amount,
                    employee_allowance_id=(
                        entitlement.employee_allowance_id if entitlement is not None else None
                    ),
                )
            ]
            if allowance.taxable and allowance.tax_percentage:
                lines.append(
                    LineItemBuilder.create_tax_line(
                        allowance.allowance_id, allowance.name, amount, allowance.tax_percentage
                    )
                )

            results.append(self.summarize(employee.employee_id, Decimal("0"), lines))

        return results

    async def get_due_installments(
        self, period: PayPeriod
    ) -> dict[UUID, list[tuple[LoanRepayment, LoanApplication]]]:
        """Open installments of active loans due in the period, by employee."""
        result = await self.session.execute(
            select(LoanRepayment, LoanApplication)
            .join(
                LoanApplication,
                LoanApplication.loan_application_id == LoanRepayment.loan_application_id,
            )
            .where(
                LoanApplication.status == LoanStatus.ACTIVE,
                LoanRepayment.status.in_([RepaymentStatus.PENDING, RepaymentStatus.OVERDUE]),
                LoanRepayment.due_date >= period.start,
                LoanRepayment.due_date <= period.end,
            )
            .order_by(LoanApplication.reference_number, LoanRepayment.installment_number)
        )

        by_employee: dict[UUID, list[tuple[LoanRepayment, LoanApplication]]] = defaultdict(list)
        for repayment, loan in result.all():
            by_employee[loan.employee_id].append((repayment, loan))
        return by_employee

    @staticmethod
    def build_loan_lines(
        installments: list[tuple[LoanRepayment, LoanApplication]],
    ) -> list[LineCandidate]:
        """One negative loan line per installment, with the projected balance."""
        lines: list[LineCandidate] = []
        projected: dict[UUID, Decimal] = {}
        for repayment, loan in installments:
            balance = projected.get(loan.loan_application_id, loan.remaining_balance)
            balance = max(balance - repayment.expected_amount, Decimal("0"))
            projected[loan.loan_application_id] = balance
            lines.append(
                LineItemBuilder.create_loan_line(
                    loan_application_id=loan.loan_application_id,
                    loan_repayment_id=repayment.loan_repayment_id,
                    reference_number=loan.reference_number,
                    installment_number=repayment.installment_number,
                    amount=repayment.expected_amount,
                    remaining_after=balance,
                )
            )
        return lines

    @staticmethod
    def summarize(employee_id: UUID, base_salary: Decimal, lines: list[LineCandidate]) -> EmployeePay:
        """Aggregate lines into employee totals.

        ``total_deductions`` covers catalog deductions and loan installments;
        taxes are reported separately. ``net = gross - deductions - taxes``.
        """
        errors = LineItemBuilder.validate_line_signs(lines)
        if errors:
            raise ValueError(f"Invalid line signs for employee {employee_id}: {errors}")

        by_type = LineItemBuilder.sum_by_type(lines)
        gross = LineItemBuilder.calculate_gross_from_lines(lines)
        total_deductions = -(by_type[PayrunLineType.DEDUCTION] + by_type[PayrunLineType.LOAN])
        total_taxes = -by_type[PayrunLineType.TAX]

        return EmployeePay(
            employee_id=employee_id,
            base_salary=LineItemBuilder.round_to_cents(base_salary),
            lines=lines,
            total_allowances=LineItemBuilder.round_to_cents(by_type[PayrunLineType.ALLOWANCE]),
            total_deductions=LineItemBuilder.round_to_cents(total_deductions),
            total_taxes=LineItemBuilder.round_to_cents(total_taxes),
            gross_pay=gross,
            net_pay=LineItemBuilder.round_to_cents(gross - total_deductions - total_taxes),
        )

    async def _get_active_employees(self) -> list[Employee]:
        result = await self.session.execute(
            select(Employee)
            .where(Employee.status == EmployeeStatus.ACTIVE)
            .order_by(Employee.name, Employee.employee_id)
        )
        return list(result.scalars().all())

    async def _get_direct_entitlements(
        self, allowance_id: UUID, period: PayPeriod
    ) -> dict[UUID, EmployeeAllowance]:
        result = await self.session.execute(
            select(EmployeeAllowance).where(
                EmployeeAllowance.allowance_id == allowance_id,
                EmployeeAllowance.effective_from <= period.end,
                or_(
                    EmployeeAllowance.effective_to.is_(None),
                    EmployeeAllowance.effective_to >= period.start,
                ),
            )
        )
        return {entitlement.employee_id: entitlement for entitlement in result.scalars().all()}
