"""Salary structure resolution into signed compensation lines."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.types import CompensationLines, LineCandidate, PayPeriod
from payrun_engine.errors import DependencyMissingError
from payrun_engine.models import (
    EmployeeDeduction,
    EmployeeSalary,
    SalaryStructure,
    SalaryStructureAllowance,
    SalaryStructureDeduction,
)

logger = logging.getLogger(__name__)


class StructureNotConfiguredError(DependencyMissingError):
    """Raised when an employee has no salary structure effective in a period."""

    def __init__(self, employee_id: UUID, period: PayPeriod):
        self.employee_id = employee_id
        self.period = period
        super().__init__(
            f"Employee {employee_id} has no salary structure effective in {period.label}",
            "NotConfigured",
        )


class SalaryStructureResolver:
    """Resolves an employee's effective salary structure for a period.

    Line order:
    1. Base salary
    2. Structure allowances (by position), each followed by its tax line
       when the allowance is taxable
    3. Structure deductions (by position); an active employee-specific
       deduction with the same name replaces the structure one
    4. Remaining employee-specific deductions

    Resolution is a pure read.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_effective_assignment(
        self, employee_id: UUID, period: PayPeriod
    ) -> EmployeeSalary | None:
        """Get the most recent active structure assignment overlapping the period."""
        result = await self.session.execute(
            select(EmployeeSalary)
            .join(SalaryStructure)
            .options(
                selectinload(EmployeeSalary.salary_structure)
                .selectinload(SalaryStructure.allowances)
                .selectinload(SalaryStructureAllowance.allowance),
                selectinload(EmployeeSalary.salary_structure)
                .selectinload(SalaryStructure.deductions)
                .selectinload(SalaryStructureDeduction.deduction),
            )
            .where(
                EmployeeSalary.employee_id == employee_id,
                SalaryStructure.active.is_(True),
                EmployeeSalary.effective_from <= period.end,
                or_(
                    EmployeeSalary.effective_to.is_(None),
                    EmployeeSalary.effective_to >= period.start,
                ),
            )
            .order_by(EmployeeSalary.effective_from.desc())
        )
        return result.scalars().first()

    async def resolve_compensation(
        self, employee_id: UUID, period: PayPeriod
    ) -> CompensationLines:
        """Resolve base salary and attached allowances/deductions into lines.

        Raises:
            StructureNotConfiguredError: If no structure is effective in the period
        """
        assignment = await self.get_effective_assignment(employee_id, period)
        if assignment is None:
            raise StructureNotConfiguredError(employee_id, period)

        employee_deductions = await self.get_employee_deductions(employee_id)
        return self.build_lines(assignment, employee_deductions, period)

    async def resolve_base_salary(self, employee_id: UUID, period: PayPeriod) -> Decimal:
        """Resolve only the base salary for a period."""
        assignment = await self.get_effective_assignment(employee_id, period)
        if assignment is None:
            raise StructureNotConfiguredError(employee_id, period)
        return LineItemBuilder.round_to_cents(assignment.salary_structure.base_salary)

    @staticmethod
    def build_lines(
        assignment: EmployeeSalary,
        employee_deductions: list[EmployeeDeduction],
        period: PayPeriod,
    ) -> CompensationLines:
        """Build compensation lines from a loaded assignment."""
        structure = assignment.salary_structure
        base = LineItemBuilder.round_to_cents(structure.base_salary)
        lines: list[LineCandidate] = [LineItemBuilder.create_base_salary_line(base)]

        for attachment in structure.allowances:
            if not attachment.is_effective_between(period.start, period.end):
                continue
            allowance = attachment.allowance
            amount = LineItemBuilder.apply_mode(allowance.calculation_mode, base)
            lines.append(
                LineItemBuilder.create_allowance_line(allowance.allowance_id, allowance.name, amount)
            )
            if allowance.taxable and allowance.tax_percentage:
                lines.append(
                    LineItemBuilder.create_tax_line(
                        allowance.allowance_id,
                        allowance.name,
                        amount,
                        allowance.tax_percentage,
                    )
                )

        overrides = {_name_key(d.name): d for d in employee_deductions}
        for attachment in structure.deductions:
            if not attachment.is_effective_between(period.start, period.end):
                continue
            deduction = attachment.deduction
            override = overrides.pop(_name_key(deduction.name), None)
            if override is not None:
                lines.append(_employee_deduction_line(override, base))
                continue
            amount = LineItemBuilder.apply_mode(deduction.calculation_mode, base)
            lines.append(
                LineItemBuilder.create_deduction_line(
                    deduction.name, amount, deduction_id=deduction.deduction_id
                )
            )

        for remaining in overrides.values():
            lines.append(_employee_deduction_line(remaining, base))

        return CompensationLines(
            employee_id=assignment.employee_id,
            salary_structure_id=structure.salary_structure_id,
            period=period,
            base_salary=base,
            lines=lines,
        )

    async def get_employee_deductions(self, employee_id: UUID) -> list[EmployeeDeduction]:
        result = await self.session.execute(
            select(EmployeeDeduction)
            .where(
                EmployeeDeduction.employee_id == employee_id,
                EmployeeDeduction.active.is_(True),
            )
            .order_by(EmployeeDeduction.created_at, EmployeeDeduction.name)
        )
        return list(result.scalars().all())


def _name_key(name: str) -> str:
    return name.strip().casefold()


def _employee_deduction_line(deduction: EmployeeDeduction, base: Decimal) -> LineCandidate:
    amount = LineItemBuilder.apply_mode(deduction.calculation_mode, base)
    return LineItemBuilder.create_deduction_line(
        deduction.name,
        amount,
        employee_deduction_id=deduction.employee_deduction_id,
    )
