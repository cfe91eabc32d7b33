"""Compensation catalog, salary structures and loan type maintenance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.calculators.types import CalculationMode
from payrun_engine.enums import AllowanceFrequency, DeductionType
from payrun_engine.errors import NotFoundError, StateConflictError, ValidationError
from payrun_engine.models import (
    Allowance,
    Deduction,
    EmployeeAllowance,
    EmployeeDeduction,
    EmployeeSalary,
    LoanType,
    LoanTypeSalaryStructure,
    Payrun,
    PayrunItem,
    PayrunItemDetail,
    SalaryStructure,
    SalaryStructureAllowance,
    SalaryStructureDeduction,
)
from payrun_engine.services.state_machine import PayrunStateMachine

logger = logging.getLogger(__name__)

ALLOWANCE_FIELDS = {"name", "frequency", "taxable", "tax_percentage", "description", "calculation_mode"}
DEDUCTION_FIELDS = {"name", "deduction_type", "description", "calculation_mode"}


@dataclass(frozen=True)
class Attachment:
    """Catalog entry to attach to a salary structure."""

    catalog_id: UUID
    effective_from: date
    effective_to: date | None = None


class CatalogService:
    """Maintains allowances, deductions, salary structures and loan types.

    Allowances and deductions referenced by lines of an approved or paid
    payrun are frozen; historical lines keep their own snapshot.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ===== Allowances and deductions =====

    async def create_allowance(
        self,
        name: str,
        mode: CalculationMode,
        frequency: AllowanceFrequency = AllowanceFrequency.MONTHLY,
        taxable: bool = False,
        tax_percentage: Decimal | None = None,
        description: str | None = None,
    ) -> Allowance:
        _require_name(name)
        _check_tax(taxable, tax_percentage)
        allowance = Allowance(
            name=name.strip(),
            frequency=AllowanceFrequency(frequency),
            taxable=taxable,
            tax_percentage=tax_percentage if taxable else None,
            description=description,
        )
        allowance.calculation_mode = mode
        self.session.add(allowance)
        await self.session.flush()
        return allowance

    async def update_allowance(self, allowance_id: UUID, /, **changes: Any) -> Allowance:
        """Update an allowance that no finalized payrun line references."""
        _check_fields(changes, ALLOWANCE_FIELDS)
        allowance = await self.session.get(Allowance, allowance_id)
        if allowance is None:
            raise NotFoundError("Allowance", allowance_id)
        if await self.is_allowance_locked(allowance_id):
            raise StateConflictError(
                f"Allowance {allowance.name} is referenced by a finalized payrun and cannot change",
                "CatalogEntryLocked",
            )

        _apply_changes(allowance, changes)
        _require_name(allowance.name)
        _check_tax(allowance.taxable, allowance.tax_percentage)
        await self.session.flush()
        logger.info("Updated allowance %s", allowance_id)
        return allowance

    async def create_deduction(
        self,
        name: str,
        mode: CalculationMode,
        deduction_type: DeductionType = DeductionType.RECURRING,
        description: str | None = None,
    ) -> Deduction:
        _require_name(name)
        deduction = Deduction(
            name=name.strip(),
            deduction_type=DeductionType(deduction_type),
            description=description,
        )
        deduction.calculation_mode = mode
        self.session.add(deduction)
        await self.session.flush()
        return deduction

    async def update_deduction(self, deduction_id: UUID, /, **changes: Any) -> Deduction:
        """Update a deduction that no finalized payrun line references."""
        _check_fields(changes, DEDUCTION_FIELDS)
        deduction = await self.session.get(Deduction, deduction_id)
        if deduction is None:
            raise NotFoundError("Deduction", deduction_id)
        if await self.is_deduction_locked(deduction_id):
            raise StateConflictError(
                f"Deduction {deduction.name} is referenced by a finalized payrun and cannot change",
                "CatalogEntryLocked",
            )

        _apply_changes(deduction, changes)
        _require_name(deduction.name)
        await self.session.flush()
        logger.info("Updated deduction %s", deduction_id)
        return deduction

    async def is_allowance_locked(self, allowance_id: UUID) -> bool:
        return await self._is_referenced(PayrunItemDetail.allowance_id == allowance_id)

    async def is_deduction_locked(self, deduction_id: UUID) -> bool:
        return await self._is_referenced(PayrunItemDetail.deduction_id == deduction_id)

    # ===== Salary structures =====

    async def create_salary_structure(
        self,
        name: str,
        base_salary: Decimal,
        allowances: list[Attachment] | None = None,
        deductions: list[Attachment] | None = None,
        description: str | None = None,
    ) -> SalaryStructure:
        """Create a structure with ordered allowance and deduction attachments."""
        _require_name(name)
        if base_salary < 0:
            raise ValidationError(f"Base salary must not be negative (got {base_salary})")

        structure = SalaryStructure(
            name=name.strip(),
            base_salary=base_salary,
            description=description,
            active=True,
        )
        self.session.add(structure)
        await self.session.flush()

        for position, attachment in enumerate(allowances or []):
            _check_window(attachment.effective_from, attachment.effective_to)
            self.session.add(
                SalaryStructureAllowance(
                    salary_structure_id=structure.salary_structure_id,
                    allowance_id=attachment.catalog_id,
                    position=position,
                    effective_from=attachment.effective_from,
                    effective_to=attachment.effective_to,
                )
            )
        for position, attachment in enumerate(deductions or []):
            _check_window(attachment.effective_from, attachment.effective_to)
            self.session.add(
                SalaryStructureDeduction(
                    salary_structure_id=structure.salary_structure_id,
                    deduction_id=attachment.catalog_id,
                    position=position,
                    effective_from=attachment.effective_from,
                    effective_to=attachment.effective_to,
                )
            )
        await self.session.flush()
        return structure

    async def assign_salary_structure(
        self,
        employee_id: UUID,
        salary_structure_id: UUID,
        effective_from: date,
        effective_to: date | None = None,
    ) -> EmployeeSalary:
        _check_window(effective_from, effective_to)
        if await self.session.get(SalaryStructure, salary_structure_id) is None:
            raise NotFoundError("SalaryStructure", salary_structure_id)
        assignment = EmployeeSalary(
            employee_id=employee_id,
            salary_structure_id=salary_structure_id,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def grant_allowance(
        self,
        employee_id: UUID,
        allowance_id: UUID,
        effective_from: date,
        effective_to: date | None = None,
    ) -> EmployeeAllowance:
        """Entitle an employee to an allowance directly."""
        _check_window(effective_from, effective_to)
        if await self.session.get(Allowance, allowance_id) is None:
            raise NotFoundError("Allowance", allowance_id)
        entitlement = EmployeeAllowance(
            employee_id=employee_id,
            allowance_id=allowance_id,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        self.session.add(entitlement)
        await self.session.flush()
        return entitlement

    async def add_employee_deduction(
        self,
        employee_id: UUID,
        name: str,
        mode: CalculationMode,
        deduction_type: DeductionType = DeductionType.RECURRING,
    ) -> EmployeeDeduction:
        _require_name(name)
        if DeductionType(deduction_type) == DeductionType.LOAN:
            raise ValidationError("Loan repayments are deducted from the loan schedule")
        deduction = EmployeeDeduction(
            employee_id=employee_id,
            name=name.strip(),
            deduction_type=DeductionType(deduction_type),
            active=True,
        )
        deduction.calculation_mode = mode
        self.session.add(deduction)
        await self.session.flush()
        return deduction

    # ===== Loan types =====

    async def create_loan_type(
        self,
        name: str,
        ceiling: CalculationMode,
        tenure_months: int,
        interest_rate: Decimal,
        min_service_months: int = 0,
        eligible_structure_ids: list[UUID] | None = None,
        description: str | None = None,
    ) -> LoanType:
        """Create a loan product; ``ceiling`` is a fixed amount or a percentage of base."""
        _require_name(name)
        if tenure_months < 1:
            raise ValidationError(f"Tenure must be at least one month (got {tenure_months})")
        if interest_rate < 0:
            raise ValidationError(f"Interest rate must not be negative (got {interest_rate})")
        if min_service_months < 0:
            raise ValidationError("Minimum service months must not be negative")

        loan_type = LoanType(
            name=name.strip(),
            description=description,
            tenure_months=tenure_months,
            interest_rate=interest_rate,
            min_service_months=min_service_months,
            is_active=True,
        )
        loan_type.calculation_mode = ceiling
        self.session.add(loan_type)
        await self.session.flush()

        for structure_id in eligible_structure_ids or []:
            self.session.add(
                LoanTypeSalaryStructure(
                    loan_type_id=loan_type.loan_type_id,
                    salary_structure_id=structure_id,
                )
            )
        await self.session.flush()
        return loan_type

    async def set_loan_type_active(self, loan_type_id: UUID, active: bool) -> LoanType:
        loan_type = await self.session.get(LoanType, loan_type_id)
        if loan_type is None:
            raise NotFoundError("LoanType", loan_type_id)
        loan_type.is_active = active
        await self.session.flush()
        return loan_type

    async def _is_referenced(self, criterion: Any) -> bool:
        query = (
            select(PayrunItemDetail.payrun_item_detail_id)
            .join(PayrunItem)
            .join(Payrun)
            .where(
                criterion,
                Payrun.status.in_(list(PayrunStateMachine.RESULTS_IMMUTABLE)),
            )
            .limit(1)
        )
        return await self.session.scalar(query) is not None


def _require_name(name: str | None) -> None:
    if not name or not name.strip():
        raise ValidationError("A name is required")


def _check_tax(taxable: bool, tax_percentage: Decimal | None) -> None:
    if tax_percentage is not None and not 0 <= tax_percentage <= 100:
        raise ValidationError(f"Tax percentage must be between 0 and 100 (got {tax_percentage})")
    if taxable and tax_percentage is None:
        raise ValidationError("Taxable allowances need a tax percentage")


def _check_window(effective_from: date, effective_to: date | None) -> None:
    if effective_to is not None and effective_to < effective_from:
        raise ValidationError("effective_to must not precede effective_from")


def _check_fields(changes: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}")


def _apply_changes(entity: Any, changes: dict[str, Any]) -> None:
    for key, value in changes.items():
        setattr(entity, key, value)
