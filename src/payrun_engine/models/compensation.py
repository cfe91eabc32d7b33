"""Compensation catalog and salary structure models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.calculators.types import (
    CalculationMode,
    mode_from_columns,
    mode_to_columns,
)
from payrun_engine.enums import AllowanceFrequency, DeductionType
from payrun_engine.models.base import MONEY, PERCENT, Base, TimestampMixin, status_enum

if TYPE_CHECKING:
    from payrun_engine.models.employee import Employee


def _exclusive_mode_check(table: str) -> CheckConstraint:
    return CheckConstraint(
        "(amount IS NULL AND percentage IS NOT NULL) "
        "OR (amount IS NOT NULL AND percentage IS NULL)",
        name=f"{table}_mode_exclusive",
    )


def _effective_window_check(table: str) -> CheckConstraint:
    return CheckConstraint(
        "effective_to IS NULL OR effective_to >= effective_from",
        name=f"{table}_dates_check",
    )


class CalculationModeMixin:
    """Fixed amount XOR percentage-of-base, exposed as a tagged variant."""

    amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    percentage: Mapped[Decimal | None] = mapped_column(PERCENT, nullable=True)

    @property
    def calculation_mode(self) -> CalculationMode:
        return mode_from_columns(self.amount, self.percentage)

    @calculation_mode.setter
    def calculation_mode(self, mode: CalculationMode) -> None:
        self.amount, self.percentage = mode_to_columns(mode)


class EffectiveWindowMixin:
    """Effective-dated assignment (``effective_to`` NULL means open-ended)."""

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    def is_effective_between(self, start: date, end: date) -> bool:
        """Check if the assignment overlaps the [start, end] window."""
        if self.effective_from > end:
            return False
        if self.effective_to is not None and self.effective_to < start:
            return False
        return True


# ===== Catalog =====


class Allowance(CalculationModeMixin, Base, TimestampMixin):
    """Allowance definition."""

    __tablename__ = "allowance"

    allowance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    frequency: Mapped[AllowanceFrequency] = mapped_column(
        status_enum(AllowanceFrequency, "allowance_frequency"),
        nullable=False,
        default=AllowanceFrequency.MONTHLY,
    )
    taxable: Mapped[bool] = mapped_column(default=False, nullable=False)
    tax_percentage: Mapped[Decimal | None] = mapped_column(PERCENT, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        _exclusive_mode_check("allowance"),
        CheckConstraint(
            "tax_percentage IS NULL OR (tax_percentage >= 0 AND tax_percentage <= 100)",
            name="allowance_tax_percentage_check",
        ),
    )


class Deduction(CalculationModeMixin, Base, TimestampMixin):
    """Deduction definition."""

    __tablename__ = "deduction"

    deduction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    deduction_type: Mapped[DeductionType] = mapped_column(
        status_enum(DeductionType, "deduction_type"),
        nullable=False,
        default=DeductionType.RECURRING,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (_exclusive_mode_check("deduction"),)


# ===== Salary structures =====


class SalaryStructure(Base, TimestampMixin):
    """Base salary plus attached allowances and deductions."""

    __tablename__ = "salary_structure"

    salary_structure_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("base_salary >= 0", name="salary_structure_base_check"),
    )

    # Relationships
    allowances: Mapped[list[SalaryStructureAllowance]] = relationship(
        back_populates="salary_structure",
        order_by="SalaryStructureAllowance.position",
    )
    deductions: Mapped[list[SalaryStructureDeduction]] = relationship(
        back_populates="salary_structure",
        order_by="SalaryStructureDeduction.position",
    )


class SalaryStructureAllowance(EffectiveWindowMixin, Base, TimestampMixin):
    """Allowance attached to a salary structure."""

    __tablename__ = "salary_structure_allowance"

    salary_structure_allowance_id: Mapped[UUID] = mapped_column(
        primary_key=True, default=uuid4
    )
    salary_structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.salary_structure_id", ondelete="CASCADE"),
        nullable=False,
    )
    allowance_id: Mapped[UUID] = mapped_column(
        ForeignKey("allowance.allowance_id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (_effective_window_check("salary_structure_allowance"),)

    # Relationships
    salary_structure: Mapped[SalaryStructure] = relationship(back_populates="allowances")
    allowance: Mapped[Allowance] = relationship()


class SalaryStructureDeduction(EffectiveWindowMixin, Base, TimestampMixin):
    """Deduction attached to a salary structure."""

    __tablename__ = "salary_structure_deduction"

    salary_structure_deduction_id: Mapped[UUID] = mapped_column(
        primary_key=True, default=uuid4
    )
    salary_structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.salary_structure_id", ondelete="CASCADE"),
        nullable=False,
    )
    deduction_id: Mapped[UUID] = mapped_column(
        ForeignKey("deduction.deduction_id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (_effective_window_check("salary_structure_deduction"),)

    # Relationships
    salary_structure: Mapped[SalaryStructure] = relationship(back_populates="deductions")
    deduction: Mapped[Deduction] = relationship()


# ===== Employee assignments =====


class EmployeeSalary(EffectiveWindowMixin, Base, TimestampMixin):
    """Employee assignment to a salary structure."""

    __tablename__ = "employee_salary"

    employee_salary_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    salary_structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.salary_structure_id", ondelete="RESTRICT"),
        nullable=False,
    )

    __table_args__ = (_effective_window_check("employee_salary"),)

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="salary_assignments")
    salary_structure: Mapped[SalaryStructure] = relationship()


class EmployeeAllowance(EffectiveWindowMixin, Base, TimestampMixin):
    """Direct employee entitlement to an allowance."""

    __tablename__ = "employee_allowance"

    employee_allowance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    allowance_id: Mapped[UUID] = mapped_column(
        ForeignKey("allowance.allowance_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (_effective_window_check("employee_allowance"),)

    # Relationships
    allowance: Mapped[Allowance] = relationship()


class EmployeeDeduction(CalculationModeMixin, Base, TimestampMixin):
    """Employee-specific deduction; overrides a structure deduction of the same name."""

    __tablename__ = "employee_deduction"

    employee_deduction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    deduction_type: Mapped[DeductionType] = mapped_column(
        status_enum(DeductionType, "employee_deduction_type"),
        nullable=False,
        default=DeductionType.RECURRING,
    )
    active: Mapped[bool] = mapped_column(default=True, nullable=False)

    __table_args__ = (
        _exclusive_mode_check("employee_deduction"),
        CheckConstraint(
            "deduction_type <> 'loan'",
            name="employee_deduction_not_loan",
        ),
        UniqueConstraint("employee_id", "name", name="employee_deduction_name_unique"),
    )
