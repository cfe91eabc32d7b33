"""Type definitions for the compensation and payrun calculation pipeline."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from payrun_engine.errors import ValidationError
from payrun_engine.enums import PayrunLineType

MONTH_NAMES = list(calendar.month_name)


# ===== Calculation modes =====


@dataclass(frozen=True)
class Fixed:
    """Fixed amount in currency units."""

    amount: Decimal

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValidationError(f"Fixed amount must not be negative (got {self.amount})")


@dataclass(frozen=True)
class Percentage:
    """Percentage of base salary (``10`` means 10%)."""

    rate: Decimal

    def __post_init__(self) -> None:
        if self.rate < 0:
            raise ValidationError(f"Percentage must not be negative (got {self.rate})")


CalculationMode = Fixed | Percentage


def mode_from_columns(amount: Decimal | None, percentage: Decimal | None) -> CalculationMode:
    """Build the calculation mode from its two exclusive storage columns."""
    if percentage is not None and amount is None:
        return Percentage(Decimal(percentage))
    if amount is not None and percentage is None:
        return Fixed(Decimal(amount))
    raise ValidationError(
        "Exactly one of amount or percentage must be set "
        f"(amount={amount}, percentage={percentage})"
    )


def mode_to_columns(mode: CalculationMode) -> tuple[Decimal | None, Decimal | None]:
    """Return ``(amount, percentage)`` storage columns for a mode."""
    if isinstance(mode, Fixed):
        return mode.amount, None
    if isinstance(mode, Percentage):
        return None, mode.rate
    raise ValidationError(f"Unknown calculation mode: {mode!r}")


# ===== Pay periods =====


@dataclass(frozen=True, order=True)
class PayPeriod:
    """A monthly payroll period."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValidationError(f"Month must be between 1 and 12 (got {self.month})")
        if not 1900 <= self.year <= 9999:
            raise ValidationError(f"Year out of range (got {self.year})")

    @classmethod
    def containing(cls, day: date) -> PayPeriod:
        return cls(year=day.year, month=day.month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def label(self) -> str:
        return f"{MONTH_NAMES[self.month]} {self.year}"

    def next(self, months: int = 1) -> PayPeriod:
        index = self.year * 12 + (self.month - 1) + months
        return PayPeriod(year=index // 12, month=index % 12 + 1)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


# ===== Lines =====


@dataclass
class LineCandidate:
    """A pay line before persistence.

    Sign conventions: base salary and allowances positive; deductions,
    taxes and loan installments negative.
    """

    line_type: PayrunLineType
    amount: Decimal
    description: str

    allowance_id: UUID | None = None
    deduction_id: UUID | None = None
    employee_allowance_id: UUID | None = None
    employee_deduction_id: UUID | None = None
    loan_application_id: UUID | None = None
    loan_repayment_id: UUID | None = None

    # Loan lines: installment amount and projected balance after payment
    original_amount: Decimal | None = None
    remaining_amount: Decimal | None = None

    def to_detail_values(self) -> dict[str, Any]:
        """Column values for a persisted payrun item detail."""
        return {
            "line_type": self.line_type,
            "description": self.description,
            "amount": self.amount,
            "allowance_id": self.allowance_id,
            "deduction_id": self.deduction_id,
            "employee_allowance_id": self.employee_allowance_id,
            "employee_deduction_id": self.employee_deduction_id,
            "loan_application_id": self.loan_application_id,
            "loan_repayment_id": self.loan_repayment_id,
            "original_amount": self.original_amount,
            "remaining_amount": self.remaining_amount,
        }


@dataclass
class CompensationLines:
    """Resolved compensation for one employee and period."""

    employee_id: UUID
    salary_structure_id: UUID
    period: PayPeriod
    base_salary: Decimal
    lines: list[LineCandidate] = field(default_factory=list)

    def of_type(self, line_type: PayrunLineType) -> list[LineCandidate]:
        return [line for line in self.lines if line.line_type == line_type]


@dataclass
class EmployeePay:
    """Computed pay for one employee within a payrun."""

    employee_id: UUID
    base_salary: Decimal
    lines: list[LineCandidate]
    total_allowances: Decimal
    total_deductions: Decimal
    total_taxes: Decimal
    gross_pay: Decimal
    net_pay: Decimal

    @property
    def loan_lines(self) -> list[LineCandidate]:
        return [line for line in self.lines if line.line_type == PayrunLineType.LOAN]
