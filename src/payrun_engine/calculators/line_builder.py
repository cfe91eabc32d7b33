"""Pay line construction with sign conventions."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from payrun_engine.calculators.types import (
    CalculationMode,
    Fixed,
    LineCandidate,
    Percentage,
)
from payrun_engine.enums import PayrunLineType


class LineItemBuilder:
    """Builds pay lines with consistent signs and rounding.

    Sign conventions (non-negotiable):
    - BASE_SALARY: positive
    - ALLOWANCE: positive
    - DEDUCTION: negative
    - TAX: negative
    - LOAN: negative

    Rounding:
    - Half-up to 2 decimals (cents) when a line is built
    - Totals are sums of already-rounded lines, so they never drift
    """

    OUTPUT_PRECISION = Decimal("0.01")

    POSITIVE_TYPES = frozenset({PayrunLineType.BASE_SALARY, PayrunLineType.ALLOWANCE})
    NEGATIVE_TYPES = frozenset(
        {PayrunLineType.DEDUCTION, PayrunLineType.TAX, PayrunLineType.LOAN}
    )

    @staticmethod
    def round_to_cents(amount: Decimal) -> Decimal:
        """Round amount to 2 decimal places (cents)."""
        return Decimal(amount).quantize(LineItemBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def apply_mode(mode: CalculationMode, base_salary: Decimal) -> Decimal:
        """Evaluate a calculation mode against a base salary.

        Percentages compute ``base * rate / 100``; fixed amounts are used verbatim.
        """
        if isinstance(mode, Percentage):
            return LineItemBuilder.round_to_cents(base_salary * mode.rate / Decimal("100"))
        if isinstance(mode, Fixed):
            return LineItemBuilder.round_to_cents(mode.amount)
        raise TypeError(f"Unknown calculation mode: {mode!r}")

    @staticmethod
    def create_base_salary_line(amount: Decimal) -> LineCandidate:
        """Create the base salary line (positive amount)."""
        return LineCandidate(
            line_type=PayrunLineType.BASE_SALARY,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            description="Base Salary",
        )

    @staticmethod
    def create_allowance_line(
        allowance_id: UUID,
        name: str,
        amount: Decimal,
        employee_allowance_id: UUID | None = None,
    ) -> LineCandidate:
        """Create an allowance line (positive amount)."""
        return LineCandidate(
            line_type=PayrunLineType.ALLOWANCE,
            amount=LineItemBuilder.round_to_cents(abs(amount)),
            description=name,
            allowance_id=allowance_id,
            employee_allowance_id=employee_allowance_id,
        )

    @staticmethod
    def create_tax_line(
        allowance_id: UUID,
        name: str,
        allowance_amount: Decimal,
        tax_percentage: Decimal,
    ) -> LineCandidate:
        """Create the tax line levied on a taxable allowance (negative amount)."""
        tax = LineItemBuilder.round_to_cents(abs(allowance_amount) * tax_percentage / Decimal("100"))
        return LineCandidate(
            line_type=PayrunLineType.TAX,
            amount=-tax,
            description=f"{name} Tax",
            allowance_id=allowance_id,
        )

    @staticmethod
    def create_deduction_line(
        name: str,
        amount: Decimal,
        deduction_id: UUID | None = None,
        employee_deduction_id: UUID | None = None,
    ) -> LineCandidate:
        """Create a deduction line (negative amount)."""
        return LineCandidate(
            line_type=PayrunLineType.DEDUCTION,
            amount=-LineItemBuilder.round_to_cents(abs(amount)),
            description=name,
            deduction_id=deduction_id,
            employee_deduction_id=employee_deduction_id,
        )

    @staticmethod
    def create_loan_line(
        loan_application_id: UUID,
        loan_repayment_id: UUID,
        reference_number: str,
        installment_number: int,
        amount: Decimal,
        remaining_after: Decimal,
    ) -> LineCandidate:
        """Create a loan installment line (negative amount).

        Loan lines are labelled distinctly from catalog deductions and keep the
        exact installment they settle.
        """
        installment = LineItemBuilder.round_to_cents(abs(amount))
        return LineCandidate(
            line_type=PayrunLineType.LOAN,
            amount=-installment,
            description=f"Loan Repayment {reference_number} (installment {installment_number})",
            loan_application_id=loan_application_id,
            loan_repayment_id=loan_repayment_id,
            original_amount=installment,
            remaining_amount=LineItemBuilder.round_to_cents(remaining_after),
        )

    @staticmethod
    def calculate_gross_from_lines(lines: list[LineCandidate]) -> Decimal:
        """Calculate gross pay from lines.

        GROSS = BASE_SALARY + Σ(ALLOWANCE)
        """
        gross = Decimal("0")
        for line in lines:
            if line.line_type in LineItemBuilder.POSITIVE_TYPES:
                gross += line.amount
        return LineItemBuilder.round_to_cents(gross)

    @staticmethod
    def calculate_net_from_lines(lines: list[LineCandidate]) -> Decimal:
        """Calculate net pay from lines.

        NET = GROSS + Σ(DEDUCTION) + Σ(TAX) + Σ(LOAN), all of the latter negative.
        """
        net = Decimal("0")
        for line in lines:
            net += line.amount
        return LineItemBuilder.round_to_cents(net)

    @staticmethod
    def validate_line_signs(lines: list[LineCandidate]) -> list[str]:
        """Validate that all lines have correct signs.

        Returns list of error messages (empty if all valid).
        """
        errors: list[str] = []

        for i, line in enumerate(lines):
            if line.line_type in LineItemBuilder.POSITIVE_TYPES and line.amount < 0:
                errors.append(
                    f"Line {i} ({line.line_type.value}) has negative amount {line.amount}, expected positive"
                )
            elif line.line_type in LineItemBuilder.NEGATIVE_TYPES and line.amount > 0:
                errors.append(
                    f"Line {i} ({line.line_type.value}) has positive amount {line.amount}, expected negative"
                )

        return errors

    @staticmethod
    def sum_by_type(lines: list[LineCandidate]) -> dict[PayrunLineType, Decimal]:
        """Sum line amounts by type."""
        totals: dict[PayrunLineType, Decimal] = {lt: Decimal("0") for lt in PayrunLineType}
        for line in lines:
            totals[line.line_type] += line.amount
        return totals
