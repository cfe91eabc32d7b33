"""Tests for line item builder."""

from decimal import Decimal
from uuid import uuid4

import pytest

from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.types import (
    Fixed,
    LineCandidate,
    PayPeriod,
    Percentage,
    mode_from_columns,
    mode_to_columns,
)
from payrun_engine.enums import PayrunLineType
from payrun_engine.errors import ValidationError


class TestLineItemBuilder:
    """Test line item builder functionality."""

    def test_round_to_cents(self):
        """Test rounding to 2 decimal places."""
        assert LineItemBuilder.round_to_cents(Decimal("10.124")) == Decimal("10.12")

        # Half-up rounding
        assert LineItemBuilder.round_to_cents(Decimal("10.125")) == Decimal("10.13")
        assert LineItemBuilder.round_to_cents(Decimal("10.135")) == Decimal("10.14")

    def test_apply_percentage_mode(self):
        """Percentages compute base * rate / 100."""
        amount = LineItemBuilder.apply_mode(Percentage(Decimal("10")), Decimal("200000"))
        assert amount == Decimal("20000.00")

        amount = LineItemBuilder.apply_mode(Percentage(Decimal("7.5")), Decimal("1234.57"))
        assert amount == Decimal("92.59")

    def test_apply_fixed_mode(self):
        """Fixed amounts are used verbatim, whatever the base."""
        assert LineItemBuilder.apply_mode(Fixed(Decimal("5000")), Decimal("0")) == Decimal("5000.00")
        assert LineItemBuilder.apply_mode(Fixed(Decimal("5000")), Decimal("999999")) == Decimal(
            "5000.00"
        )

    def test_create_base_salary_line(self):
        line = LineItemBuilder.create_base_salary_line(Decimal("200000"))

        assert line.line_type == PayrunLineType.BASE_SALARY
        assert line.amount == Decimal("200000.00")
        assert line.description == "Base Salary"

    def test_create_allowance_line(self):
        """Test creating allowance line (positive amount)."""
        allowance_id = uuid4()
        line = LineItemBuilder.create_allowance_line(allowance_id, "Housing", Decimal("20000"))

        assert line.line_type == PayrunLineType.ALLOWANCE
        assert line.amount == Decimal("20000.00")
        assert line.amount > 0  # Allowances are positive
        assert line.allowance_id == allowance_id

    def test_create_tax_line(self):
        """Tax on a taxable allowance is a separate negative line."""
        allowance_id = uuid4()
        line = LineItemBuilder.create_tax_line(
            allowance_id, "Housing", Decimal("20000"), Decimal("10")
        )

        assert line.line_type == PayrunLineType.TAX
        assert line.amount == Decimal("-2000.00")
        assert line.description == "Housing Tax"
        assert line.allowance_id == allowance_id

    def test_create_deduction_line(self):
        """Test creating deduction line (negative amount)."""
        deduction_id = uuid4()
        line = LineItemBuilder.create_deduction_line(
            "Pension", Decimal("16000"), deduction_id=deduction_id
        )

        assert line.line_type == PayrunLineType.DEDUCTION
        assert line.amount == Decimal("-16000.00")
        assert line.amount < 0  # Deductions are negative
        assert line.deduction_id == deduction_id

    def test_create_loan_line(self):
        """Loan lines keep the installment they settle and the projected balance."""
        loan_id = uuid4()
        repayment_id = uuid4()
        line = LineItemBuilder.create_loan_line(
            loan_application_id=loan_id,
            loan_repayment_id=repayment_id,
            reference_number="LN-20250210-ABC123",
            installment_number=1,
            amount=Decimal("9166.67"),
            remaining_after=Decimal("100833.33"),
        )

        assert line.line_type == PayrunLineType.LOAN
        assert line.amount == Decimal("-9166.67")
        assert line.original_amount == Decimal("9166.67")
        assert line.remaining_amount == Decimal("100833.33")
        assert line.loan_application_id == loan_id
        assert line.loan_repayment_id == repayment_id
        assert line.description == "Loan Repayment LN-20250210-ABC123 (installment 1)"

    def test_calculate_gross_and_net(self):
        """Gross counts base and allowances; net subtracts everything else."""
        lines = [
            LineItemBuilder.create_base_salary_line(Decimal("200000")),
            LineItemBuilder.create_allowance_line(uuid4(), "Housing", Decimal("20000")),
            LineItemBuilder.create_tax_line(uuid4(), "Housing", Decimal("20000"), Decimal("10")),
            LineItemBuilder.create_deduction_line("Pension", Decimal("16000")),
            LineItemBuilder.create_loan_line(
                uuid4(), uuid4(), "LN-X", 1, Decimal("9166.67"), Decimal("100833.33")
            ),
        ]

        assert LineItemBuilder.calculate_gross_from_lines(lines) == Decimal("220000.00")
        assert LineItemBuilder.calculate_net_from_lines(lines) == Decimal("192833.33")

    def test_validate_line_signs(self):
        """Test sign validation."""
        valid_lines = [
            LineCandidate(PayrunLineType.BASE_SALARY, Decimal("1000"), "Base Salary"),
            LineCandidate(PayrunLineType.DEDUCTION, Decimal("-50"), "Pension"),
            LineCandidate(PayrunLineType.LOAN, Decimal("-25"), "Loan"),
        ]
        assert LineItemBuilder.validate_line_signs(valid_lines) == []

        invalid_lines = [
            LineCandidate(PayrunLineType.ALLOWANCE, Decimal("-100"), "Housing"),
            LineCandidate(PayrunLineType.TAX, Decimal("10"), "Housing Tax"),
        ]
        errors = LineItemBuilder.validate_line_signs(invalid_lines)
        assert len(errors) == 2

    def test_sum_by_type(self):
        lines = [
            LineCandidate(PayrunLineType.DEDUCTION, Decimal("-50"), "Pension"),
            LineCandidate(PayrunLineType.DEDUCTION, Decimal("-25"), "Union Dues"),
        ]
        totals = LineItemBuilder.sum_by_type(lines)

        assert totals[PayrunLineType.DEDUCTION] == Decimal("-75")
        assert totals[PayrunLineType.ALLOWANCE] == Decimal("0")


class TestCalculationMode:
    """Test the Fixed | Percentage calculation mode."""

    def test_from_columns(self):
        assert mode_from_columns(Decimal("5000"), None) == Fixed(Decimal("5000"))
        assert mode_from_columns(None, Decimal("10")) == Percentage(Decimal("10"))

    @pytest.mark.parametrize(
        "amount,percentage",
        [(None, None), (Decimal("5000"), Decimal("10"))],
    )
    def test_exactly_one_column(self, amount, percentage):
        """Both or neither column set is corrupt data."""
        with pytest.raises(ValidationError):
            mode_from_columns(amount, percentage)

    def test_to_columns(self):
        assert mode_to_columns(Fixed(Decimal("5000"))) == (Decimal("5000"), None)
        assert mode_to_columns(Percentage(Decimal("10"))) == (None, Decimal("10"))

    def test_negative_values_rejected(self):
        with pytest.raises(ValidationError):
            Fixed(Decimal("-1"))
        with pytest.raises(ValidationError):
            Percentage(Decimal("-0.5"))


class TestPayPeriod:
    """Test monthly pay periods."""

    def test_bounds(self):
        period = PayPeriod(year=2024, month=2)

        assert period.start.isoformat() == "2024-02-01"
        assert period.end.isoformat() == "2024-02-29"
        assert period.label == "February 2024"

    def test_next_rolls_over_year(self):
        assert PayPeriod(year=2025, month=12).next() == PayPeriod(year=2026, month=1)
        assert PayPeriod(year=2025, month=3).next(11) == PayPeriod(year=2026, month=2)

    @pytest.mark.parametrize("month", [0, 13])
    def test_invalid_month(self, month):
        with pytest.raises(ValidationError):
            PayPeriod(year=2025, month=month)
