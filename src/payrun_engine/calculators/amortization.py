"""Flat-rate loan amortization.

Interest is charged on the original principal for the whole tenure::

    total_interest  = principal * rate * tenure / (12 * 100)
    total_repayment = principal + total_interest
    monthly         = total_repayment / tenure

Every installment except the last is ``monthly`` (rounded to cents); the last
one absorbs the remainder so the schedule sums to ``total_repayment`` exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.types import PayPeriod
from payrun_engine.errors import ValidationError

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class AmortizationTerms:
    """Totals of a flat-rate loan."""

    principal: Decimal
    interest_rate: Decimal
    tenure_months: int
    total_interest: Decimal
    total_repayment: Decimal
    monthly_payment: Decimal
    final_payment: Decimal


@dataclass(frozen=True)
class ScheduledInstallment:
    """One row of a precomputed repayment schedule."""

    installment_number: int
    due_date: date
    expected_amount: Decimal
    balance_after: Decimal


def calculate_terms(principal: Decimal, interest_rate: Decimal, tenure_months: int) -> AmortizationTerms:
    """Compute interest, repayment and installment amounts for a loan."""
    principal = Decimal(principal)
    interest_rate = Decimal(interest_rate)
    if principal <= 0:
        raise ValidationError(f"Principal must be positive (got {principal})")
    if interest_rate < 0:
        raise ValidationError(f"Interest rate must not be negative (got {interest_rate})")
    if tenure_months < 1:
        raise ValidationError(f"Tenure must be at least one month (got {tenure_months})")

    total_interest, total_repayment = _totals(principal, interest_rate, tenure_months)
    if total_repayment < CENTS * tenure_months:
        raise ValidationError(
            f"Total repayment {total_repayment} is too small to spread over "
            f"{tenure_months} installments of at least {CENTS}"
        )

    monthly = (total_repayment / tenure_months).quantize(CENTS, rounding=ROUND_HALF_UP)
    if monthly * (tenure_months - 1) >= total_repayment:
        # Rounding up would leave nothing for the final installment
        monthly = (total_repayment / tenure_months).quantize(CENTS, rounding=ROUND_DOWN)
    final = total_repayment - monthly * (tenure_months - 1)

    return AmortizationTerms(
        principal=LineItemBuilder.round_to_cents(principal),
        interest_rate=interest_rate,
        tenure_months=tenure_months,
        total_interest=total_interest,
        total_repayment=total_repayment,
        monthly_payment=monthly,
        final_payment=final,
    )


def can_amortize(principal: Decimal, interest_rate: Decimal, tenure_months: int) -> bool:
    """Whether every installment of the loan would be at least one cent."""
    if principal <= 0 or tenure_months < 1:
        return False
    _, total_repayment = _totals(Decimal(principal), Decimal(interest_rate), tenure_months)
    return total_repayment >= CENTS * tenure_months


def _totals(principal: Decimal, interest_rate: Decimal, tenure_months: int) -> tuple[Decimal, Decimal]:
    total_interest = LineItemBuilder.round_to_cents(
        principal * interest_rate * tenure_months / Decimal(12 * 100)
    )
    return total_interest, LineItemBuilder.round_to_cents(principal + total_interest)


def build_schedule(terms: AmortizationTerms, first_period: PayPeriod) -> list[ScheduledInstallment]:
    """Lay out the full schedule, one installment due on the 1st of each month."""
    schedule: list[ScheduledInstallment] = []
    balance = terms.total_repayment
    for number in range(1, terms.tenure_months + 1):
        amount = terms.final_payment if number == terms.tenure_months else terms.monthly_payment
        balance -= amount
        schedule.append(
            ScheduledInstallment(
                installment_number=number,
                due_date=first_period.next(number - 1).start,
                expected_amount=amount,
                balance_after=balance,
            )
        )
    return schedule
