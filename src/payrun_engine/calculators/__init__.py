"""Pure compensation and loan calculations.

The resolver and payrun calculator read the database and are imported from
their own modules.
"""

from payrun_engine.calculators.amortization import (
    AmortizationTerms,
    ScheduledInstallment,
    build_schedule,
    calculate_terms,
    can_amortize,
)
from payrun_engine.calculators.line_builder import LineItemBuilder
from payrun_engine.calculators.types import (
    CalculationMode,
    CompensationLines,
    EmployeePay,
    Fixed,
    LineCandidate,
    PayPeriod,
    Percentage,
)

__all__ = [
    "AmortizationTerms",
    "ScheduledInstallment",
    "build_schedule",
    "calculate_terms",
    "can_amortize",
    "LineItemBuilder",
    "CalculationMode",
    "CompensationLines",
    "EmployeePay",
    "Fixed",
    "LineCandidate",
    "PayPeriod",
    "Percentage",
]
