"""Closed status and category enumerations persisted by the models."""

from __future__ import annotations

from enum import Enum


class EmployeeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class AllowanceFrequency(str, Enum):
    ONE_TIME = "one-time"
    MONTHLY = "monthly"
    ANNUAL = "annual"
    BI_ANNUAL = "bi-annual"
    QUARTERLY = "quarterly"
    CUSTOM = "custom"


class DeductionType(str, Enum):
    RECURRING = "recurring"
    ONE_TIME = "one-time"
    STATUTORY = "statutory"
    LOAN = "loan"
    ADVANCE = "advance"


class PayrunType(str, Enum):
    SALARY = "salary"
    ALLOWANCE = "allowance"


class PayrunStatus(str, Enum):
    """Payrun status values.

    ``draft`` and ``pending`` name the same awaiting-approval stage.
    """

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    ARCHIVED = "archived"


class PayrunLineType(str, Enum):
    BASE_SALARY = "base_salary"
    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"
    TAX = "tax"
    LOAN = "loan"


class LoanStatus(str, Enum):
    """Loan application status values."""

    PENDING = "pending"
    HR_APPROVED = "hr_approved"
    HR_REJECTED = "hr_rejected"
    DISBURSED = "disbursed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RepaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


OPEN_LOAN_STATUSES = frozenset(
    {
        LoanStatus.PENDING,
        LoanStatus.HR_APPROVED,
        LoanStatus.DISBURSED,
        LoanStatus.ACTIVE,
    }
)
