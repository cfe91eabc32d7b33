"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from payrun_engine.enums import (
    LoanStatus,
    PayrunLineType,
    PayrunStatus,
    PayrunType,
    RepaymentStatus,
)
from payrun_engine.services.loan_service import ReviewAction


class ErrorResponse(BaseModel):
    """Error body returned for every failed operation."""

    detail: str
    code: str


# ============================================================================
# Payrun schemas
# ============================================================================


class PayrunGenerate(BaseModel):
    """Schema for generating a payrun."""

    payrun_type: PayrunType
    month: int
    year: int
    allowance_id: UUID | None = None


class PayrunItemDetailResponse(BaseModel):
    """Schema for a snapshotted pay line."""

    model_config = ConfigDict(from_attributes=True)

    payrun_item_detail_id: UUID
    line_type: PayrunLineType
    description: str
    amount: Decimal
    allowance_id: UUID | None = None
    deduction_id: UUID | None = None
    loan_application_id: UUID | None = None
    loan_repayment_id: UUID | None = None
    original_amount: Decimal | None = None
    remaining_amount: Decimal | None = None


class PayrunItemResponse(BaseModel):
    """Schema for one employee's pay within a payrun."""

    model_config = ConfigDict(from_attributes=True)

    payrun_item_id: UUID
    employee_id: UUID
    base_salary: Decimal
    total_allowances: Decimal
    total_deductions: Decimal
    total_taxes: Decimal
    gross_pay: Decimal
    net_pay: Decimal
    details: list[PayrunItemDetailResponse] = []


class PayrunResponse(BaseModel):
    """Schema for payrun response."""

    model_config = ConfigDict(from_attributes=True)

    payrun_id: UUID
    name: str
    payrun_type: PayrunType
    allowance_id: UUID | None = None
    month: int
    year: int
    total_employees: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    status: PayrunStatus
    generated_by: UUID | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    completed_by: UUID | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PayrunDetailResponse(PayrunResponse):
    """Payrun with its items and their lines."""

    items: list[PayrunItemResponse] = []


class PayrunListResponse(BaseModel):
    """Schema for listing payruns."""

    items: list[PayrunResponse]
    total: int
    page: int
    page_size: int


# ============================================================================
# Loan schemas
# ============================================================================


class LoanTypeResponse(BaseModel):
    """Schema for a loan product."""

    model_config = ConfigDict(from_attributes=True)

    loan_type_id: UUID
    name: str
    description: str | None = None
    amount: Decimal | None = Field(None, description="Fixed ceiling")
    percentage: Decimal | None = Field(None, description="Ceiling as percentage of base salary")
    tenure_months: int
    interest_rate: Decimal
    min_service_months: int
    is_active: bool


class EligibilityResponse(BaseModel):
    """Schema for a loan eligibility calculation."""

    model_config = ConfigDict(from_attributes=True)

    loan_type_id: UUID
    ceiling: Decimal
    open_exposure: Decimal
    max_amount: Decimal
    interest_rate: Decimal
    tenure_months: int
    total_interest: Decimal
    total_repayment: Decimal
    monthly_payment: Decimal


class LoanApply(BaseModel):
    """Schema for submitting a loan application."""

    employee_id: UUID
    loan_type_id: UUID
    requested_amount: Decimal
    reason: str
    as_of: date | None = None


class LoanReview(BaseModel):
    """Schema for HR review of an application."""

    action: ReviewAction
    approved_amount: Decimal | None = None
    remarks: str | None = None


class LoanDisburse(BaseModel):
    """Schema for disbursing an approved loan."""

    remarks: str | None = None
    as_of: date | None = None


class LoanCancel(BaseModel):
    reason: str | None = None


class InstallmentSettle(BaseModel):
    installment_number: int = Field(..., ge=1)
    note: str | None = None


class EarlyRepayment(BaseModel):
    amount: Decimal


class MarkOverdue(BaseModel):
    as_of: date | None = None


class LoanApplicationResponse(BaseModel):
    """Schema for loan application response."""

    model_config = ConfigDict(from_attributes=True)

    loan_application_id: UUID
    reference_number: str
    employee_id: UUID
    loan_type_id: UUID
    requested_amount: Decimal
    approved_amount: Decimal | None = None
    tenure_months: int
    interest_rate: Decimal
    monthly_deduction: Decimal | None = None
    total_interest: Decimal | None = None
    total_repayment: Decimal | None = None
    total_repaid: Decimal
    remaining_balance: Decimal
    reason: str
    status: LoanStatus
    hr_reviewed_by: UUID | None = None
    hr_reviewed_at: datetime | None = None
    hr_remarks: str | None = None
    disbursed_by: UUID | None = None
    disbursed_at: datetime | None = None
    disbursement_remarks: str | None = None
    applied_at: datetime
    completed_at: datetime | None = None


class LoanApplicationListResponse(BaseModel):
    """Schema for listing loan applications."""

    items: list[LoanApplicationResponse]
    total: int
    page: int
    page_size: int


class RepaymentResponse(BaseModel):
    """Schema for one scheduled installment."""

    model_config = ConfigDict(from_attributes=True)

    loan_repayment_id: UUID
    installment_number: int
    due_date: date
    expected_amount: Decimal
    paid_amount: Decimal
    balance_after: Decimal | None = None
    status: RepaymentStatus
    paid_at: datetime | None = None
    payrun_id: UUID | None = None


class LoanHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    loan_history_id: UUID
    action: str
    description: str
    performed_by: UUID | None = None
    created_at: datetime


class SettlementResponse(BaseModel):
    """Schema for a settlement outcome."""

    installments_paid: int
    amount_settled: Decimal
    completed_loan_ids: list[UUID]


class OverdueResponse(BaseModel):
    marked_overdue: int


class LoanStatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pending: int
    awaiting_disbursement: int
    active: int
    completed: int
    total_disbursed: Decimal
    total_repaid: Decimal
    outstanding_balance: Decimal
