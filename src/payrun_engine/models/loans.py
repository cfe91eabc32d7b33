"""Loan type, application, repayment schedule and history models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.enums import OPEN_LOAN_STATUSES, LoanStatus, RepaymentStatus
from payrun_engine.models.base import (
    MONEY,
    PERCENT,
    Base,
    TimestampMixin,
    status_enum,
    utcnow,
)
from payrun_engine.models.compensation import CalculationModeMixin

if TYPE_CHECKING:
    from payrun_engine.models.employee import Employee


class LoanType(CalculationModeMixin, Base, TimestampMixin):
    """Loan product: ceiling (fixed or percentage of base salary), tenure and rate."""

    __tablename__ = "loan_type"

    loan_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tenure_months: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(PERCENT, nullable=False, default=Decimal("0"))
    min_service_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(amount IS NULL AND percentage IS NOT NULL) "
            "OR (amount IS NOT NULL AND percentage IS NULL)",
            name="loan_type_mode_exclusive",
        ),
        CheckConstraint("tenure_months > 0", name="loan_type_tenure_check"),
        CheckConstraint("interest_rate >= 0", name="loan_type_rate_check"),
    )

    # Relationships
    eligible_structures: Mapped[list[LoanTypeSalaryStructure]] = relationship(
        back_populates="loan_type"
    )


class LoanTypeSalaryStructure(Base, TimestampMixin):
    """Salary structures eligible for a loan type (none listed means all)."""

    __tablename__ = "loan_type_salary_structure"

    loan_type_salary_structure_id: Mapped[UUID] = mapped_column(
        primary_key=True, default=uuid4
    )
    loan_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("loan_type.loan_type_id", ondelete="CASCADE"),
        nullable=False,
    )
    salary_structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.salary_structure_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "loan_type_id",
            "salary_structure_id",
            name="loan_type_salary_structure_unique",
        ),
    )

    # Relationships
    loan_type: Mapped[LoanType] = relationship(back_populates="eligible_structures")


class LoanApplication(Base, TimestampMixin):
    """Loan application and its running balances."""

    __tablename__ = "loan_application"

    loan_application_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    reference_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    loan_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("loan_type.loan_type_id", ondelete="RESTRICT"),
        nullable=False,
    )
    requested_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    approved_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    tenure_months: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(PERCENT, nullable=False, default=Decimal("0"))
    monthly_deduction: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    total_interest: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    total_repayment: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[LoanStatus] = mapped_column(
        status_enum(LoanStatus, "loan_application_status"),
        nullable=False,
        default=LoanStatus.PENDING,
    )

    # HR review
    hr_reviewed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    hr_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hr_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Finance disbursement
    disbursed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    disbursed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disbursement_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Tracking
    total_repaid: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    remaining_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("requested_amount > 0", name="loan_application_requested_check"),
        CheckConstraint(
            "approved_amount IS NULL OR (approved_amount > 0 AND approved_amount <= requested_amount)",
            name="loan_application_approved_check",
        ),
        CheckConstraint("remaining_balance >= 0", name="loan_application_balance_check"),
        CheckConstraint("total_repaid >= 0", name="loan_application_repaid_check"),
        Index("loan_application_employee_type_idx", "employee_id", "loan_type_id", "status"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship()
    loan_type: Mapped[LoanType] = relationship()
    repayments: Mapped[list[LoanRepayment]] = relationship(
        back_populates="loan_application",
        order_by="LoanRepayment.installment_number",
    )
    history: Mapped[list[LoanHistory]] = relationship(
        back_populates="loan_application",
        order_by="LoanHistory.created_at",
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_LOAN_STATUSES


class LoanRepayment(Base, TimestampMixin):
    """One scheduled installment of a loan."""

    __tablename__ = "loan_repayment"

    loan_repayment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    loan_application_id: Mapped[UUID] = mapped_column(
        ForeignKey("loan_application.loan_application_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    balance_after: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    status: Mapped[RepaymentStatus] = mapped_column(
        status_enum(RepaymentStatus, "repayment_status"),
        nullable=False,
        default=RepaymentStatus.PENDING,
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payrun_id: Mapped[UUID | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "loan_application_id",
            "installment_number",
            name="loan_repayment_installment_unique",
        ),
        CheckConstraint("installment_number >= 1", name="loan_repayment_number_check"),
        CheckConstraint("expected_amount >= 0", name="loan_repayment_expected_check"),
        Index("loan_repayment_due_idx", "status", "due_date"),
    )

    # Relationships
    loan_application: Mapped[LoanApplication] = relationship(back_populates="repayments")

    @property
    def is_open(self) -> bool:
        return self.status in (RepaymentStatus.PENDING, RepaymentStatus.OVERDUE)


class LoanHistory(Base):
    """Append-only loan audit trail."""

    __tablename__ = "loan_history"

    loan_history_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    loan_application_id: Mapped[UUID] = mapped_column(
        ForeignKey("loan_application.loan_application_id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    performed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    loan_application: Mapped[LoanApplication] = relationship(back_populates="history")
