"""Payrun, payrun item and item detail models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.calculators.types import PayPeriod
from payrun_engine.enums import PayrunLineType, PayrunStatus, PayrunType
from payrun_engine.models.base import MONEY, Base, TimestampMixin, status_enum


def build_period_key(
    payrun_type: PayrunType, allowance_id: UUID | None, period: PayPeriod
) -> str:
    """Unique key guarding against two runs for the same period and scope."""
    scope = str(allowance_id) if allowance_id is not None else "-"
    return f"{payrun_type.value}:{scope}:{period.year:04d}-{period.month:02d}"


class Payrun(Base, TimestampMixin):
    """A payroll batch for one month and one type."""

    __tablename__ = "payrun"

    payrun_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    payrun_type: Mapped[PayrunType] = mapped_column(
        status_enum(PayrunType, "payrun_type"), nullable=False
    )
    allowance_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("allowance.allowance_id", ondelete="RESTRICT"),
        nullable=True,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_key: Mapped[str] = mapped_column(String, nullable=False)

    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    status: Mapped[PayrunStatus] = mapped_column(
        status_enum(PayrunStatus, "payrun_status"),
        nullable=False,
        default=PayrunStatus.DRAFT,
    )
    generated_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("period_key", name="payrun_period_key_unique"),
        CheckConstraint("month >= 1 AND month <= 12", name="payrun_month_check"),
        CheckConstraint(
            "(payrun_type = 'allowance' AND allowance_id IS NOT NULL) "
            "OR (payrun_type = 'salary' AND allowance_id IS NULL)",
            name="payrun_allowance_scope_check",
        ),
    )

    # Relationships
    items: Mapped[list[PayrunItem]] = relationship(
        back_populates="payrun",
        order_by="PayrunItem.position",
    )

    @property
    def period(self) -> PayPeriod:
        return PayPeriod(year=self.year, month=self.month)


class PayrunItem(Base, TimestampMixin):
    """One employee's snapshotted pay within a payrun."""

    __tablename__ = "payrun_item"

    payrun_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payrun_id: Mapped[UUID] = mapped_column(
        ForeignKey("payrun.payrun_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_allowances: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_taxes: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("payrun_id", "employee_id", name="payrun_item_employee_unique"),
        CheckConstraint("net_pay >= 0", name="payrun_item_net_pay_check"),
    )

    # Relationships
    payrun: Mapped[Payrun] = relationship(back_populates="items")
    details: Mapped[list[PayrunItemDetail]] = relationship(
        back_populates="payrun_item",
        order_by="PayrunItemDetail.position",
    )


class PayrunItemDetail(Base, TimestampMixin):
    """A snapshotted pay line (signed amount)."""

    __tablename__ = "payrun_item_detail"

    payrun_item_detail_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payrun_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("payrun_item.payrun_item_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    line_type: Mapped[PayrunLineType] = mapped_column(
        status_enum(PayrunLineType, "payrun_line_type"), nullable=False
    )
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    allowance_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("allowance.allowance_id", ondelete="SET NULL"), nullable=True
    )
    deduction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("deduction.deduction_id", ondelete="SET NULL"), nullable=True
    )
    employee_allowance_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee_allowance.employee_allowance_id", ondelete="SET NULL"),
        nullable=True,
    )
    employee_deduction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employee_deduction.employee_deduction_id", ondelete="SET NULL"),
        nullable=True,
    )
    loan_application_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("loan_application.loan_application_id", ondelete="RESTRICT"),
        nullable=True,
    )
    loan_repayment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("loan_repayment.loan_repayment_id", ondelete="RESTRICT"),
        nullable=True,
    )
    original_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    remaining_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "line_type <> 'loan' OR (loan_application_id IS NOT NULL "
            "AND loan_repayment_id IS NOT NULL)",
            name="payrun_item_detail_loan_refs_check",
        ),
    )

    # Relationships
    payrun_item: Mapped[PayrunItem] = relationship(back_populates="details")
