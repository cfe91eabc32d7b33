"""Employee directory models."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Date, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.enums import EmployeeStatus
from payrun_engine.models.base import Base, TimestampMixin, status_enum

if TYPE_CHECKING:
    from payrun_engine.models.compensation import EmployeeSalary


class Employee(Base, TimestampMixin):
    """Employee record."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    staff_number: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    department: Mapped[str] = mapped_column(String, nullable=False)
    is_manager: Mapped[bool] = mapped_column(default=False, nullable=False)
    status: Mapped[EmployeeStatus] = mapped_column(
        status_enum(EmployeeStatus, "employee_status"),
        nullable=False,
        default=EmployeeStatus.ACTIVE,
    )
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Relationships
    bank_account: Mapped[EmployeeBankAccount | None] = relationship(
        back_populates="employee", uselist=False
    )
    salary_assignments: Mapped[list[EmployeeSalary]] = relationship(
        back_populates="employee"
    )

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE


class EmployeeBankAccount(Base, TimestampMixin):
    """Bank account on file for salary and loan disbursement."""

    __tablename__ = "employee_bank_account"

    employee_bank_account_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    bank_name: Mapped[str] = mapped_column(String, nullable=False)
    account_name: Mapped[str] = mapped_column(String, nullable=False)
    account_number: Mapped[str] = mapped_column(String, nullable=False)

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="bank_account")
