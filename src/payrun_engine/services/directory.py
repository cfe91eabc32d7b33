"""Employee directory interface consumed by the loan engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.enums import EmployeeStatus
from payrun_engine.models import Employee, EmployeeBankAccount


@dataclass(frozen=True)
class EmployeeProfile:
    """Directory view of an employee."""

    employee_id: UUID
    name: str
    department: str
    is_manager: bool
    status: EmployeeStatus
    hire_date: date | None

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE


@dataclass(frozen=True)
class BankDetails:
    """Bank account on file for an employee."""

    bank_name: str
    account_name: str
    account_number: str

    def is_complete(self) -> bool:
        return all(
            value and value.strip()
            for value in (self.bank_name, self.account_name, self.account_number)
        )


@runtime_checkable
class EmployeeDirectory(Protocol):
    """Lookup of employee records and bank details."""

    async def get_employee(self, employee_id: UUID) -> EmployeeProfile | None:
        ...

    async def get_bank_details(self, employee_id: UUID) -> BankDetails | None:
        ...


class SqlEmployeeDirectory:
    """Directory backed by the employee tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_employee(self, employee_id: UUID) -> EmployeeProfile | None:
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            return None
        return EmployeeProfile(
            employee_id=employee.employee_id,
            name=employee.name,
            department=employee.department,
            is_manager=employee.is_manager,
            status=employee.status,
            hire_date=employee.hire_date,
        )

    async def get_bank_details(self, employee_id: UUID) -> BankDetails | None:
        result = await self.session.execute(
            select(EmployeeBankAccount).where(EmployeeBankAccount.employee_id == employee_id)
        )
        account = result.scalar_one_or_none()
        if account is None:
            return None
        return BankDetails(
            bank_name=account.bank_name,
            account_name=account.account_name,
            account_number=account.account_number,
        )
