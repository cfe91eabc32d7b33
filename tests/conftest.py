"""Pytest fixtures for payrun engine tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.calculators.types import Percentage
from payrun_engine.database import create_schema, create_session_factory, get_engine
from payrun_engine.models import Employee, EmployeeBankAccount
from payrun_engine.operations import run_operation
from payrun_engine.services.catalog_service import Attachment, CatalogService
from payrun_engine.services.loan_service import ReviewAction

# In-memory SQLite, one fresh database per test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Loan scenario dates: applied and disbursed in February 2025, so the first
# installment falls due on 2025-03-01.
LOAN_DATE = date(2025, 2, 10)
STRUCTURE_START = date(2024, 1, 1)


@dataclass(frozen=True)
class SeedData:
    """Identifiers of the seeded catalog and employees."""

    structure_id: UUID
    housing_id: UUID
    pension_id: UUID
    personal_loan_id: UUID
    ada_id: UUID
    bola_id: UUID
    chidi_id: UUID


@pytest.fixture
async def engine():
    """Create test database engine with the schema in place."""
    engine = get_engine(TEST_DATABASE_URL)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def run(session_factory):
    """Run an engine operation in its own session and transaction."""

    async def _run(operation, notifier=None, directory=None):
        async with session_factory() as session:
            return await run_operation(session, operation, notifier, directory)

    return _run


@pytest.fixture
def call(run):
    """Run an engine operation that is expected to succeed; return its value."""

    async def _call(operation, notifier=None, directory=None):
        result = await run(operation, notifier, directory)
        assert result.success, f"{result.code}: {result.reason}"
        return result.value

    return _call


@pytest.fixture
async def seed(session_factory) -> SeedData:
    """Seed the catalog and three employees on the standard structure.

    Standard structure: base 200,000; Housing allowance 10% of base, taxable
    at 10%; Pension deduction 8% of base. Each employee therefore nets
    200,000 + 20,000 - 2,000 - 16,000 = 202,000 per month.

    Ada and Bola have bank accounts on file; Chidi does not and joined
    recently.
    """
    async with session_factory() as session:
        catalog = CatalogService(session)
        housing = await catalog.create_allowance(
            "Housing",
            Percentage(Decimal("10")),
            taxable=True,
            tax_percentage=Decimal("10"),
        )
        pension = await catalog.create_deduction("Pension", Percentage(Decimal("8")))
        structure = await catalog.create_salary_structure(
            "Standard",
            Decimal("200000"),
            allowances=[Attachment(housing.allowance_id, STRUCTURE_START)],
            deductions=[Attachment(pension.deduction_id, STRUCTURE_START)],
        )
        personal_loan = await catalog.create_loan_type(
            "Personal Loan",
            Percentage(Decimal("100")),
            tenure_months=12,
            interest_rate=Decimal("10"),
        )

        ada = Employee(
            name="Ada Obi", staff_number="E-001", department="Finance", hire_date=date(2020, 1, 15)
        )
        bola = Employee(
            name="Bola Ade", staff_number="E-002", department="Operations", hire_date=date(2021, 6, 1)
        )
        chidi = Employee(
            name="Chidi Eze", staff_number="E-003", department="Sales", hire_date=date(2024, 11, 1)
        )
        session.add_all([ada, bola, chidi])
        await session.flush()

        session.add_all(
            [
                EmployeeBankAccount(
                    employee_id=ada.employee_id,
                    bank_name="First Bank",
                    account_name="Ada Obi",
                    account_number="0123456789",
                ),
                EmployeeBankAccount(
                    employee_id=bola.employee_id,
                    bank_name="Zenith Bank",
                    account_name="Bola Ade",
                    account_number="9876543210",
                ),
            ]
        )
        for employee in (ada, bola, chidi):
            await catalog.assign_salary_structure(
                employee.employee_id, structure.salary_structure_id, STRUCTURE_START
            )
        await session.commit()

        return SeedData(
            structure_id=structure.salary_structure_id,
            housing_id=housing.allowance_id,
            pension_id=pension.deduction_id,
            personal_loan_id=personal_loan.loan_type_id,
            ada_id=ada.employee_id,
            bola_id=bola.employee_id,
            chidi_id=chidi.employee_id,
        )


@pytest.fixture
async def active_loan(seed: SeedData, call) -> UUID:
    """Ada's 100,000 personal loan, approved in full and disbursed in February 2025."""
    loan = await call(
        lambda ctx: ctx.loans.apply_for_loan(
            seed.ada_id,
            seed.personal_loan_id,
            Decimal("100000"),
            "School fees",
            as_of=LOAN_DATE,
        )
    )
    await call(
        lambda ctx: ctx.loans.hr_review_loan(
            loan.loan_application_id,
            ReviewAction.APPROVE,
            approved_amount=Decimal("100000"),
        )
    )
    await call(lambda ctx: ctx.loans.disburse_loan(loan.loan_application_id, as_of=LOAN_DATE))
    return loan.loan_application_id
