"""Tests for payrun generation."""

from datetime import date
from decimal import Decimal

from payrun_engine.calculators.types import Fixed
from payrun_engine.enums import EmployeeStatus, PayrunLineType, PayrunStatus, PayrunType
from payrun_engine.errors import ErrorKind
from payrun_engine.models import Employee


def salary_payrun(month=3, year=2025):
    return lambda ctx: ctx.payruns.generate_payrun(PayrunType.SALARY, month=month, year=year)


class TestSalaryPayrun:
    """Test salary payrun generation."""

    async def test_generate_for_all_configured_employees(self, seed, call):
        payrun = await call(salary_payrun())

        assert payrun.name == "Salary Payrun - March 2025"
        assert payrun.status == PayrunStatus.DRAFT
        assert payrun.period_key == "salary:-:2025-03"
        assert payrun.total_employees == 3
        assert payrun.total_gross_pay == Decimal("660000.00")
        assert payrun.total_deductions == Decimal("54000.00")
        assert payrun.total_net_pay == Decimal("606000.00")

        for item in payrun.items:
            assert item.base_salary == Decimal("200000.00")
            assert item.total_allowances == Decimal("20000.00")
            assert item.total_deductions == Decimal("16000.00")
            assert item.total_taxes == Decimal("2000.00")
            assert item.gross_pay == Decimal("220000.00")
            assert item.net_pay == Decimal("202000.00")
            assert len(item.details) == 4

    async def test_loan_installment_deducted(self, seed, active_loan, call):
        """An installment due in the period becomes a loan line on the borrower's item."""
        payrun = await call(salary_payrun())
        items = {item.employee_id: item for item in payrun.items}
        ada = items[seed.ada_id]

        loan_lines = [d for d in ada.details if d.line_type == PayrunLineType.LOAN]
        assert len(loan_lines) == 1
        assert loan_lines[0].amount == Decimal("-9166.67")
        assert loan_lines[0].loan_application_id == active_loan
        assert loan_lines[0].original_amount == Decimal("9166.67")
        assert loan_lines[0].remaining_amount == Decimal("100833.33")

        assert ada.total_deductions == Decimal("25166.67")
        assert ada.net_pay == Decimal("192833.33")
        assert items[seed.bola_id].net_pay == Decimal("202000.00")

        assert payrun.total_deductions == Decimal("63166.67")
        assert payrun.total_net_pay == Decimal("596833.33")
        assert payrun.total_gross_pay - payrun.total_deductions == payrun.total_net_pay

    async def test_installment_outside_period_not_deducted(self, seed, active_loan, call):
        """February has nothing due; the schedule starts in March."""
        payrun = await call(salary_payrun(month=2))

        for item in payrun.items:
            assert all(d.line_type != PayrunLineType.LOAN for d in item.details)

    async def test_totals_are_sums_of_items(self, seed, active_loan, call):
        payrun = await call(salary_payrun())

        assert payrun.total_gross_pay == sum(i.gross_pay for i in payrun.items)
        assert payrun.total_net_pay == sum(i.net_pay for i in payrun.items)
        assert payrun.total_deductions == sum(
            i.total_deductions + i.total_taxes for i in payrun.items
        )

    async def test_duplicate_period(self, seed, run, call):
        """A second salary payrun for the same month is refused."""
        await call(salary_payrun())
        result = await run(salary_payrun())

        assert result.success is False
        assert result.kind == ErrorKind.POLICY_VIOLATION
        assert result.code == "DuplicatePeriod"

    async def test_other_month_is_not_duplicate(self, seed, call):
        await call(salary_payrun(month=3))
        payrun = await call(salary_payrun(month=4))

        assert payrun.period_key == "salary:-:2025-04"

    async def test_employees_without_structure_skipped(self, seed, session_factory, call):
        async with session_factory() as session:
            session.add(Employee(name="Gbenga Ilori", department="Finance"))
            await session.commit()

        payrun = await call(salary_payrun())

        assert payrun.total_employees == 3

    async def test_inactive_employees_excluded(self, seed, session_factory, call):
        async with session_factory() as session:
            bola = await session.get(Employee, seed.bola_id)
            bola.status = EmployeeStatus.TERMINATED
            await session.commit()

        payrun = await call(salary_payrun())

        assert payrun.total_employees == 2
        assert seed.bola_id not in {item.employee_id for item in payrun.items}

    async def test_no_eligible_employees(self, seed, run):
        """Nobody has a structure before 2024."""
        result = await run(salary_payrun(month=6, year=2023))

        assert result.success is False
        assert result.code == "NoEligibleEmployees"
        assert result.kind == ErrorKind.POLICY_VIOLATION

    async def test_negative_net_pay_fails_whole_run(self, seed, run, call):
        await call(
            lambda ctx: ctx.catalog.add_employee_deduction(
                seed.bola_id, "Salary Advance", Fixed(Decimal("300000"))
            )
        )

        result = await run(salary_payrun())

        assert result.success is False
        assert result.code == "NegativeNetPay"
        assert str(seed.bola_id) in result.reason

        _, total = await call(lambda ctx: ctx.payruns.list_payruns())
        assert total == 0

    async def test_salary_payrun_rejects_allowance(self, seed, run):
        result = await run(
            lambda ctx: ctx.payruns.generate_payrun(
                PayrunType.SALARY, month=3, year=2025, allowance_id=seed.housing_id
            )
        )

        assert result.success is False
        assert result.kind == ErrorKind.VALIDATION

    async def test_invalid_month(self, seed, run):
        result = await run(salary_payrun(month=13))

        assert result.success is False
        assert result.kind == ErrorKind.VALIDATION


class TestAllowancePayrun:
    """Test single-allowance payrun generation."""

    async def test_structure_allowance(self, seed, call):
        """Every employee whose structure carries the allowance, with its tax line."""
        payrun = await call(
            lambda ctx: ctx.payruns.generate_payrun(
                PayrunType.ALLOWANCE, month=3, year=2025, allowance_id=seed.housing_id
            )
        )

        assert payrun.name == "Housing Payrun - March 2025"
        assert payrun.period_key == f"allowance:{seed.housing_id}:2025-03"
        assert payrun.total_employees == 3
        for item in payrun.items:
            assert item.base_salary == Decimal("0.00")
            assert item.gross_pay == Decimal("20000.00")
            assert item.total_taxes == Decimal("2000.00")
            assert item.net_pay == Decimal("18000.00")
            assert [d.line_type for d in item.details] == [
                PayrunLineType.ALLOWANCE,
                PayrunLineType.TAX,
            ]

    async def test_direct_entitlement(self, seed, call):
        """A directly granted allowance pays only the entitled employee."""
        transport = await call(
            lambda ctx: ctx.catalog.create_allowance("Transport", Fixed(Decimal("5000")))
        )
        await call(
            lambda ctx: ctx.catalog.grant_allowance(
                seed.chidi_id, transport.allowance_id, date(2025, 1, 1)
            )
        )

        payrun = await call(
            lambda ctx: ctx.payruns.generate_payrun(
                PayrunType.ALLOWANCE, month=3, year=2025, allowance_id=transport.allowance_id
            )
        )

        assert payrun.total_employees == 1
        item = payrun.items[0]
        assert item.employee_id == seed.chidi_id
        assert item.net_pay == Decimal("5000.00")
        assert item.details[0].employee_allowance_id is not None

    async def test_allowance_and_salary_runs_coexist(self, seed, call):
        await call(salary_payrun())
        payrun = await call(
            lambda ctx: ctx.payruns.generate_payrun(
                PayrunType.ALLOWANCE, month=3, year=2025, allowance_id=seed.housing_id
            )
        )

        assert payrun.status == PayrunStatus.DRAFT

    async def test_nobody_entitled(self, seed, run, call):
        bonus = await call(lambda ctx: ctx.catalog.create_allowance("Bonus", Fixed(Decimal("1000"))))

        result = await run(
            lambda ctx: ctx.payruns.generate_payrun(
                PayrunType.ALLOWANCE, month=3, year=2025, allowance_id=bonus.allowance_id
            )
        )

        assert result.code == "NoEligibleEmployees"

    async def test_allowance_required(self, seed, run):
        result = await run(
            lambda ctx: ctx.payruns.generate_payrun(PayrunType.ALLOWANCE, month=3, year=2025)
        )

        assert result.success is False
        assert result.kind == ErrorKind.VALIDATION
