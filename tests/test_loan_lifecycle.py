"""Tests for loan eligibility and the application lifecycle."""

import re
from datetime import date
from decimal import Decimal
from uuid import uuid4

from payrun_engine.calculators.types import Fixed, Percentage
from payrun_engine.enums import EmployeeStatus, LoanStatus, RepaymentStatus
from payrun_engine.errors import ErrorKind
from payrun_engine.services.directory import BankDetails, EmployeeProfile
from payrun_engine.services.loan_service import ReviewAction, months_of_service

LOAN_DATE = date(2025, 2, 10)


def apply(employee_id, loan_type_id, amount, as_of=LOAN_DATE):
    return lambda ctx: ctx.loans.apply_for_loan(
        employee_id, loan_type_id, Decimal(amount), "Home repairs", as_of=as_of
    )


def approve(loan_id, amount):
    return lambda ctx: ctx.loans.hr_review_loan(
        loan_id, ReviewAction.APPROVE, approved_amount=Decimal(amount)
    )


class TestEligibility:
    """Test maximum eligible amount calculation."""

    async def test_percentage_ceiling(self, seed, call):
        eligibility = await call(
            lambda ctx: ctx.loans.calculate_max_eligible_amount(
                seed.ada_id, seed.personal_loan_id, LOAN_DATE
            )
        )

        assert eligibility.ceiling == Decimal("200000.00")
        assert eligibility.open_exposure == Decimal("0")
        assert eligibility.max_amount == Decimal("200000.00")
        assert eligibility.interest_rate == Decimal("10")
        assert eligibility.tenure_months == 12
        assert eligibility.total_interest == Decimal("20000.00")
        assert eligibility.total_repayment == Decimal("220000.00")
        assert eligibility.monthly_payment == Decimal("18333.33")

    async def test_fixed_ceiling(self, seed, call):
        emergency = await call(
            lambda ctx: ctx.catalog.create_loan_type(
                "Emergency", Fixed(Decimal("50000")), tenure_months=6, interest_rate=Decimal("0")
            )
        )

        eligibility = await call(
            lambda ctx: ctx.loans.calculate_max_eligible_amount(
                seed.bola_id, emergency.loan_type_id, LOAN_DATE
            )
        )

        assert eligibility.max_amount == Decimal("50000.00")
        assert eligibility.total_interest == Decimal("0.00")

    async def test_open_exposure_reduces_ceiling(self, seed, active_loan, call):
        """An active loan's remaining balance counts against the same loan type."""
        eligibility = await call(
            lambda ctx: ctx.loans.calculate_max_eligible_amount(
                seed.ada_id, seed.personal_loan_id, LOAN_DATE
            )
        )

        assert eligibility.open_exposure == Decimal("110000.00")
        assert eligibility.max_amount == Decimal("90000.00")

    async def test_eligible_loan_types(self, seed, call):
        await call(
            lambda ctx: ctx.catalog.create_loan_type(
                "Car Loan",
                Percentage(Decimal("300")),
                tenure_months=24,
                interest_rate=Decimal("12"),
                min_service_months=24,
            )
        )

        veteran = await call(lambda ctx: ctx.loans.get_eligible_loan_types(seed.ada_id, LOAN_DATE))
        newcomer = await call(
            lambda ctx: ctx.loans.get_eligible_loan_types(seed.chidi_id, LOAN_DATE)
        )

        assert sorted(t.name for t in veteran) == ["Car Loan", "Personal Loan"]
        assert [t.name for t in newcomer] == ["Personal Loan"]

    def test_months_of_service(self):
        assert months_of_service(date(2020, 1, 15), date(2025, 2, 10)) == 60
        assert months_of_service(date(2024, 11, 1), date(2025, 2, 10)) == 3
        assert months_of_service(date(2025, 3, 1), date(2025, 2, 10)) == 0


class TestApply:
    """Test loan applications."""

    async def test_apply_creates_pending_application(self, seed, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "100000"))

        assert loan.status == LoanStatus.PENDING
        assert loan.requested_amount == Decimal("100000.00")
        assert loan.remaining_balance == Decimal("100000.00")
        assert loan.total_repaid == Decimal("0")
        assert loan.tenure_months == 12
        assert loan.interest_rate == Decimal("10")
        assert re.fullmatch(r"LN-20250210-[0-9A-F]{6}", loan.reference_number)

        history = await call(lambda ctx: ctx.loans.get_loan_history(loan.loan_application_id))
        assert [h.action for h in history] == ["applied"]

    async def test_already_open(self, seed, run, call):
        await call(apply(seed.ada_id, seed.personal_loan_id, "50000"))

        result = await run(apply(seed.ada_id, seed.personal_loan_id, "10000"))

        assert result.success is False
        assert result.kind == ErrorKind.POLICY_VIOLATION
        assert result.code == "AlreadyOpen"

    async def test_closed_loans_do_not_block(self, seed, call):
        """Rejected and cancelled applications free the loan type again."""
        first = await call(apply(seed.ada_id, seed.personal_loan_id, "50000"))
        await call(
            lambda ctx: ctx.loans.hr_review_loan(
                first.loan_application_id, ReviewAction.REJECT, remarks="Incomplete documents"
            )
        )
        second = await call(apply(seed.ada_id, seed.personal_loan_id, "50000"))
        await call(lambda ctx: ctx.loans.cancel_loan_application(second.loan_application_id))

        third = await call(apply(seed.ada_id, seed.personal_loan_id, "50000"))

        assert third.status == LoanStatus.PENDING

    async def test_exceeds_eligibility(self, seed, run):
        result = await run(apply(seed.ada_id, seed.personal_loan_id, "250000"))

        assert result.code == "ExceedsEligibility"
        assert result.kind == ErrorKind.POLICY_VIOLATION

    async def test_insufficient_service(self, seed, run, call):
        car = await call(
            lambda ctx: ctx.catalog.create_loan_type(
                "Car Loan",
                Fixed(Decimal("1000000")),
                tenure_months=24,
                interest_rate=Decimal("12"),
                min_service_months=24,
            )
        )

        result = await run(apply(seed.chidi_id, car.loan_type_id, "100000"))

        assert result.code == "InsufficientService"

    async def test_ineligible_salary_structure(self, seed, run, call):
        executive = await call(
            lambda ctx: ctx.catalog.create_salary_structure("Executive", Decimal("900000"))
        )
        exec_loan = await call(
            lambda ctx: ctx.catalog.create_loan_type(
                "Executive Loan",
                Fixed(Decimal("5000000")),
                tenure_months=36,
                interest_rate=Decimal("5"),
                eligible_structure_ids=[executive.salary_structure_id],
            )
        )

        result = await run(apply(seed.ada_id, exec_loan.loan_type_id, "100000"))

        assert result.code == "IneligibleSalaryStructure"

    async def test_inactive_loan_type(self, seed, run, call):
        await call(lambda ctx: ctx.catalog.set_loan_type_active(seed.personal_loan_id, False))

        result = await run(apply(seed.ada_id, seed.personal_loan_id, "1000"))

        assert result.code == "LoanTypeInactive"

    async def test_invalid_amount(self, seed, run):
        result = await run(apply(seed.ada_id, seed.personal_loan_id, "0"))

        assert result.kind == ErrorKind.VALIDATION

    async def test_amount_too_small_for_tenure(self, seed, run, call):
        """Twelve installments need at least twelve cents to repay."""
        result = await run(apply(seed.ada_id, seed.personal_loan_id, "0.05"))

        assert result.success is False
        assert result.kind == ErrorKind.VALIDATION
        _, total = await call(
            lambda ctx: ctx.loans.list_loan_applications(employee_id=seed.ada_id)
        )
        assert total == 0

    async def test_unknown_employee(self, seed, run):
        result = await run(apply(uuid4(), seed.personal_loan_id, "1000"))

        assert result.code == "NOT_FOUND"


class TestReview:
    """Test HR review."""

    async def test_full_approval(self, seed, call):
        """100,000 at 10% over 12 months."""
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "100000"))
        reviewer = uuid4()

        loan = await call(
            lambda ctx: ctx.loans.hr_review_loan(
                loan.loan_application_id,
                "approve",
                approved_amount=Decimal("100000"),
                remarks="OK",
                reviewed_by=reviewer,
            )
        )

        assert loan.status == LoanStatus.HR_APPROVED
        assert loan.approved_amount == Decimal("100000.00")
        assert loan.total_interest == Decimal("10000.00")
        assert loan.total_repayment == Decimal("110000.00")
        assert loan.monthly_deduction == Decimal("9166.67")
        assert loan.remaining_balance == Decimal("110000.00")
        assert loan.hr_reviewed_by == reviewer
        assert loan.hr_reviewed_at is not None

    async def test_reduced_approval(self, seed, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "100000"))

        loan = await call(approve(loan.loan_application_id, "60000"))

        assert loan.approved_amount == Decimal("60000.00")
        assert loan.total_interest == Decimal("6000.00")
        assert loan.total_repayment == Decimal("66000.00")
        assert loan.monthly_deduction == Decimal("5500.00")

    async def test_approved_amount_above_requested(self, seed, run, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "100000"))

        result = await run(approve(loan.loan_application_id, "100000.01"))

        assert result.kind == ErrorKind.VALIDATION

    async def test_approved_amount_too_small_for_tenure(self, seed, run, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "1000"))

        result = await run(approve(loan.loan_application_id, "0.05"))

        assert result.kind == ErrorKind.VALIDATION
        stored = await call(lambda ctx: ctx.loans.require_loan(loan.loan_application_id))
        assert stored.status == LoanStatus.PENDING

    async def test_reject_requires_remarks(self, seed, run, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "100000"))

        result = await run(
            lambda ctx: ctx.loans.hr_review_loan(loan.loan_application_id, ReviewAction.REJECT)
        )

        assert result.kind == ErrorKind.VALIDATION

    async def test_reject_is_terminal(self, seed, run, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "100000"))
        rejected = await call(
            lambda ctx: ctx.loans.hr_review_loan(
                loan.loan_application_id, ReviewAction.REJECT, remarks="Over budget"
            )
        )
        assert rejected.status == LoanStatus.HR_REJECTED
        assert rejected.hr_remarks == "Over budget"

        result = await run(lambda ctx: ctx.loans.disburse_loan(loan.loan_application_id))
        assert result.kind == ErrorKind.STATE_CONFLICT
        assert result.code == "INVALID_TRANSITION"

        result = await run(approve(loan.loan_application_id, "1000"))
        assert result.kind == ErrorKind.STATE_CONFLICT


class TestDisburse:
    """Test disbursement and schedule generation."""

    async def test_disbursement_activates_with_schedule(self, seed, active_loan, call):
        loan = await call(lambda ctx: ctx.loans.require_loan(active_loan))
        assert loan.status == LoanStatus.ACTIVE
        assert loan.disbursed_at is not None
        assert loan.remaining_balance == Decimal("110000.00")
        assert loan.total_repaid == Decimal("0.00")

        schedule = await call(lambda ctx: ctx.loans.get_repayment_schedule(active_loan))
        assert len(schedule) == 12
        assert [r.due_date for r in schedule[:2]] == [date(2025, 3, 1), date(2025, 4, 1)]
        assert all(r.expected_amount == Decimal("9166.67") for r in schedule[:11])
        assert schedule[-1].expected_amount == Decimal("9166.63")
        assert sum(r.expected_amount for r in schedule) == Decimal("110000.00")
        assert all(r.status == RepaymentStatus.PENDING for r in schedule)
        assert all(r.employee_id == seed.ada_id for r in schedule)

        history = await call(lambda ctx: ctx.loans.get_loan_history(active_loan))
        actions = [h.action for h in history]
        assert actions[:2] == ["applied", "hr_approved"]
        assert sorted(actions[2:]) == ["activated", "disbursed"]

    async def test_missing_bank_details(self, seed, run, call):
        """Chidi has no bank account on file; the loan stays approved."""
        loan = await call(apply(seed.chidi_id, seed.personal_loan_id, "20000"))
        await call(approve(loan.loan_application_id, "20000"))

        result = await run(
            lambda ctx: ctx.loans.disburse_loan(loan.loan_application_id, as_of=LOAN_DATE)
        )

        assert result.success is False
        assert result.kind == ErrorKind.DEPENDENCY_MISSING
        assert result.code == "MissingBankDetails"

        stored = await call(lambda ctx: ctx.loans.require_loan(loan.loan_application_id))
        assert stored.status == LoanStatus.HR_APPROVED
        schedule = await call(
            lambda ctx: ctx.loans.get_repayment_schedule(loan.loan_application_id)
        )
        assert schedule == []

    async def test_directory_override(self, seed, call):
        """Bank details come from whichever directory the host provides."""

        class ExternalDirectory:
            async def get_employee(self, employee_id):
                return EmployeeProfile(
                    employee_id=employee_id,
                    name="Chidi Eze",
                    department="Sales",
                    is_manager=False,
                    status=EmployeeStatus.ACTIVE,
                    hire_date=date(2024, 11, 1),
                )

            async def get_bank_details(self, employee_id):
                return BankDetails("GT Bank", "Chidi Eze", "5550001111")

        loan = await call(apply(seed.chidi_id, seed.personal_loan_id, "20000"))
        await call(approve(loan.loan_application_id, "20000"))

        disbursed = await call(
            lambda ctx: ctx.loans.disburse_loan(loan.loan_application_id, as_of=LOAN_DATE),
            directory=ExternalDirectory(),
        )

        assert disbursed.status == LoanStatus.ACTIVE

    async def test_disburse_pending_is_conflict(self, seed, run, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "1000"))

        result = await run(lambda ctx: ctx.loans.disburse_loan(loan.loan_application_id))

        assert result.code == "INVALID_TRANSITION"


class TestCancel:
    """Test cancellation."""

    async def test_cancel_pending(self, seed, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "1000"))

        cancelled = await call(
            lambda ctx: ctx.loans.cancel_loan_application(
                loan.loan_application_id, reason="Changed my mind"
            )
        )

        assert cancelled.status == LoanStatus.CANCELLED
        assert cancelled.remaining_balance == Decimal("1000.00")
        history = await call(lambda ctx: ctx.loans.get_loan_history(loan.loan_application_id))
        assert history[-1].action == "cancelled"
        assert history[-1].description == "Cancelled: Changed my mind"

    async def test_cancel_hr_approved(self, seed, call):
        loan = await call(apply(seed.ada_id, seed.personal_loan_id, "1000"))
        await call(approve(loan.loan_application_id, "1000"))

        cancelled = await call(
            lambda ctx: ctx.loans.cancel_loan_application(loan.loan_application_id)
        )

        assert cancelled.status == LoanStatus.CANCELLED
        assert cancelled.remaining_balance == Decimal("1100.00")
        assert cancelled.remaining_balance == (
            cancelled.approved_amount + cancelled.total_interest - cancelled.total_repaid
        )

    async def test_cancel_active_is_conflict(self, seed, active_loan, run):
        result = await run(lambda ctx: ctx.loans.cancel_loan_application(active_loan))

        assert result.kind == ErrorKind.STATE_CONFLICT


class TestListing:
    """Test application listing."""

    async def test_filters(self, seed, active_loan, call):
        await call(apply(seed.bola_id, seed.personal_loan_id, "5000"))

        _, total = await call(lambda ctx: ctx.loans.list_loan_applications())
        assert total == 2

        active, total = await call(
            lambda ctx: ctx.loans.list_loan_applications(status=LoanStatus.ACTIVE)
        )
        assert total == 1
        assert active[0].loan_application_id == active_loan

        bola, total = await call(
            lambda ctx: ctx.loans.list_loan_applications(employee_id=seed.bola_id)
        )
        assert total == 1
        assert bola[0].status == LoanStatus.PENDING

        reference = active[0].reference_number
        found, total = await call(
            lambda ctx: ctx.loans.list_loan_applications(reference=reference[-6:])
        )
        assert [loan.loan_application_id for loan in found] == [active_loan]
