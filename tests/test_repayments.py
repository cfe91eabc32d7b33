"""Tests for manual settlement, early repayment and overdue tracking."""

from datetime import date
from decimal import Decimal

from payrun_engine.enums import LoanStatus, PayrunType, RepaymentStatus
from payrun_engine.errors import ErrorKind
from payrun_engine.services.loan_service import ReviewAction

INSTALLMENT = Decimal("9166.67")


class TestSettleInstallment:
    """Test manual settlement of single installments."""

    async def test_settle_first_installment(self, seed, active_loan, call):
        outcome = await call(
            lambda ctx: ctx.loans.settle_installment(active_loan, 1, note="Paid at branch")
        )

        assert outcome.installments_paid == 1
        assert outcome.amount_settled == INSTALLMENT
        assert outcome.completed_loans == []

        loan = await call(lambda ctx: ctx.loans.require_loan(active_loan))
        assert loan.remaining_balance == Decimal("100833.33")
        assert loan.total_repaid == INSTALLMENT

        schedule = await call(lambda ctx: ctx.loans.get_repayment_schedule(active_loan))
        assert schedule[0].status == RepaymentStatus.PAID
        assert schedule[0].paid_amount == INSTALLMENT
        assert schedule[0].payrun_id is None
        assert schedule[0].notes == "Paid at branch"

    async def test_settle_twice_is_conflict(self, seed, active_loan, run, call):
        await call(lambda ctx: ctx.loans.settle_installment(active_loan, 1))

        result = await run(lambda ctx: ctx.loans.settle_installment(active_loan, 1))

        assert result.success is False
        assert result.kind == ErrorKind.STATE_CONFLICT
        assert result.code == "SettlementConflict"

    async def test_unknown_installment(self, seed, active_loan, run):
        result = await run(lambda ctx: ctx.loans.settle_installment(active_loan, 13))

        assert result.code == "NOT_FOUND"

    async def test_installment_reserved_by_payrun(self, seed, active_loan, run, call):
        """An installment carried by an unpaid payrun cannot be settled by hand."""
        payrun = await call(
            lambda ctx: ctx.payruns.generate_payrun(PayrunType.SALARY, month=3, year=2025)
        )

        result = await run(lambda ctx: ctx.loans.settle_installment(active_loan, 1))

        assert result.success is False
        assert result.kind == ErrorKind.STATE_CONFLICT
        assert result.code == "ReservedByPayrun"

        # Once the payrun is rolled back the installment is free again
        await call(lambda ctx: ctx.payruns.rollback_payrun(payrun.payrun_id))
        outcome = await call(lambda ctx: ctx.loans.settle_installment(active_loan, 1))
        assert outcome.installments_paid == 1

    async def test_later_installment_not_reserved(self, seed, active_loan, call):
        await call(lambda ctx: ctx.payruns.generate_payrun(PayrunType.SALARY, month=3, year=2025))

        outcome = await call(lambda ctx: ctx.loans.settle_installment(active_loan, 2))

        assert outcome.installments_paid == 1

    async def test_pending_loan_has_no_schedule(self, seed, run, call):
        loan = await call(
            lambda ctx: ctx.loans.apply_for_loan(
                seed.bola_id, seed.personal_loan_id, Decimal("1000"), "Rent", as_of=date(2025, 2, 1)
            )
        )

        result = await run(lambda ctx: ctx.loans.settle_installment(loan.loan_application_id, 1))

        assert result.code == "NOT_FOUND"


class TestEarlyRepayment:
    """Test lump-sum repayment of whole installments."""

    async def test_two_installments(self, seed, active_loan, call):
        outcome = await call(
            lambda ctx: ctx.loans.make_early_repayment(active_loan, INSTALLMENT * 2)
        )

        assert outcome.installments_paid == 2
        assert outcome.amount_settled == Decimal("18333.34")

        schedule = await call(lambda ctx: ctx.loans.get_repayment_schedule(active_loan))
        assert [r.status for r in schedule[:3]] == [
            RepaymentStatus.PAID,
            RepaymentStatus.PAID,
            RepaymentStatus.PENDING,
        ]
        assert schedule[1].notes == "early repayment"

        loan = await call(lambda ctx: ctx.loans.require_loan(active_loan))
        assert loan.remaining_balance == Decimal("91666.66")

    async def test_partial_installment_rejected(self, seed, active_loan, run, call):
        result = await run(lambda ctx: ctx.loans.make_early_repayment(active_loan, Decimal("10000")))

        assert result.success is False
        assert result.kind == ErrorKind.VALIDATION

        loan = await call(lambda ctx: ctx.loans.require_loan(active_loan))
        assert loan.total_repaid == Decimal("0.00")

    async def test_more_than_balance_rejected(self, seed, active_loan, run):
        result = await run(
            lambda ctx: ctx.loans.make_early_repayment(active_loan, Decimal("110000.01"))
        )

        assert result.kind == ErrorKind.VALIDATION

    async def test_full_payoff_completes_loan(self, seed, active_loan, call):
        outcome = await call(
            lambda ctx: ctx.loans.make_early_repayment(active_loan, Decimal("110000"))
        )

        assert outcome.installments_paid == 12
        assert [loan.loan_application_id for loan in outcome.completed_loans] == [active_loan]

        loan = await call(lambda ctx: ctx.loans.require_loan(active_loan))
        assert loan.status == LoanStatus.COMPLETED
        assert loan.remaining_balance == Decimal("0.00")
        assert loan.total_repaid == Decimal("110000.00")
        assert loan.completed_at is not None

        history = await call(lambda ctx: ctx.loans.get_loan_history(active_loan))
        actions = [h.action for h in history]
        assert actions.count("repayment") == 12
        assert "completed" in actions

    async def test_completed_loan_frees_loan_type(self, seed, active_loan, call):
        await call(lambda ctx: ctx.loans.make_early_repayment(active_loan, Decimal("110000")))

        loan = await call(
            lambda ctx: ctx.loans.apply_for_loan(
                seed.ada_id, seed.personal_loan_id, Decimal("5000"), "Travel", as_of=date(2025, 3, 2)
            )
        )

        assert loan.status == LoanStatus.PENDING

    async def test_inactive_loan_rejected(self, seed, run, call):
        loan = await call(
            lambda ctx: ctx.loans.apply_for_loan(
                seed.bola_id, seed.personal_loan_id, Decimal("1000"), "Rent", as_of=date(2025, 2, 1)
            )
        )
        await call(
            lambda ctx: ctx.loans.hr_review_loan(
                loan.loan_application_id, ReviewAction.APPROVE, approved_amount=Decimal("1000")
            )
        )

        result = await run(
            lambda ctx: ctx.loans.make_early_repayment(loan.loan_application_id, Decimal("100"))
        )

        assert result.kind == ErrorKind.STATE_CONFLICT


class TestOverdue:
    """Test overdue marking."""

    async def test_mark_overdue(self, seed, active_loan, call):
        count = await call(lambda ctx: ctx.loans.mark_overdue_repayments(date(2025, 5, 15)))

        assert count == 3
        schedule = await call(lambda ctx: ctx.loans.get_repayment_schedule(active_loan))
        assert [r.status for r in schedule[:4]] == [
            RepaymentStatus.OVERDUE,
            RepaymentStatus.OVERDUE,
            RepaymentStatus.OVERDUE,
            RepaymentStatus.PENDING,
        ]

    async def test_due_date_itself_is_not_overdue(self, seed, active_loan, call):
        count = await call(lambda ctx: ctx.loans.mark_overdue_repayments(date(2025, 3, 1)))

        assert count == 0

    async def test_paid_installments_untouched(self, seed, active_loan, call):
        await call(lambda ctx: ctx.loans.settle_installment(active_loan, 1))

        count = await call(lambda ctx: ctx.loans.mark_overdue_repayments(date(2025, 4, 2)))

        assert count == 1

    async def test_overdue_installment_still_deducted(self, seed, active_loan, call):
        """Overdue installments due in the period are picked up by the payrun."""
        await call(lambda ctx: ctx.loans.mark_overdue_repayments(date(2025, 3, 15)))

        payrun = await call(
            lambda ctx: ctx.payruns.generate_payrun(PayrunType.SALARY, month=3, year=2025)
        )
        await call(lambda ctx: ctx.payruns.approve_payrun(payrun.payrun_id))
        await call(lambda ctx: ctx.payruns.complete_payrun(payrun.payrun_id))

        schedule = await call(lambda ctx: ctx.loans.get_repayment_schedule(active_loan))
        assert schedule[0].status == RepaymentStatus.PAID


class TestStatistics:
    """Test loan statistics."""

    async def test_statistics(self, seed, active_loan, call):
        await call(
            lambda ctx: ctx.loans.apply_for_loan(
                seed.bola_id, seed.personal_loan_id, Decimal("1000"), "Rent", as_of=date(2025, 2, 1)
            )
        )
        await call(lambda ctx: ctx.loans.settle_installment(active_loan, 1))

        stats = await call(lambda ctx: ctx.loans.get_loan_statistics())

        assert stats.pending == 1
        assert stats.awaiting_disbursement == 0
        assert stats.active == 1
        assert stats.completed == 0
        assert stats.total_disbursed == Decimal("100000.00")
        assert stats.total_repaid == INSTALLMENT
        assert stats.outstanding_balance == Decimal("100833.33")
