"""Payrun and loan application state machines with transition validation."""

from __future__ import annotations

from payrun_engine.enums import LoanStatus, PayrunStatus
from payrun_engine.errors import InvalidTransitionError


class PayrunStateMachine:
    """State machine for payrun status transitions.

    Allowed transitions:
    - draft | pending → approved
    - approved → paid
    - paid → archived

    ``draft`` and ``pending`` are one awaiting-approval stage. Rollback
    (deletion) is only possible from that stage and is not a transition.
    """

    VALID_TRANSITIONS: dict[PayrunStatus, list[PayrunStatus]] = {
        PayrunStatus.DRAFT: [PayrunStatus.APPROVED],
        PayrunStatus.PENDING: [PayrunStatus.APPROVED],
        PayrunStatus.APPROVED: [PayrunStatus.PAID],
        PayrunStatus.PAID: [PayrunStatus.ARCHIVED],
        PayrunStatus.ARCHIVED: [],  # Terminal state
    }

    AWAITING_APPROVAL = frozenset({PayrunStatus.DRAFT, PayrunStatus.PENDING})

    # Statuses whose installments are reserved for settlement by the payrun
    UNFINISHED = frozenset({PayrunStatus.DRAFT, PayrunStatus.PENDING, PayrunStatus.APPROVED})

    # Statuses whose lines are final; referenced catalog entries are frozen
    RESULTS_IMMUTABLE = frozenset(
        {PayrunStatus.APPROVED, PayrunStatus.PAID, PayrunStatus.ARCHIVED}
    )

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(PayrunStatus(from_status), [])
        return PayrunStatus(to_status) in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(
                PayrunStatus(from_status).value, PayrunStatus(to_status).value
            )

    @classmethod
    def can_rollback(cls, status: str) -> bool:
        """Check if a payrun in this status may be deleted."""
        return PayrunStatus(status) in cls.AWAITING_APPROVAL

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        return PayrunStatus(status) in cls.RESULTS_IMMUTABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[PayrunStatus]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(PayrunStatus(current_status), []))


class LoanStateMachine:
    """State machine for loan application status transitions.

    Allowed transitions (no skipping):
    - pending → hr_approved | hr_rejected | cancelled
    - hr_approved → disbursed | cancelled
    - disbursed → active
    - active → completed

    hr_rejected, completed and cancelled are terminal.
    """

    VALID_TRANSITIONS: dict[LoanStatus, list[LoanStatus]] = {
        LoanStatus.PENDING: [
            LoanStatus.HR_APPROVED,
            LoanStatus.HR_REJECTED,
            LoanStatus.CANCELLED,
        ],
        LoanStatus.HR_APPROVED: [LoanStatus.DISBURSED, LoanStatus.CANCELLED],
        LoanStatus.DISBURSED: [LoanStatus.ACTIVE],
        LoanStatus.ACTIVE: [LoanStatus.COMPLETED],
        LoanStatus.HR_REJECTED: [],
        LoanStatus.COMPLETED: [],
        LoanStatus.CANCELLED: [],
    }

    TERMINAL = frozenset(
        {LoanStatus.HR_REJECTED, LoanStatus.COMPLETED, LoanStatus.CANCELLED}
    )

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(LoanStatus(from_status), [])
        return LoanStatus(to_status) in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(LoanStatus(from_status).value, LoanStatus(to_status).value)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return LoanStatus(status) in cls.TERMINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[LoanStatus]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(LoanStatus(current_status), []))
