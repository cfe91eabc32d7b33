"""Payrun engine services."""

from payrun_engine.services.catalog_service import Attachment, CatalogService
from payrun_engine.services.directory import (
    BankDetails,
    EmployeeDirectory,
    EmployeeProfile,
    SqlEmployeeDirectory,
)
from payrun_engine.services.loan_service import (
    LoanEligibility,
    LoanService,
    LoanStatistics,
    ReviewAction,
)
from payrun_engine.services.notifications import (
    NotificationEmitter,
    NotificationEvent,
    NotificationKind,
)
from payrun_engine.services.payrun_service import PayrunService
from payrun_engine.services.settlement_service import LoanSettlementService, SettlementOutcome
from payrun_engine.services.state_machine import LoanStateMachine, PayrunStateMachine

__all__ = [
    "Attachment",
    "CatalogService",
    "BankDetails",
    "EmployeeDirectory",
    "EmployeeProfile",
    "SqlEmployeeDirectory",
    "LoanEligibility",
    "LoanService",
    "LoanStatistics",
    "ReviewAction",
    "NotificationEmitter",
    "NotificationEvent",
    "NotificationKind",
    "PayrunService",
    "LoanSettlementService",
    "SettlementOutcome",
    "LoanStateMachine",
    "PayrunStateMachine",
]
