"""Error taxonomy shared by the payrun and loan engines.

Every error carries a ``kind`` (one of the five categories below), a short
machine-readable ``code`` and a human-readable ``reason``. Services raise
these; the operation boundary (``payrun_engine.operations``) turns them into
structured results and the API turns them into HTTP responses.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Error categories."""

    VALIDATION = "validation_error"
    STATE_CONFLICT = "state_conflict"
    POLICY_VIOLATION = "policy_violation"
    DEPENDENCY_MISSING = "dependency_missing"
    PERSISTENCE_FAILURE = "persistence_failure"


class PayrunEngineError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.VALIDATION
    default_code = "ERROR"

    def __init__(self, reason: str, code: str | None = None):
        self.reason = reason
        self.code = code or self.default_code
        super().__init__(reason)


class ValidationError(PayrunEngineError):
    """Malformed or out-of-range input."""

    kind = ErrorKind.VALIDATION
    default_code = "INVALID_INPUT"


class NotFoundError(ValidationError):
    """Referenced entity does not exist."""

    default_code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", self.default_code)


class StateConflictError(PayrunEngineError):
    """Operation is invalid for the entity's current status."""

    kind = ErrorKind.STATE_CONFLICT
    default_code = "STATE_CONFLICT"


class InvalidTransitionError(StateConflictError):
    """Raised when an invalid state transition is attempted."""

    default_code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PolicyViolationError(PayrunEngineError):
    """Business policy refused the operation."""

    kind = ErrorKind.POLICY_VIOLATION
    default_code = "POLICY_VIOLATION"


class DependencyMissingError(PayrunEngineError):
    """A required collaborator record is missing (bank details, salary structure)."""

    kind = ErrorKind.DEPENDENCY_MISSING
    default_code = "DEPENDENCY_MISSING"


class PersistenceFailureError(PayrunEngineError):
    """The transaction could not be committed."""

    kind = ErrorKind.PERSISTENCE_FAILURE
    default_code = "PERSISTENCE_FAILURE"
