"""Operation boundary: one transaction per engine operation.

Services raise ``PayrunEngineError`` subclasses and never commit. ``run_operation``
commits on success, rolls back on any failure, and reports the outcome as an
``OperationResult`` instead of raising. Notifications queued during the
operation are dispatched only after a successful commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Awaitable, Callable, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.errors import ErrorKind, PayrunEngineError, PersistenceFailureError
from payrun_engine.services.catalog_service import CatalogService
from payrun_engine.services.directory import EmployeeDirectory
from payrun_engine.services.loan_service import LoanService
from payrun_engine.services.notifications import NotificationEmitter
from payrun_engine.services.payrun_service import PayrunService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    """Outcome of an engine operation."""

    success: bool
    value: T | None = None
    reason: str | None = None
    kind: ErrorKind | None = None
    code: str | None = None

    @classmethod
    def ok(cls, value: T) -> OperationResult[T]:
        return cls(success=True, value=value)

    @classmethod
    def failed(cls, error: PayrunEngineError) -> OperationResult[T]:
        return cls(success=False, reason=error.reason, kind=error.kind, code=error.code)


class EngineContext:
    """Services bound to one session and one notification queue."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationEmitter,
        directory: EmployeeDirectory | None = None,
    ):
        self.session = session
        self.notifier = notifier
        self.directory = directory

    @cached_property
    def payruns(self) -> PayrunService:
        return PayrunService(self.session, self.notifier)

    @cached_property
    def loans(self) -> LoanService:
        return LoanService(self.session, self.notifier, directory=self.directory)

    @cached_property
    def catalog(self) -> CatalogService:
        return CatalogService(self.session)


async def run_operation(
    session: AsyncSession,
    operation: Callable[[EngineContext], Awaitable[T]],
    notifier: NotificationEmitter | None = None,
    directory: EmployeeDirectory | None = None,
) -> OperationResult[T]:
    """Run ``operation`` in its own transaction.

    Args:
        session: Session with no pending changes
        operation: Coroutine function receiving an ``EngineContext``
        notifier: Emitter whose handlers receive queued notifications
        directory: Employee directory override (defaults to the SQL one)
    """
    # Events reach ``notifier`` only after commit
    queue = NotificationEmitter()
    context = EngineContext(session, queue, directory)

    try:
        value = await operation(context)
        await session.commit()
    except PayrunEngineError as e:
        await session.rollback()
        dropped = queue.discard()
        logger.info("Operation failed (%s/%s): %s", e.kind.value, e.code, e.reason)
        if dropped:
            logger.debug("Discarded %d queued notification(s)", dropped)
        return OperationResult.failed(e)
    except SQLAlchemyError as e:
        await session.rollback()
        queue.discard()
        logger.exception("Transaction could not be committed")
        return OperationResult.failed(
            PersistenceFailureError(f"Transaction could not be committed: {e}")
        )
    except Exception:
        await session.rollback()
        queue.discard()
        raise

    if notifier is not None:
        for event in queue.pending:
            notifier.queue(event)
        notifier.flush()
    return OperationResult.ok(value)
