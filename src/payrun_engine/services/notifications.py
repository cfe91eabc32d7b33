"""Notification events and their emitter.

Services queue events while a transaction is open; the operation boundary
dispatches them after commit and discards them on rollback. Delivery is an
external concern: handlers are registered by the host application, and a
failing handler never affects the financial operation or other handlers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable
from uuid import UUID

from payrun_engine.models.base import utcnow

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_DISBURSED = "loan_disbursed"
    PAYRUN_APPROVED = "payrun_approved"
    PAYRUN_PAID = "payrun_paid"


@dataclass(frozen=True)
class NotificationEvent:
    """A fire-and-forget notification for one user."""

    kind: NotificationKind
    user_id: UUID | None
    title: str
    message: str
    reference_id: UUID
    created_at: datetime = field(default_factory=utcnow)


NotificationHandler = Callable[[NotificationEvent], None]


@dataclass
class HandlerRegistration:
    """Registration of a notification handler."""

    handler: NotificationHandler
    kinds: set[NotificationKind] | None  # None = all kinds


class NotificationEmitter:
    """Queues notification events and dispatches them to handlers.

    Usage:
        emitter = NotificationEmitter()
        emitter.on(NotificationKind.LOAN_APPROVED, send_email)

        emitter.queue(event)     # inside the transaction
        emitter.flush()          # after commit
        emitter.discard()        # after rollback
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []
        self._pending: list[NotificationEvent] = []

    def on(
        self,
        kind: NotificationKind | list[NotificationKind],
        handler: NotificationHandler,
    ) -> None:
        """Register handler for specific notification kind(s)."""
        kinds = set(kind) if isinstance(kind, list) else {kind}
        self._handlers.append(HandlerRegistration(handler=handler, kinds=kinds))

    def on_all(self, handler: NotificationHandler) -> None:
        """Register handler for all notifications."""
        self._handlers.append(HandlerRegistration(handler=handler, kinds=None))

    def off(self, handler: NotificationHandler) -> None:
        """Unregister a handler."""
        self._handlers = [reg for reg in self._handlers if reg.handler != handler]

    @property
    def pending(self) -> list[NotificationEvent]:
        return list(self._pending)

    def queue(self, event: NotificationEvent) -> None:
        """Hold an event until the surrounding transaction commits."""
        self._pending.append(event)

    def discard(self) -> int:
        """Drop queued events (the transaction rolled back)."""
        count = len(self._pending)
        self._pending = []
        return count

    def flush(self) -> list[Exception]:
        """Dispatch all queued events.

        Returns list of any exceptions raised by handlers.
        """
        events = self._pending
        self._pending = []
        errors: list[Exception] = []
        for event in events:
            errors.extend(self.emit(event))
        return errors

    def emit(self, event: NotificationEvent) -> list[Exception]:
        """Dispatch an event to all matching handlers.

        Handlers are isolated - failures are logged and don't stop other handlers.
        """
        errors: list[Exception] = []
        for reg in self._handlers:
            if reg.kinds and event.kind not in reg.kinds:
                continue
            try:
                reg.handler(event)
            except Exception as e:
                logger.exception(
                    "Notification handler %s failed for %s (%s)",
                    reg.handler,
                    event.kind.value,
                    event.reference_id,
                )
                errors.append(e)
        return errors
