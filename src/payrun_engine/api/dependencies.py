"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated, TypeVar
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.database import init_db
from payrun_engine.errors import ErrorKind
from payrun_engine.operations import OperationResult
from payrun_engine.services.notifications import NotificationEmitter

T = TypeVar("T")

ERROR_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STATE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.POLICY_VIOLATION: 422,
    ErrorKind.DEPENDENCY_MISSING: status.HTTP_424_FAILED_DEPENDENCY,
    ErrorKind.PERSISTENCE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class OperationFailed(Exception):
    """Raised by routes for a failed operation; rendered as ErrorResponse."""

    def __init__(self, status_code: int, reason: str, code: str):
        self.status_code = status_code
        self.reason = reason
        self.code = code
        super().__init__(reason)


def unwrap(result: OperationResult[T]) -> T:
    """Return the operation value or raise OperationFailed."""
    if result.success:
        return result.value  # type: ignore[return-value]
    status_code = ERROR_STATUS.get(result.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if result.code == "NOT_FOUND":
        status_code = status.HTTP_404_NOT_FOUND
    raise OperationFailed(status_code, result.reason or "Operation failed", result.code or "ERROR")


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    factory = getattr(request.app.state, "session_factory", None)
    if factory is None:
        _, factory = init_db()
        request.app.state.session_factory = factory
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_notifier(request: Request) -> NotificationEmitter:
    """Application-wide notification emitter."""
    return request.app.state.notifier


async def get_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None
) -> UUID | None:
    """Extract the acting user from the X-Actor-ID header."""
    if not x_actor_id:
        return None
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Actor-ID format",
        )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Notifier = Annotated[NotificationEmitter, Depends(get_notifier)]
ActorId = Annotated[UUID | None, Depends(get_actor_id)]
