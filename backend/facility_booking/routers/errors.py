from typing import Awaitable, Callable, TypeVar

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..domain.errors import ErrorKind, ReservationDomainError
from ..infrastructure.transactions import run_in_transaction

T = TypeVar("T")

HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.HORSES_REQUIRED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.TOO_MANY_HORSES: status.HTTP_400_BAD_REQUEST,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.AVAILABILITY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.CAPACITY_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.VERSION_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INFRASTRUCTURE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def to_http_exception(exc: ReservationDomainError) -> HTTPException:
    return HTTPException(
        status_code=HTTP_STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"error": exc.kind.value, "message": exc.message, **exc.payload()},
    )


async def in_transaction(session: AsyncSession, settings: Settings, operation: Callable[[], Awaitable[T]]) -> T:
    """Run a write use case with deadlock retry, mapping domain errors to HTTP."""
    try:
        return await run_in_transaction(session, operation, attempts=settings.transaction_max_attempts)
    except ReservationDomainError as exc:
        raise to_http_exception(exc) from exc
