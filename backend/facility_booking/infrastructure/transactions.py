from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import InfrastructureError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
# MySQL ER_LOCK_WAIT_TIMEOUT / ER_LOCK_DEADLOCK
_RETRYABLE_MYSQL_CODES = frozenset({1205, 1213})


def is_retryable(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    args = getattr(orig, "args", None) or ()
    if args and args[0] in _RETRYABLE_MYSQL_CODES:
        return True
    message = str(exc).lower()
    return "deadlock" in message or "could not serialize" in message


async def run_in_transaction(
    session: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
) -> T:
    """
    Run `operation` inside `session.begin()`, re-running it from scratch when the
    store aborts the transaction because of a concurrent commit. Domain errors
    raised by the operation roll back and propagate untouched.
    """
    last_error: DBAPIError | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with session.begin():
                return await operation()
        except DBAPIError as exc:
            if not is_retryable(exc):
                logger.exception("store transaction failed")
                raise InfrastructureError("Store unavailable") from exc
            last_error = exc
            logger.warning("store transaction conflict, retrying (attempt %d/%d)", attempt, attempts)
    logger.error("store transaction aborted after %d attempts", attempts)
    raise InfrastructureError(f"Transaction aborted after {attempts} attempts") from last_error
