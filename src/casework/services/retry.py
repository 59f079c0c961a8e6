"""
casework.services.retry

Bounded retry of storage units.

Responsibilities:
- Run one unit of storage work and commit it, retrying transient failures
  with exponential backoff.
- Count committed units so a `StorageUnavailable` reports how far an operation got.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from casework.errors import StorageUnavailable
from casework.observability.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)


def is_transient(exc: BaseException) -> bool:
    # Lock timeouts, dropped connections and "database is locked" surface as OperationalError.
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class StorageUnits:
    def __init__(
        self,
        session: AsyncSession,
        *,
        attempts: int,
        backoff_seconds: float,
    ) -> None:
        self._session = session
        self._attempts = max(1, attempts)
        self._backoff = backoff_seconds
        self.committed_units = 0

    async def run(self, step: str, unit: Callable[[], Awaitable[T]]) -> T:
        """
        Execute `unit` and commit. A unit must be safe to replay after a rollback.

        Non-transient database errors (e.g. IntegrityError) are rolled back and re-raised
        for the caller to map; transient ones are retried up to the configured attempts.
        """

        delay = self._backoff
        last_error: DBAPIError | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                result = await unit()
                await self._session.commit()
            except DBAPIError as e:
                await self._session.rollback()
                if not is_transient(e):
                    raise
                last_error = e
                log.warning("storage_retry", step=step, attempt=attempt, error=str(e.orig))
                if attempt < self._attempts:
                    await asyncio.sleep(delay)
                    delay *= 2
                continue
            self.committed_units += 1
            return result

        log.error("storage_unavailable", step=step, committed_units=self.committed_units)
        raise StorageUnavailable(
            step=step,
            committed_units=self.committed_units,
            cause=str(last_error.orig if last_error is not None else "unknown"),
        )


# --- Module Notes -----------------------------------------------------------
# There is no compensation here: committed units stay committed. Operations built on
# top of this runner are idempotent per step, so the recovery path is to re-invoke them.
