"""
Retry policy for store unavailability.

Connection drops, failovers and SQLite write-lock timeouts surface as
OperationalError/InterfaceError. The wrapped operation is re-run from the
start after a rollback, with exponential backoff, and a StoreUnavailableError
is raised once the attempts are used up. Business outcomes (conflicts, integrity
violations) are never retried here.
"""

import asyncio
import functools

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError

from app.core.config import get_settings
from app.core.exceptions import StoreUnavailableError
from app.core.logging import get_logger
from app.core.metrics import store_retries

logger = get_logger(__name__)


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated


def with_store_retry(operation: str):
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(db, *args, **kwargs):
            settings = get_settings()
            attempts = max(1, settings.STORE_RETRY_ATTEMPTS)

            for attempt in range(1, attempts + 1):
                try:
                    return await func(db, *args, **kwargs)
                except DBAPIError as e:
                    if not _is_transient(e):
                        raise
                    try:
                        await db.rollback()
                    except SQLAlchemyError:
                        logger.warning("store_rollback_failed", operation=operation)

                    store_retries.labels(operation=operation).inc()
                    logger.warning(
                        "store_unavailable",
                        operation=operation,
                        attempt=attempt,
                        error=str(e.orig) if e.orig is not None else str(e),
                    )
                    if attempt == attempts:
                        raise StoreUnavailableError() from e
                    await asyncio.sleep(settings.STORE_RETRY_BASE_DELAY_SECONDS * 2 ** (attempt - 1))

        return wrapper

    return decorator
