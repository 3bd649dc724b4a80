"""
Bounded retry for units of work that hit the relational or blob store.

The wrapped coroutine must take the AsyncSession as its first argument.
A transient failure rolls the session back and re-runs the whole unit,
so partially flushed state from a failed attempt never leaks into the next one.
"""
import asyncio
import functools
import logging

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from vaultdrop.core.config import settings
from vaultdrop.core.errors import BlobStoreUnavailable, TransientStoreError

logger = logging.getLogger(__name__)

def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError, BlobStoreUnavailable)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False

def transient_retry(func):
    @functools.wraps(func)
    async def wrapper(db, *args, **kwargs):
        attempts = max(1, settings.STORE_RETRY_ATTEMPTS)
        last_exc = None
        for attempt in range(1, attempts + 1):
            try:
                return await func(db, *args, **kwargs)
            except Exception as e:
                if not is_transient(e):
                    raise
                last_exc = e
                await db.rollback()
                if attempt < attempts:
                    delay = settings.STORE_RETRY_BASE_DELAY * attempt
                    logger.warning(
                        "[Retry] %s failed (attempt %d/%d): %s (wait %.1fs)",
                        func.__name__, attempt, attempts, e, delay,
                    )
                    await asyncio.sleep(delay)

        logger.error("[Retry] %s failed after %d attempts: %s", func.__name__, attempts, last_exc)
        raise TransientStoreError(
            f"Storage temporarily unavailable during {func.__name__}, retry later"
        ) from last_exc
    return wrapper
