"""
Reliability utilities for store access.

Bounded retry with exponential backoff for transient failures, wrapped in
a single overall timeout. A timeout is final: the call is reported failed
and never retried in place.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from lastmile.app.core.config import settings
from lastmile.app.core.exceptions import StoreUnavailableError

logger = logging.getLogger("lastmile.reliability")

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True for network-level failures worth another attempt."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (ConnectionError, OSError))


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    operation: str,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    timeout: Optional[float] = None,
    on_retry: Optional[Callable[[], Awaitable[None]]] = None,
) -> T:
    """
    Run an async store call under the retry and timeout policy.
    
    Args:
        func: Zero-argument coroutine factory, invoked once per attempt
        operation: Name used in logs and in the raised error
        attempts: Extra attempts after the first (defaults to settings)
        base_delay: Backoff base; attempt n waits base_delay * 2**n
        timeout: Overall bound for all attempts together
        on_retry: Hook run before each retry (e.g. session rollback)
    
    Returns:
        Whatever func returns
    
    Raises:
        StoreUnavailableError: retries exhausted or timeout reached
    """
    attempts = settings.store_max_retries if attempts is None else attempts
    base_delay = settings.store_retry_base_delay_seconds if base_delay is None else base_delay
    timeout = settings.store_timeout_seconds if timeout is None else timeout
    
    async def run() -> T:
        retry_count = 0
        while True:
            try:
                return await func()
            except Exception as exc:
                if not is_transient(exc):
                    raise
                if retry_count >= attempts:
                    logger.error(
                        "%s failed after %d retries: %s", operation, retry_count, exc
                    )
                    raise StoreUnavailableError(operation, cause=exc) from exc
                retry_count += 1
                delay = base_delay * (2 ** retry_count)
                logger.warning(
                    "%s transient failure (%s), retry %d/%d in %.2fs",
                    operation, type(exc).__name__, retry_count, attempts, delay
                )
                if on_retry is not None:
                    await on_retry()
                await asyncio.sleep(delay)
    
    try:
        return await asyncio.wait_for(run(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error("%s timed out after %.1fs", operation, timeout)
        raise StoreUnavailableError(operation, timed_out=True, cause=exc) from exc
