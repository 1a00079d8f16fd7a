"""Bounded exponential-backoff retry for converging backend operations.

Some operations fail for a while right after a related change (a freshly
attached port not yet visible to the reserved-fixed-IP service, for example).
``with_retry`` re-runs them with increasing delays. Classification is done by
the client: only ``BackendError`` instances are considered, and those tagged
``retriable=False`` are raised on the first failure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from netattach import metrics
from netattach.config import settings
from netattach.errors import BackendError

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base, 2*base, 4*base..."""
    return min(base * (2 ** (attempt - 1)), maximum)


async def with_retry(
    func: Callable[..., Awaitable[Any]],
    *args,
    attempts: int | None = None,
    backoff_base: float | None = None,
    backoff_max: float | None = None,
    description: str | None = None,
    **kwargs,
) -> Any:
    """Execute an async function with exponential backoff retry logic.

    Retries on:
    - ``BackendError`` with ``retriable=True`` (converging backend state,
      transport failures)

    Does not retry on:
    - ``BackendError`` with ``retriable=False`` (permanent markers, auth)
    - Any other exception, which propagates unchanged

    Args:
        func: Coroutine function to call
        attempts: Total attempts including the first (default from settings)
        backoff_base: Delay before the first retry in seconds
        backoff_max: Upper bound for a single delay
        description: Operation name for logs and metrics

    Returns:
        Whatever ``func`` returns on its first successful attempt

    Raises:
        BackendError: The permanent error, or the last transient one once
            attempts are exhausted.
    """
    if attempts is None:
        attempts = settings.retry_attempts
    if backoff_base is None:
        backoff_base = settings.retry_backoff_base
    if backoff_max is None:
        backoff_max = settings.retry_backoff_max
    attempts = max(attempts, 1)
    name = description or getattr(func, "__name__", "operation")

    for attempt in range(1, attempts + 1):
        try:
            return await func(*args, **kwargs)
        except BackendError as e:
            if not e.retriable:
                logger.error(f"{name} failed permanently: {e.message}")
                raise
            if attempt >= attempts:
                logger.error(f"{name} failed after {attempts} attempts: {e.message}")
                raise
            delay = backoff_delay(attempt, backoff_base, backoff_max)
            logger.warning(
                f"{name} failed (attempt {attempt}/{attempts}), "
                f"retrying in {delay:.1f}s: {e.message}"
            )
            metrics.retry_attempts.labels(operation=name).inc()
            await asyncio.sleep(delay)
