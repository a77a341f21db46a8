"""Retry with exponential backoff for flaky RPC calls.

Only the orchestration layer uses this.  Treasury policy errors are never
retried: they describe a decision, not a transient fault.
"""

from __future__ import annotations

import functools
import logging
import random
import time
from typing import Any, Callable, TypeVar

from gas_treasury.policy.errors import TreasuryError

logger = logging.getLogger("gas_treasury.retry")

F = TypeVar("F", bound=Callable[..., Any])


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number *attempt* (1-based), with +/-20% jitter."""
    delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
    return delay * random.uniform(0.8, 1.2)


def retry(
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    give_up_on: tuple[type[BaseException], ...] = (TreasuryError,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[F], F]:
    """Decorate a function so that it is retried on failure.

    The last exception is re-raised once *attempts* calls have failed.
    Exceptions in *give_up_on* are raised immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    def decorator(func: F) -> F:
        name = getattr(func, "__qualname__", repr(func))

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except give_up_on:
                    raise
                except retry_on as exc:
                    if attempt == attempts:
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(
                        f"{name} failed ({exc}); retry {attempt}/{attempts - 1} "
                        f"in {delay:.2f}s"
                    )
                    sleep(delay)

        return wrapper  # type: ignore[return-value]

    return decorator
