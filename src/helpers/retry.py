"""Retry helpers with capped exponential backoff."""

from asyncio import sleep
from collections.abc import Awaitable, Callable
from functools import wraps

from typing import ParamSpec, TypeVar

from src.helpers.constants import (
    DB_MAX_RETRIES,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_MAX_DELAY,
)
from src.helpers.logging import get_logger


logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before the retry that follows a failed ``attempt`` (0-indexed).

    Example:
        >>> [backoff_delay(a, 1.0, 10.0) for a in range(5)]
        [1.0, 2.0, 4.0, 8.0, 10.0]
    """
    return min(base_delay * (2**attempt), max_delay)


def retry_with_backoff(
    max_retries: int = DB_MAX_RETRIES,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
    *,
    retry_on: Callable[[Exception], bool] | None = None,
    log_errors: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator to retry async functions with exponential backoff.

    Args:
        max_retries: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay between retries (default: 10.0)
        retry_on: Predicate deciding whether an exception is worth retrying.
            Exceptions it rejects propagate immediately. ``None`` retries all.
        log_errors: Whether to log retry attempts (default: True)

    Returns:
        Decorated function that retries matching exceptions

    Example:
        ```python
        from src.helpers.retry import retry_with_backoff

        @retry_with_backoff(max_retries=3, base_delay=1.0, retry_on=is_transient)
        async def latest_block(session: AsyncSession) -> int | None:
            ...

        # Transient failures are retried after 1s and 2s, then re-raised
        ```
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if retry_on is not None and not retry_on(e):
                        raise
                    last_exception = e
                    if attempt == max_retries - 1:
                        break

                    delay = backoff_delay(attempt, base_delay, max_delay)
                    if log_errors:
                        logger.warning(
                            "%s failed, retrying",
                            func.__name__,
                            extra={
                                "context": {
                                    "attempt": attempt + 1,
                                    "max_retries": max_retries,
                                    "delay_s": delay,
                                    "error": str(e),
                                }
                            },
                        )
                    await sleep(delay)

            if last_exception:
                if log_errors:
                    logger.error(
                        "%s failed after %d attempts", func.__name__, max_retries
                    )
                raise last_exception

            msg = f"{func.__name__} failed without exception"
            raise RuntimeError(msg)

        return wrapper

    return decorator


__all__ = [
    "backoff_delay",
    "retry_with_backoff",
]
