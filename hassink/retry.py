"""Bounded retry for async operations"""

import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    before_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
    description: str = "operation",
) -> T:
    """
    Run an async operation until it succeeds or the attempts are exhausted

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        attempts: Maximum number of attempts (at least 1)
        retry_on: Exception types that trigger another attempt
        before_retry: Awaited with (attempt number, error) before each retry;
            this is where callers back off
        description: Used in log messages

    Returns:
        The result of the first successful attempt

    Raises:
        The last error once every attempt has failed, or any error not listed
        in retry_on immediately
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt == attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            logger.warning(f"{description} attempt {attempt} of {attempts} failed: {e}")
            if before_retry is not None:
                await before_retry(attempt, e)

    raise AssertionError("unreachable")
