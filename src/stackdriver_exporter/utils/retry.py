"""Retry utilities with exponential backoff."""

import asyncio
import random
import logging
from typing import Awaitable, Callable, TypeVar

from ..exceptions import TransientAPIError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def backoff_delay(
    attempt: int,
    backoff_jitter: float,
    max_backoff: float,
    uniform: Callable[[float, float], float] = random.uniform
) -> float:
    """
    Delay before retry number ``attempt`` (1-based).

    ``backoff_jitter * 2**(attempt - 1)`` scaled by a random factor in
    [0.5, 1.5), never more than ``max_backoff``.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    delay = backoff_jitter * (2 ** (attempt - 1)) * uniform(0.5, 1.5)
    return max(0.0, min(max_backoff, delay))


async def exponential_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 0,
    backoff_jitter: float = 1.0,
    max_backoff: float = 5.0,
    exceptions: tuple = (TransientAPIError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> T:
    """
    Execute an async function, retrying on the given exceptions.

    Args:
        func: Async function to execute
        max_retries: Number of retries after the first attempt
        backoff_jitter: Base delay of the first retry (seconds)
        max_backoff: Upper bound of any single delay (seconds)
        exceptions: Tuple of exceptions to catch and retry on
        sleep: Awaitable used to wait between attempts

    Returns:
        Result of the function call

    Raises:
        The last exception encountered if all retries fail, or any exception
        not listed in ``exceptions`` immediately.
    """
    retries = 0

    while True:
        try:
            return await func()
        except exceptions as e:
            if retries >= max_retries:
                if max_retries:
                    logger.error(f"Request failed after {retries} retries: {e}")
                raise

            retries += 1
            delay = backoff_delay(retries, backoff_jitter, max_backoff)

            logger.warning(
                f"Attempt {retries}/{max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.2f} seconds..."
            )

            await sleep(delay)
