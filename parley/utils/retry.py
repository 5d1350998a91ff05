#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Retry utilities - Helpers for reliable async operations with retry logic.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# notify_with_retry: Executes a callback with retries on failure (e.g. timeout).
# retry_store_call: Retries an idempotent store call on StoreUnavailableError, bounded.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# logger: Logger instance.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# asyncio: Async I/O.
# logging: Logging.
# typing: Type hints.
# parley.constants: Configuration constants for retries.
# parley.exceptions: StoreUnavailableError.

import asyncio
import logging
from typing import Callable, Awaitable, Any, TypeVar

from parley.constants import (
    NOTIFY_MAX_RETRIES,
    NOTIFY_RETRY_DELAY_SECONDS,
    NOTIFY_TIMEOUT_SECONDS,
)
from parley.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def notify_with_retry(
    callback: Callable[..., Awaitable[Any]],
    *args,
    timeout: float = NOTIFY_TIMEOUT_SECONDS,
    max_retries: int = NOTIFY_MAX_RETRIES,
    retry_delay: float = NOTIFY_RETRY_DELAY_SECONDS,
    label: str = "notification",
    **kwargs
) -> bool:
    """
    Execute an async callback with retry logic for reliability.

    Args:
        callback: Async function to call
        *args: Positional arguments for callback
        timeout: Timeout per attempt in seconds
        max_retries: Maximum number of retry attempts
        retry_delay: Delay between retries in seconds
        label: Description for logging
        **kwargs: Keyword arguments for callback

    Returns:
        True if callback succeeded, False if all retries failed
    """
    for attempt in range(max_retries):
        try:
            await asyncio.wait_for(
                callback(*args, **kwargs),
                timeout=timeout
            )
            if attempt > 0:
                logger.info(f"{label} succeeded on attempt {attempt + 1}")
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"{label} timeout, attempt {attempt + 1}/{max_retries}"
            )
        except Exception as e:
            logger.warning(
                f"{label} failed: {e}, attempt {attempt + 1}/{max_retries}"
            )

        if attempt < max_retries - 1:
            await asyncio.sleep(retry_delay)

    logger.error(f"{label} failed after {max_retries} attempts")
    return False


async def retry_store_call(
    call: Callable[..., Awaitable[T]],
    *args,
    attempts: int = 3,
    delay: float = 0.2,
    label: str = "store call",
    **kwargs
) -> T:
    """
    Run an idempotent store call, retrying only on StoreUnavailableError.

    The last StoreUnavailableError is re-raised once attempts are exhausted.
    Any other error propagates immediately.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return await call(*args, **kwargs)
        except StoreUnavailableError:
            if attempt == attempts - 1:
                logger.error(f"{label} failed after {attempts} attempts")
                raise
            logger.warning(f"{label} store unavailable, attempt {attempt + 1}/{attempts}")
            await asyncio.sleep(delay)
