"""
Retry wrapper for idempotent relay reads.

Root fetches, path fetches and status polls may be retried freely. Relay
submission must never go through this wrapper: a retried submit can
broadcast the same spend twice.
"""
import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from services.logging_config import get_logger
from services.wallet_core.errors import UnavailableError

logger = get_logger("relay.retry")

T = TypeVar("T")


async def retry_async(
    op: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    backoff: float = 0.5,
    description: str = "Relay call",
    retry_on: Tuple[Type[BaseException], ...] = (UnavailableError,),
    on_attempt: Optional[Callable[[int, str], None]] = None,
) -> T:
    """
    Await `op()` until it succeeds or `max_retries` attempts are used up.

    - Exponential backoff between attempts (backoff, 2*backoff, 4*backoff, ...)
    - Only exceptions in `retry_on` are retried; anything else propagates at once
    - The last retryable error is re-raised unchanged

    Args:
        op: Zero-argument coroutine factory
        max_retries: Maximum attempts (>= 1)
        backoff: Base delay in seconds
        description: Human-readable label for logs
        retry_on: Exception types considered transient
        on_attempt: Optional callback (attempt_num, status_msg)
    """
    attempts = max(1, max_retries)
    for attempt in range(attempts):
        status_msg = f"{description} (attempt {attempt + 1}/{attempts})"
        logger.debug(status_msg)
        if on_attempt:
            on_attempt(attempt + 1, status_msg)
        try:
            return await op()
        except retry_on as e:
            if attempt == attempts - 1:
                logger.warning(f"{description} failed after {attempts} attempts: {e}")
                raise
            wait_time = backoff * (2 ** attempt)
            logger.info(f"{description} failed ({e}); retrying in {wait_time:.2f}s")
            await asyncio.sleep(wait_time)

    raise UnavailableError(f"{description} failed after {attempts} attempts")
