"""
Shared retry/backoff helper used by the live listener, backfill and integrity repair
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from feydar.errors import is_retryable as default_is_retryable

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff; max_attempts=None retries forever"""
    max_attempts: Optional[int] = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    linear: bool = False

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)"""
        if self.linear:
            return min(self.base_delay * attempt, self.max_delay)
        # Keep the exponent bounded so forever-policies don't overflow
        return min(self.base_delay * (2 ** min(attempt - 1, 16)), self.max_delay)

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = default_is_retryable,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    label: str = 'operation',
) -> T:
    """Run operation until it succeeds, a fatal error occurs, or the policy gives up.

    Fatal errors and the final retryable error propagate unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e) or policy.exhausted(attempt):
                raise
            delay = policy.delay_for(attempt)
            limit = policy.max_attempts if policy.max_attempts is not None else '∞'
            logger.warning(f"⏳ {label} failed (attempt {attempt}/{limit}): {e} - retrying in {delay:.2f}s")
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)
