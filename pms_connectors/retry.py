"""
Retry policy for adapter calls

Adapter calls return explicit results instead of raising for control flow.
Only RateLimitedError and TransientNetworkError are retried.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)
from tenacity.wait import wait_base

from .errors import IntegrationError, RateLimitedError, TransientNetworkError
from .utils.logging import get_safe_logger

logger = get_safe_logger("pms_connectors.retry")

T = TypeVar("T")

RETRYABLE_ERRORS = (RateLimitedError, TransientNetworkError)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base * factor ** (attempt - 1), capped at max_delay"""

    max_attempts: int = 5
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 60.0
    deadline: Optional[float] = None


@dataclass
class CallResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[IntegrationError] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


class wait_retry_after(wait_base):
    """Honor a vendor Retry-After hint, otherwise defer to the fallback wait"""

    def __init__(self, fallback: wait_base, max_delay: float):
        self.fallback = fallback
        self.max_delay = max_delay

    def __call__(self, retry_state) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            return min(error.retry_after, self.max_delay)
        return self.fallback(retry_state)


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    operation: str = "adapter_call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs: Any,
) -> CallResult[T]:
    """
    Run an adapter coroutine under the retry policy.

    Returns a CallResult carrying either the value or the final
    IntegrationError. Anything that is not an IntegrationError propagates.
    """
    policy = policy or RetryPolicy()

    stop = stop_after_attempt(policy.max_attempts)
    if policy.deadline is not None:
        stop = stop | stop_after_delay(policy.deadline)

    def log_retry_attempt(retry_state):
        error = retry_state.outcome.exception()
        logger.warning(
            "adapter_retry_scheduled",
            operation=operation,
            vendor=getattr(error, "vendor", None),
            attempt=retry_state.attempt_number,
            error_type=type(error).__name__,
            next_sleep=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    retrying = AsyncRetrying(
        stop=stop,
        wait=wait_retry_after(
            wait_exponential(multiplier=policy.base_delay, exp_base=policy.factor, max=policy.max_delay),
            policy.max_delay,
        ),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=log_retry_attempt,
        sleep=sleep,
        reraise=True,
    )

    attempts = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                value = await func(*args, **kwargs)
    except IntegrationError as e:
        if e.retryable:
            logger.error(
                "adapter_retry_exhausted",
                operation=operation,
                vendor=e.vendor,
                attempts=attempts,
                error=str(e),
            )
        return CallResult(error=e, attempts=attempts)
    return CallResult(value=value, attempts=attempts)
