"""Bounded exponential backoff around fallible async calls."""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from dirmigrator.logging import get_logger
from dirmigrator.utils.errors import RecoverableError, RetryExhaustedError, is_transient

T = TypeVar("T")


class wait_power(wait_base):
    """Wait ``base ** n`` seconds after the n-th failed attempt.

    A server-supplied ``retry_after`` is honored when it is longer.
    """

    def __init__(self, base: float) -> None:
        self.base = base

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = float(self.base ** retry_state.attempt_number)
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            error = outcome.exception()
            if isinstance(error, RecoverableError) and error.retry_after:
                delay = max(delay, float(error.retry_after))
        return delay


class RetryPolicy:
    """Retry transient failures up to ``max_retry`` attempts in total.

    Conflicts and payload rejections are raised on the first occurrence so
    the caller can act on them without spending the retry budget.
    """

    def __init__(
        self,
        max_retry: int = 3,
        base: float = 2.0,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_retry < 1:
            raise ValueError("max_retry must be at least 1")
        if base <= 1:
            raise ValueError("base must be greater than 1 for delays to grow")
        self.max_retry = max_retry
        self.base = base
        self.timeout = timeout
        self.sleep = sleep
        self.logger = get_logger("retry_policy")

    def delays(self) -> List[float]:
        """Delays slept between attempts when every attempt fails."""
        return [float(self.base ** n) for n in range(1, self.max_retry)]

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Invoke ``fn`` under the policy.

        Raises:
            RetryExhaustedError: After ``max_retry`` transient failures
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(self.max_retry),
            wait=wait_power(self.base),
            sleep=self.sleep,
            before_sleep=self._log_retry_attempt,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    if self.timeout is None:
                        result = await fn(*args, **kwargs)
                    else:
                        result = await asyncio.wait_for(fn(*args, **kwargs), self.timeout)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise RetryExhaustedError(e.last_attempt.attempt_number, last_error) from last_error

        return result

    def _log_retry_attempt(self, retry_state: RetryCallState) -> None:
        """Log retry attempt.

        Args:
            retry_state: Tenacity retry state
        """
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.debug(
            "retry_attempt",
            attempt_number=retry_state.attempt_number,
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
            error=str(error) if error else None,
        )
