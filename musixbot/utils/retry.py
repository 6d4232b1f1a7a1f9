"""Bounded retry helpers for async operations.

``RetryEngine.retry`` runs an operation up to ``max_attempts`` times, sleeping
between attempts (flat or exponential, see ``compute_backoff_seconds``) and
notifying an optional ``on_retry(error, attempt)`` observer before each sleep.
The final failure is re-raised unchanged.

``retry_with_condition`` additionally treats a result rejected by the
predicate as a retryable failure; if the last attempt still does not satisfy
the predicate a ``ConditionNotMetError`` is raised rather than returning the
unsatisfying result. Typical use: an on-chain lookup that answers fine but
reports the payment as not yet confirmed.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from musixbot.config import RETRY_POLICY
from musixbot.errors import ConditionNotMetError
from musixbot.utils.backoff import compute_backoff_seconds
from musixbot.utils.logger import StructuredLogger, get_logger

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
RetryObserver = Callable[[BaseException, int], None]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class RetryOptions:
    max_attempts: int = int(RETRY_POLICY["max_attempts"])
    delay: float = float(RETRY_POLICY["delay_seconds"])
    backoff: bool = bool(RETRY_POLICY["backoff"])
    on_retry: Optional[RetryObserver] = None

    def wait_after(self, attempt: int) -> float:
        return compute_backoff_seconds(attempt, delay=self.delay, backoff=self.backoff)


class RetryEngine:
    def __init__(self, *, sleep: Sleeper = asyncio.sleep, logger: Optional[StructuredLogger] = None):
        self._sleep = sleep
        self.logger = logger or get_logger(__name__)

    async def _pause(self, options: RetryOptions, error: BaseException, attempt: int) -> None:
        wait = options.wait_after(attempt)
        self.logger.warning(
            "Attempt failed, retrying",
            attempt=attempt,
            next_delay_seconds=round(wait, 3),
            error=str(error),
        )
        if options.on_retry is not None:
            options.on_retry(error, attempt)
        await self._sleep(wait)

    async def retry(self, operation: Operation[T], options: Optional[RetryOptions] = None) -> T:
        options = options or RetryOptions()
        if options.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        for attempt in range(1, options.max_attempts + 1):
            try:
                return await operation()
            except Exception as error:
                if attempt == options.max_attempts:
                    self.logger.error("All retry attempts failed", attempts=attempt, error=str(error))
                    raise
                await self._pause(options, error, attempt)
        raise AssertionError("unreachable")  # pragma: no cover

    async def retry_with_condition(
        self,
        operation: Operation[T],
        condition: Callable[[T], bool],
        options: Optional[RetryOptions] = None,
    ) -> T:
        options = options or RetryOptions()
        if options.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        for attempt in range(1, options.max_attempts + 1):
            try:
                result = await operation()
            except Exception as error:
                if attempt == options.max_attempts:
                    self.logger.error("All retry attempts failed", attempts=attempt, error=str(error))
                    raise
                await self._pause(options, error, attempt)
                continue

            if condition(result):
                return result
            if attempt == options.max_attempts:
                self.logger.error("Condition not met after all attempts", attempts=attempt)
                raise ConditionNotMetError()
            await self._pause(options, ConditionNotMetError("Condition not met"), attempt)
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["RetryEngine", "RetryOptions"]
