"""Bounded retry with fixed backoff, shared by every dispatch batch."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when every attempt allowed by a :class:`RetryPolicy` failed."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error!r}")


class RetryPolicy:
    """Run a callable up to ``max_attempts`` times with a fixed delay between tries.

    Every ``Exception`` counts as transient. The delay is a real sleep on the
    calling thread, so callers run this off the thread that feeds them work.
    ``sleep`` is injectable so tests can observe delays without waiting.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delay: float = 3.0,
        jitter: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if delay < 0 or jitter < 0:
            raise ValueError("delay and jitter must not be negative.")
        self.max_attempts = max_attempts
        self.delay = delay
        self.jitter = jitter
        self._sleep = sleep

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        wait = wait_fixed(self.delay)
        if self.jitter:
            wait = wait + wait_random(0, self.jitter)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait,
            retry=retry_if_exception_type(Exception),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=False,
        )
        try:
            return retrying(fn, *args, **kwargs)
        except RetryError as exc:
            last_attempt = exc.last_attempt
            last_error: Optional[BaseException] = last_attempt.exception()
            raise RetryExhaustedError(last_attempt.attempt_number, last_error) from last_error


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Attempt failed (%s); retrying in %.1fs",
        error,
        wait,
        extra={"attempt": retry_state.attempt_number},
    )
