"""Bounded retry execution with fixed or exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

BACKOFF_FIXED = "fixed"
BACKOFF_EXPONENTIAL = "exponential"
_BACKOFF_MODES = {BACKOFF_FIXED, BACKOFF_EXPONENTIAL}

T = TypeVar("T")

RetryHook = Callable[[int, BaseException], Awaitable[None] | None]
RetryFilter = Callable[[BaseException], bool]
SleepFunc = Callable[[float], Awaitable[Any]]


class RetryExhausted(RuntimeError):
    """Raised when an operation keeps failing after every permitted retry."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Operation failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True, slots=True)
class RetryOptions:
    """Configuration for a retrying call."""

    max_retries: int = 3
    initial_delay: float = 1.0
    backoff: str = BACKOFF_EXPONENTIAL
    max_delay: float = 30.0
    on_retry: RetryHook | None = None
    should_retry: RetryFilter | None = None

    def __post_init__(self) -> None:
        try:
            max_retries = int(self.max_retries)
            initial_delay = float(self.initial_delay)
            max_delay = float(self.max_delay)
        except (TypeError, ValueError) as exc:
            raise ValueError("Retry options must be numeric") from exc
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if not math.isfinite(initial_delay) or initial_delay < 0:
            raise ValueError("initial_delay must be a non-negative finite value")
        if math.isnan(max_delay) or max_delay < 0:
            raise ValueError("max_delay must not be negative")
        backoff = self.backoff.strip().lower() if isinstance(self.backoff, str) else ""
        if backoff not in _BACKOFF_MODES:
            raise ValueError(f"Unsupported backoff mode: {self.backoff!r}")
        object.__setattr__(self, "max_retries", max_retries)
        object.__setattr__(self, "initial_delay", initial_delay)
        object.__setattr__(self, "max_delay", max_delay)
        object.__setattr__(self, "backoff", backoff)

    def delays(self) -> list[float]:
        """Return the sleep schedule used between attempts."""

        schedule: list[float] = []
        current = self.initial_delay
        for _ in range(self.max_retries):
            schedule.append(min(current, self.max_delay))
            if self.backoff == BACKOFF_EXPONENTIAL:
                current = min(current * 2, self.max_delay)
        return schedule


class RetryPolicy:
    """Execute awaitable operations with bounded retries.

    A policy only holds its default options; every :meth:`execute` call keeps
    its own attempt counter and delay so independent calls never interfere.
    """

    def __init__(
        self,
        options: RetryOptions | None = None,
        *,
        sleep: SleepFunc = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._options = options or RetryOptions()
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    @property
    def options(self) -> RetryOptions:
        return self._options

    def set_options(self, **changes: Any) -> RetryOptions:
        self._options = replace(self._options, **changes)
        return self._options

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        options: RetryOptions | None = None,
        **overrides: Any,
    ) -> T:
        opts = options or self._options
        if overrides:
            opts = replace(opts, **overrides)
        schedule = opts.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as exc:
                if attempt > opts.max_retries:
                    raise RetryExhausted(attempt, exc) from exc
                if opts.should_retry is not None and not opts.should_retry(exc):
                    self._logger.debug("Retry vetoed after attempt %d: %s", attempt, exc)
                    raise
                if opts.on_retry is not None:
                    await self._call_hook(opts.on_retry, attempt, exc)
                delay = schedule[attempt - 1]
                self._logger.debug(
                    "Attempt %d failed (%s); retrying in %.2fs", attempt, exc, delay
                )
                await self._sleep(delay)

    async def _call_hook(self, hook: RetryHook, attempt: int, error: BaseException) -> None:
        try:
            result = hook(attempt, error)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            self._logger.exception("Retry hook raised an exception")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    sleep: SleepFunc = asyncio.sleep,
    **options: Any,
) -> T:
    """Run ``operation`` under a one-off :class:`RetryPolicy`."""

    policy = RetryPolicy(RetryOptions(**options), sleep=sleep)
    return await policy.execute(operation)


__all__ = [
    "BACKOFF_EXPONENTIAL",
    "BACKOFF_FIXED",
    "RetryExhausted",
    "RetryOptions",
    "RetryPolicy",
    "with_retry",
]
