from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from functools import wraps
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)
from tenacity.stop import stop_base

from ..logger import get_logger
from .config import RetryConfig

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger
    from tenacity.retry import retry_base
    from tenacity.wait import wait_base

    from ..core.clock import Clock

logger: BoundLogger = get_logger(__name__)

type SleepFunc = Callable[[float], Awaitable[None]]
type BeforeSleepCallback = Callable[[RetryCallState], Awaitable[None] | None]


class RetryLogicError(RuntimeError): ...


class stop_after_clock_delay(stop_base):  # noqa: N801 - mirrors tenacity naming
    """Stop once ``delay`` seconds have elapsed on an injected clock.

    tenacity's own ``stop_after_delay`` reads ``time.monotonic`` and would never
    fire under a manual test clock.
    """

    def __init__(self, clock: Clock, delay: float) -> None:
        self._clock = clock
        self._deadline = clock.now() + delay

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self._clock.now() >= self._deadline


def log_before_sleep(operation: str) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retrying after failure",
            operation=operation,
            attempt=retry_state.attempt_number,
            wait_s=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
            error=str(exc) if exc else None,
        )

    return _log


class Retry:
    """Async retry helper driven by a :class:`RetryConfig`.

    Usable as a decorator (``@Retry(config)``) or imperatively
    (``await Retry(config).acall(func, *args)``). ``sleep`` is injectable so
    backoff never blocks tests on the wall clock.
    """

    def __init__(
        self,
        config: RetryConfig,
        *,
        sleep: SleepFunc | None = None,
        before_sleep: BeforeSleepCallback | None = None,
        stop: stop_base | None = None,
    ) -> None:
        self._config = config
        self._sleep = sleep or asyncio.sleep
        self._before_sleep = before_sleep
        self._stop = stop or stop_after_attempt(config.max_attempts)
        self._wait = self._build_wait(config)
        self._retry_condition = self._build_retry_condition(config)

    @staticmethod
    def _build_wait(config: RetryConfig) -> wait_base:
        if config.use_jitter:
            return wait_random_exponential(
                multiplier=config.wait_base,
                min=config.wait_min,
                max=config.wait_max,
                exp_base=config.exp_base,
            )
        return wait_exponential(
            multiplier=config.wait_base,
            min=config.wait_min,
            max=config.wait_max,
            exp_base=config.exp_base,
        )

    @staticmethod
    def _build_retry_condition(config: RetryConfig) -> retry_base:
        if config.retry_on_exceptions:
            condition: retry_base = retry_if_exception_type(config.retry_on_exceptions)
        else:
            condition = retry_if_exception_type(Exception)

        if config.never_retry_on:
            condition = condition & retry_if_not_exception_type(config.never_retry_on)

        return condition

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=self._stop,
            wait=self._wait,
            retry=self._retry_condition,
            sleep=self._sleep,
            before_sleep=self._before_sleep,
            reraise=self._config.reraise,
        )

    async def acall[R](self, func: Callable[..., Coroutine[Any, Any, R]], *args: Any, **kwargs: Any) -> R:
        async for attempt in self._retrying():
            with attempt:
                return await func(*args, **kwargs)

        raise RetryLogicError("Async retry loop completed without success or failure")

    def __call__[R](self, func: Callable[..., Coroutine[Any, Any, R]]) -> Callable[..., Coroutine[Any, Any, R]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> R:
            return await self.acall(func, *args, **kwargs)

        return wrapper


def retry(
    config: RetryConfig | None = None,
    *,
    sleep: SleepFunc | None = None,
    before_sleep: BeforeSleepCallback | None = None,
) -> Retry:
    return Retry(config or RetryConfig(), sleep=sleep, before_sleep=before_sleep)
