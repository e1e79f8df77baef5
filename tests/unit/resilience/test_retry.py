from __future__ import annotations

from typing import Literal

import pytest
from tenacity import RetryCallState

from pgwarden.resilience import Retry, RetryConfig, retry, stop_after_clock_delay
from tests.unit.fakes import ManualClock


@pytest.fixture
def default_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        wait_base=2.0,
        exp_base=2.0,
        wait_min=0.0,
        wait_max=60.0,
        retry_on_exceptions=None,
        never_retry_on=None,
        reraise=True,
    )


@pytest.fixture
def connection_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=5,
        wait_base=1.0,
        retry_on_exceptions=(ConnectionError, TimeoutError),
        reraise=True,
    )


class TestRetryAsync:
    """Test async retry behavior with an injected sleep."""

    async def test_succeeds_without_retry_when_no_error(
        self, default_retry_config: RetryConfig, clock: ManualClock
    ) -> None:
        """Verify a successful call runs once and never sleeps.

        Arrange
        -------
        - Retry-decorated coroutine that always succeeds

        Act
        ---
        - Invoke it

        Assert
        ------
        - Returns its value, called once, no sleeps recorded
        """
        call_count = 0

        @Retry(default_retry_config, sleep=clock.sleep)
        async def successful_function() -> Literal["success"]:
            nonlocal call_count
            call_count += 1
            return "success"

        result = await successful_function()

        assert result == "success"
        assert call_count == 1
        assert clock.sleeps == []

    async def test_backoff_is_exponential(self, default_retry_config: RetryConfig, clock: ManualClock) -> None:
        """Verify waits grow as wait_base * exp_base ** (n - 1) between attempts.

        Arrange
        -------
        - Coroutine failing twice then succeeding; wait_base=2, exp_base=2

        Act
        ---
        - Call through Retry.acall

        Assert
        ------
        - Two sleeps of 2s and 4s; success on the third attempt
        """
        attempts = 0

        async def flaky() -> int:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise ConnectionError("transient")
            return attempts

        result = await Retry(default_retry_config, sleep=clock.sleep).acall(flaky)

        assert result == 3
        assert clock.sleeps == [2.0, 4.0]

    async def test_raises_after_max_attempts_exhausted(
        self, default_retry_config: RetryConfig, clock: ManualClock
    ) -> None:
        """Test the last exception is re-raised once attempts are exhausted."""
        call_count = 0

        async def always_fails() -> None:
            nonlocal call_count
            call_count += 1
            raise ConnectionError("down")

        with pytest.raises(ConnectionError, match="down"):
            await Retry(default_retry_config, sleep=clock.sleep).acall(always_fails)

        assert call_count == 3

    async def test_retries_only_on_configured_exceptions(
        self, connection_retry_config: RetryConfig, clock: ManualClock
    ) -> None:
        """Test an exception outside retry_on_exceptions propagates immediately."""
        call_count = 0

        async def bad_input() -> None:
            nonlocal call_count
            call_count += 1
            raise ValueError("not transient")

        with pytest.raises(ValueError):
            await Retry(connection_retry_config, sleep=clock.sleep).acall(bad_input)

        assert call_count == 1

    async def test_never_retry_on_takes_precedence(self, clock: ManualClock) -> None:
        """Test never_retry_on wins over a broader retry_on_exceptions."""
        config = RetryConfig(max_attempts=5, retry_on_exceptions=(OSError,), never_retry_on=(PermissionError,))
        call_count = 0

        async def denied() -> None:
            nonlocal call_count
            call_count += 1
            raise PermissionError("denied")

        with pytest.raises(PermissionError):
            await Retry(config, sleep=clock.sleep).acall(denied)

        assert call_count == 1

    async def test_before_sleep_callback_is_invoked(
        self, default_retry_config: RetryConfig, clock: ManualClock
    ) -> None:
        """Test before_sleep receives the retry state for every retry."""
        seen: list[int] = []

        def record(state: RetryCallState) -> None:
            seen.append(state.attempt_number)

        async def always_fails() -> None:
            raise TimeoutError

        with pytest.raises(TimeoutError):
            await retry(default_retry_config, sleep=clock.sleep, before_sleep=record).acall(always_fails)

        assert seen == [1, 2]

    async def test_kwargs_preserved(self, default_retry_config: RetryConfig, clock: ManualClock) -> None:
        """Test positional and keyword arguments reach the wrapped coroutine."""

        @Retry(default_retry_config, sleep=clock.sleep)
        async def join(a: str, *, b: str) -> str:
            return f"{a}-{b}"

        assert await join("x", b="y") == "x-y"


class TestStopAfterClockDelay:
    """Tests for the clock-driven stop condition."""

    async def test_stops_at_deadline(self, clock: ManualClock) -> None:
        """Verify attempts continue until the injected clock passes the delay.

        Arrange
        -------
        - Fixed 2s waits (exp_base=1) and a 10s clock deadline

        Act
        ---
        - Call a coroutine that always fails

        Assert
        ------
        - Six attempts (t=0,2,4,6,8,10) then the error propagates
        """
        config = RetryConfig(max_attempts=1000, wait_base=2.0, exp_base=1.0)
        call_count = 0

        async def busy() -> None:
            nonlocal call_count
            call_count += 1
            raise RuntimeError("busy")

        retrying = Retry(config, sleep=clock.sleep, stop=stop_after_clock_delay(clock, 10))

        with pytest.raises(RuntimeError):
            await retrying.acall(busy)

        assert call_count == 6
        assert sum(clock.sleeps) == pytest.approx(10)
