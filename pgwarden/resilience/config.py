from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RetryConfig(BaseModel):
    """Backoff policy for a bounded retry loop.

    The wait before attempt ``n + 1`` is ``wait_base * exp_base ** (n - 1)``,
    clamped to ``[wait_min, wait_max]``. With ``use_jitter`` the wait is drawn
    uniformly from zero to that value (full jitter).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=1, description="Maximum attempts, including the first")
    wait_base: float = Field(default=2.0, ge=0, description="Wait before the first retry in seconds")
    exp_base: float = Field(default=2.0, ge=1, description="Growth factor between consecutive waits")
    wait_min: float = Field(default=0.0, ge=0, description="Lower bound for a single wait in seconds")
    wait_max: float = Field(default=60.0, ge=0, description="Upper bound for a single wait in seconds")
    use_jitter: bool = Field(default=False, description="Draw each wait uniformly from [0, computed wait]")

    retry_on_exceptions: tuple[type[Exception], ...] | None = Field(
        default=None,
        description="Exception types that trigger retry (None = all exceptions)",
    )
    never_retry_on: tuple[type[Exception], ...] | None = Field(
        default=None,
        description="Exception types never retried (takes precedence over retry_on_exceptions)",
    )
    reraise: bool = Field(default=True, description="Reraise the last exception once attempts are exhausted")
