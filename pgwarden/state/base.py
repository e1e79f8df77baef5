from __future__ import annotations

import uuid
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field


class Lease(BaseModel):
    """An exclusive, time-limited claim on a cluster-wide resource.

    There is no owner heartbeat: a lease older than its ``ttl`` is considered
    abandoned and may be reclaimed by the next acquirer.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource: str = Field(min_length=1)
    holder: str = Field(min_length=1)
    token: str = Field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: float = Field(description="Unix seconds")
    ttl: float = Field(gt=0)

    def age(self, now: float) -> float:
        return now - self.acquired_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl


class LeaseBackend(Protocol):
    """Exclusive-create storage for leases.

    ``try_acquire`` returns ``None`` when the resource is held by a lease that
    has not expired, and reclaims it otherwise. ``release`` only removes the
    lease if its token still matches.
    """

    async def try_acquire(self, resource: str, holder: str, ttl: float) -> Lease | None: ...

    async def release(self, lease: Lease) -> bool: ...

    async def current(self, resource: str) -> Lease | None: ...

    async def is_expired(self, resource: str) -> bool: ...


class StateStore(Protocol):
    """Small per-node key-value area for counters and flags."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...
