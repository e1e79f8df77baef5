from __future__ import annotations

from typing import TYPE_CHECKING

from ..logger import get_logger
from .base import Lease

if TYPE_CHECKING:
    from ..core.clock import Clock

logger = get_logger(__name__)


class InMemoryStateStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class InMemoryLeaseBackend:
    """Lease storage shared by every component holding the same instance.

    Suitable for a single process (tests, a one-node lab); there is no
    cross-process visibility.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._leases: dict[str, Lease] = {}

    async def try_acquire(self, resource: str, holder: str, ttl: float) -> Lease | None:
        now = self._clock.now()
        existing = self._leases.get(resource)
        if existing is not None:
            if not existing.is_expired(now):
                return None
            logger.warning(
                "Reclaiming stale lease",
                resource=resource,
                previous_holder=existing.holder,
                age_s=round(existing.age(now), 1),
            )

        lease = Lease(resource=resource, holder=holder, acquired_at=now, ttl=ttl)
        self._leases[resource] = lease
        return lease

    async def release(self, lease: Lease) -> bool:
        existing = self._leases.get(lease.resource)
        if existing is None or existing.token != lease.token:
            return False
        del self._leases[lease.resource]
        return True

    async def current(self, resource: str) -> Lease | None:
        return self._leases.get(resource)

    async def is_expired(self, resource: str) -> bool:
        existing = self._leases.get(resource)
        return existing is None or existing.is_expired(self._clock.now())
