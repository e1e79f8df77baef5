from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from ..core.exceptions import LeaseBusyError, LockTimeoutError
from ..logger import get_logger
from ..resilience import Retry, RetryConfig, stop_after_clock_delay

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.clock import Clock
    from .base import Lease, LeaseBackend

logger: BoundLogger = get_logger(__name__)


class LeaseManager:
    """Acquire and release cluster-wide leases on behalf of one node.

    Acquisition polls the backend every ``retry_interval`` seconds until
    ``timeout`` elapses on the injected clock. Leases older than ``ttl`` are
    reclaimed by the backend on the next acquisition attempt.

    Parameters
    ----------
    backend : LeaseBackend
        Shared lease storage.
    holder : str
        Identity recorded on acquired leases (the node name).
    clock : Clock
        Time source for timeouts and backoff.
    ttl : float
        Lease staleness threshold in seconds.
    timeout : float
        Default acquisition timeout in seconds.
    retry_interval : float
        Fixed wait between acquisition attempts.
    """

    def __init__(
        self,
        backend: LeaseBackend,
        holder: str,
        clock: Clock,
        *,
        ttl: float = 300.0,
        timeout: float = 60.0,
        retry_interval: float = 2.0,
    ) -> None:
        self._backend = backend
        self._holder = holder
        self._clock = clock
        self._ttl = ttl
        self._timeout = timeout
        self._retry_interval = retry_interval

    @property
    def backend(self) -> LeaseBackend:
        return self._backend

    async def try_acquire(self, resource: str) -> Lease:
        """Single attempt; raises :class:`LeaseBusyError` when held elsewhere."""
        lease = await self._backend.try_acquire(resource, self._holder, self._ttl)
        if lease is None:
            current = await self._backend.current(resource)
            raise LeaseBusyError(resource, current.holder if current else None)
        return lease

    async def acquire(self, resource: str, *, timeout: float | None = None) -> Lease:
        """Poll until the lease is ours or ``timeout`` elapses.

        Raises
        ------
        LockTimeoutError
            If the lease is still held by another owner at the deadline.
        """
        timeout = self._timeout if timeout is None else timeout
        config = RetryConfig(
            max_attempts=1_000_000,
            wait_base=self._retry_interval,
            exp_base=1.0,
            wait_max=max(self._retry_interval, 60.0),
            retry_on_exceptions=(LeaseBusyError,),
        )
        retrying = Retry(config, sleep=self._clock.sleep, stop=stop_after_clock_delay(self._clock, timeout))

        try:
            lease = await retrying.acall(self.try_acquire, resource)
        except LeaseBusyError as e:
            logger.warning("Lease acquisition timed out", resource=resource, holder=e.holder, timeout_s=timeout)
            raise LockTimeoutError(resource, timeout) from e

        logger.info("Lease acquired", resource=resource, holder=self._holder)
        return lease

    async def release(self, lease: Lease) -> bool:
        released = await self._backend.release(lease)
        if released:
            logger.info("Lease released", resource=lease.resource, holder=lease.holder)
        else:
            logger.warning("Lease was no longer ours at release", resource=lease.resource, holder=lease.holder)
        return released

    @asynccontextmanager
    async def hold(self, resource: str, *, timeout: float | None = None) -> AsyncIterator[Lease]:
        """Hold ``resource`` for the duration of the block; released exactly once on every exit path."""
        lease = await self.acquire(resource, timeout=timeout)
        try:
            yield lease
        finally:
            await self.release(lease)
