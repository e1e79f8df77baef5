"""Redis-backed leases for clusters without a shared lock volume.

Acquisition is ``SET key value NX PX ttl``: Redis expires the key itself,
so a crashed holder's lease disappears after ``ttl`` without a reclaim
step. Release is a compare-and-delete script keyed on the stored value,
so a holder can never remove a lease that was reclaimed by someone else.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError
from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.connection import SSLConnection
from redis.exceptions import RedisError

from ..logger import get_logger
from .base import Lease

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.clock import Clock

logger: BoundLogger = get_logger(__name__)

_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisConnectionSettings(BaseModel):
    """Redis connection settings."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, ge=1, le=65535, description="Redis port")
    db: int = Field(default=0, ge=0, le=15, description="Redis database number")
    username: str | None = Field(default=None, description="Redis username for ACL (Redis 6+)")
    password: SecretStr | None = Field(default=None, description="Redis password for authentication")


class RedisSSLSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False, description="Enable SSL/TLS connections")
    ssl_ca_certs: str | None = Field(default=None, description="Path to CA certificate for SSL verification")


class RedisDriverSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    socket_timeout: float = Field(default=2.0, ge=0.1, le=60.0, description="Socket timeout in seconds")
    socket_connect_timeout: float = Field(default=5.0, ge=0.1, le=60.0)
    max_connections: int = Field(default=4, ge=1, le=100, description="A node agent needs very few connections")
    decode_responses: bool = Field(default=True)


class RedisConfig(BaseModel):
    """Redis configuration for the lease backend."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    connection: RedisConnectionSettings = Field(default_factory=RedisConnectionSettings)
    ssl: RedisSSLSettings = Field(default_factory=RedisSSLSettings)
    driver: RedisDriverSettings = Field(default_factory=RedisDriverSettings)
    key_prefix: str = Field(default="pgwarden:lease:", description="Prefix for lease keys")

    def get_connection_pool_kwargs(self) -> dict[str, Any]:
        """Get kwargs for redis.asyncio.ConnectionPool.

        Returns
        -------
        dict[str, Any]
            Kwargs ready for ConnectionPool(**kwargs).
        """
        password = self.connection.password.get_secret_value() if self.connection.password else None

        kwargs: dict[str, Any] = {
            **self.connection.model_dump(exclude={"password"}),
            "password": password,
            **self.driver.model_dump(),
        }

        if self.ssl.enabled:
            kwargs["connection_class"] = SSLConnection
            if self.ssl.ssl_ca_certs:
                kwargs["ssl_ca_certs"] = self.ssl.ssl_ca_certs

        return kwargs


class RedisClient:
    """Connection pool shared by the lease backend.

    ``connect`` pings the server once; if the ping fails the pool is torn
    down again before the error reaches the caller.
    """

    def __init__(self, config: RedisConfig) -> None:
        self.config = config
        self._pool: ConnectionPool | None = None
        self._redis: Redis | None = None

    async def connect(self) -> None:
        if self._redis is not None:
            return

        conn = self.config.connection
        self._pool = ConnectionPool(**self.config.get_connection_pool_kwargs())
        self._redis = Redis(connection_pool=self._pool)
        try:
            await self._redis.ping()  # type: ignore[misc]
        except (RedisError, OSError) as e:
            logger.error("Lease store unreachable", host=conn.host, port=conn.port, error=str(e))
            await self.close()
            raise
        logger.info("Lease store connected", host=conn.host, port=conn.port, db=conn.db, ssl=self.config.ssl.enabled)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Lease store client is not connected")
        return self._redis


class RedisLeaseBackend:
    def __init__(self, client: RedisClient, clock: Clock, *, key_prefix: str | None = None) -> None:
        self._client = client
        self._clock = clock
        self._prefix = key_prefix if key_prefix is not None else client.config.key_prefix

    def _key(self, resource: str) -> str:
        return f"{self._prefix}{resource}"

    async def try_acquire(self, resource: str, holder: str, ttl: float) -> Lease | None:
        lease = Lease(resource=resource, holder=holder, acquired_at=self._clock.now(), ttl=ttl)
        acquired = await self._client.redis.set(
            self._key(resource),
            lease.model_dump_json(),
            nx=True,
            px=max(1, int(ttl * 1000)),
        )
        return lease if acquired else None

    async def release(self, lease: Lease) -> bool:
        deleted = await self._client.redis.eval(  # type: ignore[misc]
            _RELEASE_SCRIPT,
            1,
            self._key(lease.resource),
            lease.model_dump_json(),
        )
        return bool(deleted)

    async def current(self, resource: str) -> Lease | None:
        raw = await self._client.redis.get(self._key(resource))
        if raw is None:
            return None
        try:
            return Lease.model_validate_json(raw)
        except ValidationError:
            logger.warning("Unparseable lease value", resource=resource)
            return None

    async def is_expired(self, resource: str) -> bool:
        return not await self._client.redis.exists(self._key(resource))

