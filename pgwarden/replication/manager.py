"""Replication manager operations invoked by the control plane.

The core never reimplements replication: it decides when to promote, rewind,
clone, re-point or re-register, and delegates each of those to repmgr and the
PostgreSQL binaries. Every operation is one blocking call with a timeout that
reports success as a boolean; the topology and event queries return raw text
for the parsers.
"""

from __future__ import annotations

import os
import shutil
from typing import TYPE_CHECKING, Protocol

from ..core.clock import Clock, SystemClock
from ..core.enums import NodeRole
from ..core.exceptions import QueryTimeoutError, ToolUnavailableError
from ..logger import get_logger
from ..topology.parser import parse_node_status_role
from .runner import CommandRunner

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from ..config import PostgresProbeSettings, RepmgrSettings
    from .probe import DatabaseProbe

logger = get_logger(__name__)


class ReplicationManager(Protocol):
    async def show_topology(self, host: str | None = None) -> str: ...

    async def recent_events(self, limit: int = 10) -> str: ...

    async def local_role(self) -> NodeRole: ...

    async def promote(self) -> bool: ...

    async def rewind(self, source_host: str) -> bool: ...

    async def clone(self, source_host: str) -> bool: ...

    async def stop_database(self) -> bool: ...

    async def start_database(self) -> bool: ...

    async def point_upstream_at(self, host: str) -> bool: ...

    async def register_standby(self, *, force: bool = True) -> bool: ...

    async def cleanup_node(self, node_id: int, primary_host: str) -> bool: ...


class RepmgrReplicationManager:
    def __init__(
        self,
        repmgr: RepmgrSettings,
        postgres: PostgresProbeSettings,
        node_name: str,
        probe: DatabaseProbe,
        *,
        runner: CommandRunner | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._repmgr = repmgr
        self._postgres = postgres
        self._node_name = node_name
        self._probe = probe
        self._runner = runner or CommandRunner(prefix=repmgr.run_as)
        self._clock = clock or SystemClock()

    def _repmgr_argv(self, *args: str, host: str | None = None, port: int | None = None) -> list[str]:
        argv = [self._repmgr.binary]
        if host:
            argv += ["-h", host]
            if port:
                argv += ["-p", str(port)]
            argv += ["-U", self._postgres.replication_user, "-d", self._postgres.replication_database]
        argv += ["-f", str(self._repmgr.config_file), *args]
        return argv

    async def _succeeded(self, operation: str, argv: Sequence[str], *, timeout: float | None = None) -> bool:
        try:
            result = await self._runner.run(argv, timeout=timeout or self._repmgr.command_timeout)
        except (ToolUnavailableError, QueryTimeoutError) as e:
            logger.error("External operation could not complete", operation=operation, error=str(e))
            return False
        if not result.ok:
            logger.error(
                "External operation failed",
                operation=operation,
                returncode=result.returncode,
                stderr=result.stderr.strip()[-500:] or None,
            )
        return result.ok

    async def _output(self, argv: Sequence[str]) -> str:
        result = await self._runner.run(argv, timeout=self._repmgr.command_timeout)
        return result.stdout if result.ok else ""

    async def show_topology(self, host: str | None = None) -> str:
        return await self._output(self._repmgr_argv("cluster", "show", "--compact", host=host))

    async def recent_events(self, limit: int = 10) -> str:
        return await self._output(self._repmgr_argv("cluster", "event", f"--limit={limit}"))

    async def local_role(self) -> NodeRole:
        try:
            return parse_node_status_role(await self._output(self._repmgr_argv("node", "status")))
        except (ToolUnavailableError, QueryTimeoutError) as e:
            logger.warning("Could not read local node status", error=str(e))
            return NodeRole.UNKNOWN

    async def promote(self) -> bool:
        return await self._succeeded("promote", self._repmgr_argv("standby", "promote", "--log-to-file"))

    async def stop_database(self) -> bool:
        pg_ctl = [self._repmgr.pg_ctl, "-D", str(self._repmgr.pgdata)]
        return await self._succeeded("stop", [*pg_ctl, "-m", "fast", "-w", "stop"])

    async def _safe_stop(self) -> None:
        if not await self._probe.is_alive():
            return
        if await self.stop_database():
            return
        pg_ctl = [self._repmgr.pg_ctl, "-D", str(self._repmgr.pgdata)]
        await self._succeeded("stop-immediate", [*pg_ctl, "-m", "immediate", "-w", "stop"])

    async def start_database(self) -> bool:
        pg_ctl = [self._repmgr.pg_ctl, "-D", str(self._repmgr.pgdata)]
        return await self._succeeded("start", [*pg_ctl, "-w", "start"])

    async def rewind(self, source_host: str) -> bool:
        logger.info("Attempting incremental resynchronization", source=source_host)
        await self._safe_stop()
        conninfo = self._postgres.replication_conninfo(source_host, self._node_name)
        argv = [
            self._repmgr.pg_rewind,
            f"--target-pgdata={self._repmgr.pgdata}",
            f"--source-server={conninfo}",
            "--write-recovery-conf",
        ]
        if not await self._succeeded("rewind", argv, timeout=self._repmgr.resync_timeout):
            return False

        # the rewound data directory is a copy of a primary; it must restart as a standby of it
        if not self._mark_standby() or not await self.point_upstream_at(source_host):
            return False
        logger.info("Incremental resynchronization completed", source=source_host)
        return await self.start_database()

    def _mark_standby(self) -> bool:
        signal = self._repmgr.pgdata / "standby.signal"
        try:
            signal.touch(mode=0o600, exist_ok=True)
        except OSError as e:
            logger.error("Failed to write standby signal", path=str(signal), error=str(e))
            return False
        return True

    async def _wait_for_source(self, host: str, attempts: int = 30) -> bool:
        for _ in range(attempts):
            if await self._probe.is_alive(host):
                return True
            await self._clock.sleep(1.0)
        return False

    @staticmethod
    def _empty_directory(path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)
        for child in path.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()

    async def clone(self, source_host: str) -> bool:
        logger.info("Full resynchronization initiated", source=source_host)
        await self._safe_stop()
        if not await self._wait_for_source(source_host):
            logger.error("Clone source is not accepting connections", source=source_host)
            return False

        self._empty_directory(self._repmgr.pgdata)
        argv = self._repmgr_argv(
            "standby",
            "clone",
            "--force",
            "-D",
            str(self._repmgr.pgdata),
            host=source_host,
            port=self._postgres.port,
        )
        if not await self._succeeded("clone", argv, timeout=self._repmgr.resync_timeout):
            return False

        await self.start_database()
        await self.register_standby(force=True)
        logger.info("Full resynchronization and registration completed", source=source_host)
        return True

    async def point_upstream_at(self, host: str) -> bool:
        conf = self._repmgr.pgdata / "postgresql.auto.conf"
        try:
            lines = conf.read_text().splitlines() if conf.exists() else []
            kept = [line for line in lines if not line.lstrip().startswith("primary_conninfo")]
            conninfo = self._postgres.replication_conninfo(host, self._node_name)
            quoted = conninfo.replace("\\", "\\\\").replace("'", "''")
            kept.append(f"primary_conninfo = '{quoted}'")

            tmp = conf.with_name(f"{conf.name}.tmp")
            tmp.write_text("\n".join(kept) + "\n")
            os.chmod(tmp, 0o600)
            tmp.replace(conf)
        except OSError as e:
            logger.error("Failed to rewrite upstream connection", host=host, path=str(conf), error=str(e))
            return False
        return True

    async def register_standby(self, *, force: bool = True) -> bool:
        args = ["standby", "register"] + (["--force"] if force else [])
        return await self._succeeded("register", self._repmgr_argv(*args))

    async def cleanup_node(self, node_id: int, primary_host: str) -> bool:
        argv = self._repmgr_argv("cluster", "cleanup", f"--node-id={node_id}", host=primary_host)
        return await self._succeeded("cleanup", argv)
