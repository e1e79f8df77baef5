"""Unit tests for RepmgrReplicationManager with a scripted command runner."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
from pydantic import SecretStr

from pgwarden.config import PostgresProbeSettings, RepmgrSettings
from pgwarden.core.enums import NodeRole
from pgwarden.core.exceptions import QueryTimeoutError, ToolUnavailableError
from pgwarden.replication.manager import RepmgrReplicationManager
from pgwarden.replication.runner import CommandResult
from tests.unit.fakes import FakeProbe, ManualClock


class ScriptedRunner:
    """Records argv and answers by the first word after the binary's options."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.returncodes: dict[str, int] = {}
        self.stdout: dict[str, str] = {}
        self.raises: dict[str, Exception] = {}
        self.before: dict[str, Callable[[], None]] = {}

    @staticmethod
    def _key(argv: Sequence[str]) -> str:
        if "stop" in argv and "immediate" in argv:
            return "stop-immediate"
        for word in ("promote", "clone", "register", "cleanup", "show", "event", "status", "stop", "start"):
            if word in argv:
                return word
        return Path(argv[0]).name

    async def run(self, argv: Sequence[str], *, timeout: float, stdin: str | None = None) -> CommandResult:
        self.calls.append(tuple(argv))
        key = self._key(argv)
        if key in self.before:
            self.before[key]()
        if key in self.raises:
            raise self.raises[key]
        return CommandResult(argv=tuple(argv), returncode=self.returncodes.get(key, 0), stdout=self.stdout.get(key, ""))

    def ran(self, key: str) -> list[tuple[str, ...]]:
        return [argv for argv in self.calls if self._key(argv) == key]


@pytest.fixture
def pgdata(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe("pg-2")


@pytest.fixture
def manager(pgdata: Path, runner: ScriptedRunner, probe: FakeProbe, clock: ManualClock) -> RepmgrReplicationManager:
    return RepmgrReplicationManager(
        RepmgrSettings(pgdata=pgdata, config_file=Path("/etc/repmgr.conf")),
        PostgresProbeSettings(),
        "pg-2",
        probe,
        runner=runner,  # type: ignore[arg-type]
        clock=clock,
    )


class TestQueries:
    """Tests for topology, event and role queries."""

    async def test_show_topology_on_remote_host(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner
    ) -> None:
        """Test a remote topology query connects as the replication user to that host."""
        runner.stdout["show"] = "table"

        assert await manager.show_topology("pg-1") == "table"
        assert runner.calls[0] == (
            "repmgr", "-h", "pg-1", "-U", "repmgr", "-d", "repmgr",
            "-f", "/etc/repmgr.conf", "cluster", "show", "--compact",
        )  # fmt: skip

    async def test_failed_query_returns_empty(self, manager: RepmgrReplicationManager, runner: ScriptedRunner) -> None:
        runner.returncodes["event"] = 1
        runner.stdout["event"] = "partial"

        assert await manager.recent_events(5) == ""
        assert "--limit=5" in runner.calls[0]

    async def test_local_role(self, manager: RepmgrReplicationManager, runner: ScriptedRunner) -> None:
        runner.stdout["status"] = "Node \"pg-2\":\n\tRole: standby\n"

        assert await manager.local_role() == NodeRole.STANDBY

    async def test_local_role_unknown_when_tool_missing(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner
    ) -> None:
        runner.raises["status"] = ToolUnavailableError("repmgr")

        assert await manager.local_role() == NodeRole.UNKNOWN


class TestOperations:
    """Tests for operations reporting success as a boolean."""

    async def test_promote(self, manager: RepmgrReplicationManager, runner: ScriptedRunner) -> None:
        assert await manager.promote() is True
        assert runner.calls[0][-3:] == ("standby", "promote", "--log-to-file")

    @pytest.mark.parametrize(
        "failure",
        [QueryTimeoutError("repmgr standby promote", 60), ToolUnavailableError("repmgr")],
    )
    async def test_operation_errors_are_false(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner, failure: Exception
    ) -> None:
        """Test a timeout or missing tool reports failure instead of raising."""
        runner.raises["promote"] = failure

        assert await manager.promote() is False

    async def test_nonzero_exit_is_false(self, manager: RepmgrReplicationManager, runner: ScriptedRunner) -> None:
        runner.returncodes["register"] = 1

        assert await manager.register_standby(force=True) is False
        assert runner.calls[0][-3:] == ("standby", "register", "--force")

    async def test_cleanup_runs_against_primary(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner
    ) -> None:
        assert await manager.cleanup_node(3, "pg-1") is True
        argv = runner.calls[0]
        assert argv[1:3] == ("-h", "pg-1")
        assert argv[-3:] == ("cluster", "cleanup", "--node-id=3")


class TestResync:
    """Tests for rewind and clone sequences."""

    async def test_rewind_stops_rewinds_and_starts(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner, pgdata: Path
    ) -> None:
        """Verify a rewind stops the running database, rewinds from the source and starts it again.

        Arrange
        -------
        - Local database alive; every command succeeds

        Act
        ---
        - Rewind from pg-1

        Assert
        ------
        - Commands run in order stop, pg_rewind, start; source conninfo targets pg-1
        - Before the start, the node is marked as a standby streaming from pg-1
        """
        conf = pgdata / "postgresql.auto.conf"
        at_start: list[tuple[bool, str]] = []
        runner.before["start"] = lambda: at_start.append(((pgdata / "standby.signal").exists(), conf.read_text()))

        assert await manager.rewind("pg-1") is True

        keys = [runner._key(argv) for argv in runner.calls]
        assert keys == ["stop", "pg_rewind", "start"]
        rewind = runner.ran("pg_rewind")[0]
        assert f"--target-pgdata={pgdata}" in rewind
        assert "--write-recovery-conf" in rewind
        assert any(arg.startswith("--source-server=") and "host=pg-1" in arg for arg in rewind)
        [(standby_signal, auto_conf)] = at_start
        assert standby_signal is True
        assert "primary_conninfo = 'user=repmgr" in auto_conf
        assert "host=pg-1" in auto_conf

    async def test_rewind_not_started_without_upstream(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner, pgdata: Path
    ) -> None:
        """Test a rewound node that cannot be pointed at the source is left stopped."""
        runner.before["pg_rewind"] = pgdata.rmdir

        assert await manager.rewind("pg-1") is False
        assert runner.ran("start") == []

    async def test_rewind_failure_does_not_start(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner
    ) -> None:
        runner.returncodes["pg_rewind"] = 1

        assert await manager.rewind("pg-1") is False
        assert runner.ran("start") == []

    async def test_failed_fast_stop_escalates(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner
    ) -> None:
        """Test a failed fast shutdown is followed by an immediate shutdown."""
        runner.returncodes["stop"] = 1

        await manager.rewind("pg-1")

        assert len(runner.ran("stop-immediate")) == 1

    async def test_clone_empties_data_directory(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner, probe: FakeProbe, pgdata: Path
    ) -> None:
        """Test a clone wipes the data directory, clones, starts and re-registers."""
        probe.alive["pg-2"] = False
        (pgdata / "base").mkdir()
        (pgdata / "PG_VERSION").write_text("16")

        assert await manager.clone("pg-1") is True

        assert list(pgdata.iterdir()) == []
        keys = [runner._key(argv) for argv in runner.calls]
        assert keys == ["clone", "start", "register"]
        assert ("-p", "5432") == runner.ran("clone")[0][3:5]

    async def test_clone_waits_for_source(
        self, manager: RepmgrReplicationManager, runner: ScriptedRunner, probe: FakeProbe, clock: ManualClock
    ) -> None:
        """Test clone gives up when the source never accepts connections."""
        probe.alive.update({"pg-2": False, "pg-1": False})

        assert await manager.clone("pg-1") is False
        assert runner.ran("clone") == []
        assert len(clock.sleeps) == 30


class TestPointUpstream:
    """Tests for rewriting primary_conninfo."""

    async def test_replaces_existing_conninfo(self, manager: RepmgrReplicationManager, pgdata: Path) -> None:
        """Verify only the primary_conninfo line is replaced and other settings survive.

        Arrange
        -------
        - postgresql.auto.conf with a stale primary_conninfo and an unrelated setting

        Act
        ---
        - Point upstream at pg-1

        Assert
        ------
        - One primary_conninfo naming pg-1; the unrelated setting kept; mode 0600
        """
        conf = pgdata / "postgresql.auto.conf"
        conf.write_text("primary_conninfo = 'host=pg-3'\nwal_keep_size = '1GB'\n")

        assert await manager.point_upstream_at("pg-1") is True

        lines = conf.read_text().splitlines()
        assert lines[0] == "wal_keep_size = '1GB'"
        assert lines[1].startswith("primary_conninfo = 'user=repmgr")
        assert "host=pg-1" in lines[1]
        assert len(lines) == 2
        assert conf.stat().st_mode & 0o777 == 0o600

    async def test_password_survives_config_quoting(
        self, pgdata: Path, runner: ScriptedRunner, probe: FakeProbe, clock: ManualClock
    ) -> None:
        """Verify a password with a quote and a backslash reads back as the exact conninfo.

        Arrange
        -------
        - Replication password ``it's\\x``

        Act
        ---
        - Point upstream at pg-1

        Assert
        ------
        - The written line is one valid configuration string token
        - Unescaping it yields the libpq conninfo unchanged
        """
        postgres = PostgresProbeSettings(password=SecretStr("it's\\x"))
        manager = RepmgrReplicationManager(
            RepmgrSettings(pgdata=pgdata, config_file=Path("/etc/repmgr.conf")),
            postgres,
            "pg-2",
            probe,
            runner=runner,  # type: ignore[arg-type]
            clock=clock,
        )

        assert await manager.point_upstream_at("pg-1") is True

        line = (pgdata / "postgresql.auto.conf").read_text().splitlines()[-1]
        match = re.fullmatch(r"primary_conninfo = '((?:[^'\\\n]|\\.|'')*)'", line)
        assert match is not None
        value = re.sub(r"''|\\(.)", lambda m: m.group(1) or "'", match.group(1))
        assert value == postgres.replication_conninfo("pg-1", "pg-2")
        assert "password='it\\'s\\\\x'" in value

    async def test_unwritable_directory_is_false(self, manager: RepmgrReplicationManager, pgdata: Path) -> None:
        """Test a missing data directory reports failure."""
        pgdata.rmdir()

        assert await manager.point_upstream_at("pg-1") is False
