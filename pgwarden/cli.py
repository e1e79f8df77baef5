"""
The ``pgwarden`` command: node agent and repmgr hook commands.

Example::

    pgwarden run
    pgwarden status --json
    pgwarden promote-guard          # repmgr promote_command
    pgwarden failover-validate      # repmgr failover_validation_command
    pgwarden publish-state
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .agent.factory import build_components
from .config import WardenSettings
from .core.exceptions import TopologyAmbiguousError
from .logger import LogLevel, bind_context, configure_logging
from .topology.health import HealthReport

if TYPE_CHECKING:
    from .agent.factory import Components

app = typer.Typer(
    name="pgwarden",
    help="PostgreSQL/repmgr cluster coordination agent.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pgwarden {__version__}")
        raise typer.Exit()


@app.callback()
def main_options(
    ctx: typer.Context,
    log_level: str | None = typer.Option(None, "--log-level", help="Override PGWARDEN_LOG_LEVEL"),
    version: bool | None = typer.Option(
        None, "--version", "-V", help="Show version and exit.", callback=_version_callback, is_eager=True
    ),
) -> None:
    """Coordinate promotion, role alignment and metadata cleanup for one node."""
    if log_level and log_level.upper() not in _LOG_LEVELS:
        raise typer.BadParameter(f"expected one of {', '.join(_LOG_LEVELS)}", param_hint="--log-level")
    ctx.obj = {"log_level": log_level.upper() if log_level else None}


def _execute[T](ctx: typer.Context, component: str, func: Callable[[Components], Awaitable[T]]) -> T:
    settings = WardenSettings()
    level: LogLevel | None = (ctx.obj or {}).get("log_level")
    configure_logging(level=level)
    bind_context(node=settings.node.name, component=component)

    async def _main() -> T:
        async with build_components(settings) as components:
            return await func(components)

    return asyncio.run(_main())


@app.command("run")
def run(ctx: typer.Context) -> None:
    """Run the node control loop until SIGINT/SIGTERM."""

    async def _run(components: Components) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, components.loop.stop)
        await components.loop.run()

    _execute(ctx, "agent", _run)


@app.command("status")
def status(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Print the snapshot as JSON"),
) -> None:
    """Show one topology snapshot with its health and resolved primary."""

    async def _status(components: Components) -> int:
        try:
            snapshot = await components.oracle.get_snapshot()
        except TopologyAmbiguousError as e:
            err_console.print(f"[bold red]Ambiguous topology:[/bold red] primaries {', '.join(e.primaries)}")
            snapshot = e.snapshot
            exit_code = 2
        else:
            exit_code = 0

        if snapshot is None:
            err_console.print("[yellow]Cluster topology unavailable[/yellow]")
            return 1

        report = HealthReport.from_snapshot(snapshot)
        if json_out:
            console.print_json(snapshot.model_dump_json())
            return exit_code

        table = Table(title=f"Cluster: {report.level} ({report.online}/{report.total} online)")
        table.add_column("ID", justify="right")
        table.add_column("Name", style="bold")
        table.add_column("Role")
        table.add_column("Status")
        for record in snapshot.nodes:
            style = "green" if record.is_running else "red"
            table.add_row(str(record.id), record.name, str(record.role), f"[{style}]{record.status}[/{style}]")
        console.print(table)
        console.print(f"Primary: [bold]{snapshot.primary_name or '-'}[/bold]")
        return exit_code

    raise typer.Exit(code=_execute(ctx, "status", _status))


@app.command("promote-guard")
def promote_guard(ctx: typer.Context) -> None:
    """Run the promotion fencing gate for this node; exit 0 when promoted."""

    async def _promote(components: Components) -> bool:
        outcome = await components.gate.attempt_promotion()
        console.print(str(outcome) + (f": {outcome.detail}" if outcome.detail else ""))
        return outcome.promoted

    raise typer.Exit(code=0 if _execute(ctx, "promote-guard", _promote) else 1)


@app.command("failover-validate")
def failover_validate(ctx: typer.Context) -> None:
    """Exit 0 when the relaxed failover quorum holds (fails open when topology is unknown)."""

    async def _validate(components: Components) -> bool:
        return await components.quorum.allows_failover()

    allowed = _execute(ctx, "failover-validate", _validate)
    console.print("failover allowed" if allowed else "failover blocked: quorum not met")
    raise typer.Exit(code=0 if allowed else 1)


@app.command("publish-state")
def publish_state(
    ctx: typer.Context,
    only_if_changed: bool = typer.Option(False, "--only-if-changed", help="Skip the write when content is unchanged"),
) -> None:
    """Publish the current snapshot to the cluster state file."""

    async def _publish(components: Components) -> int:
        try:
            snapshot = await components.oracle.get_snapshot()
        except TopologyAmbiguousError as e:
            err_console.print(f"[bold red]Refusing to publish ambiguous topology:[/bold red] {', '.join(e.primaries)}")
            return 2
        if snapshot is None:
            err_console.print("[yellow]Cluster topology unavailable; nothing published[/yellow]")
            return 1

        if only_if_changed and not components.store.publish_if_changed(snapshot):
            console.print("cluster state unchanged")
            return 0
        if not only_if_changed:
            components.store.publish(snapshot)
        console.print(f"cluster state written to {components.store.path}")
        return 0

    raise typer.Exit(code=_execute(ctx, "publish-state", _publish))


def main() -> None:
    app()
