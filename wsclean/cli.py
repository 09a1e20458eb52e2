"""wsclean CLI application - main entry point."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import load_settings
from .dispatcher import Command, CommandResult, dispatch
from .eviction import available_percentage
from .exceptions import WsCleanError
from .fs import get_disk_stat
from .registry import Registry

app = typer.Typer(
    name="wsclean",
    help="Track workspace disk usage and evict workspaces to keep the disk usable",
    add_completion=False,
)

# Command output and errors go to stdout; logging goes to stderr
console = Console()

WORKSPACE_HELP = "Workspace root directory (defaults to $WORKSPACE)"


def _print_result(result: CommandResult) -> None:
    """Print a command result and exit non-zero on failure.

    Raises:
        typer.Exit: If the command failed
    """
    if not result.ok:
        console.print(f"[red]Error:[/red] {escape(result.message)}")
        raise typer.Exit(result.exit_code)

    for report in result.reports:
        line = f"[cyan]{escape(report.strategy)}[/cyan]: evicted {len(report.evicted)}"
        if report.evicted:
            line += f" ({escape(', '.join(report.evicted))})"
        if report.available_before is not None:
            line += f", available {report.available_before}% -> {report.available_after}%"
        console.print(line)
        if report.failed_removals:
            console.print(
                f"[yellow]Warning: could not delete {escape(', '.join(report.failed_removals))}; "
                "registry entries removed anyway[/yellow]"
            )

    if result.message:
        console.print(f"[green]✓[/green] {escape(result.message)}")


def _run(**overrides) -> None:
    """Load settings (CLI values override the environment) and dispatch."""
    try:
        settings = load_settings(**overrides)
    except WsCleanError as e:
        result = CommandResult.failure(overrides.get("command"), e)
    else:
        result = dispatch(settings)
    _print_result(result)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Track workspace disk usage and evict workspaces to keep the disk usable.

    Without a subcommand, the command is taken from the COMMAND environment
    variable and every parameter from its environment variable (WORKSPACE,
    KEY, CLEAN_STRATEGY, PERCENTAGE_TO_KEEP_AVAILABLE, UNUSED_N_DAYS).
    """
    if ctx.invoked_subcommand is None:
        _run()


@app.command()
def init(
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help=WORKSPACE_HELP),
):
    """Create an empty registry, replacing any existing one."""
    _run(command=Command.INIT.value, workspace=workspace)


@app.command()
def update(
    key: Optional[str] = typer.Argument(None, help="Workspace subdirectory to measure (defaults to $KEY)"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help=WORKSPACE_HELP),
):
    """Recompute a workspace's size and mark it as used now."""
    _run(command=Command.UPDATE.value, workspace=workspace, key=key)


@app.command()
def clean(
    strategy: Optional[str] = typer.Option(
        None, "--strategy", "-s", help="Colon-separated strategies: perecentage, unused (defaults to $CLEAN_STRATEGY)"
    ),
    percentage: Optional[int] = typer.Option(
        None, "--percentage", "-p", help="Percentage of the disk to keep available ($PERCENTAGE_TO_KEEP_AVAILABLE)"
    ),
    unused_days: Optional[int] = typer.Option(
        None, "--unused-days", "-d", help="Evict workspaces unused for this many days ($UNUSED_N_DAYS)"
    ),
    formula: Optional[str] = typer.Option(
        None, "--formula", help="Availability formula: direct or legacy ($AVAILABILITY_FORMULA)"
    ),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help=WORKSPACE_HELP),
):
    """Evict workspaces using one or more chained strategies."""
    _run(
        command=Command.CLEAN.value,
        workspace=workspace,
        clean_strategy=strategy,
        percentage_to_keep_available=percentage,
        unused_n_days=unused_days,
        availability_formula=formula,
    )


@app.command("list")
def list_workspaces(
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help=WORKSPACE_HELP),
):
    """List tracked workspaces in eviction order."""
    try:
        settings = load_settings(workspace=workspace)
        root = Path(settings.require("workspace"))
        registry = Registry.load(root)
        disk = get_disk_stat(root)
    except WsCleanError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if not registry.workspaces:
        console.print("[yellow]No workspaces tracked.[/yellow]")
    else:
        table = Table(title=f"Workspaces ({len(registry.workspaces)} total, {registry.total_size:,} bytes)")
        table.add_column("Key", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Last Used", style="dim")
        table.add_column("Created", style="dim")

        for ws in registry.sorted_by_last_used():
            table.add_row(
                escape(ws.key),
                f"{ws.size:,} bytes",
                ws.last_used.isoformat(timespec="seconds"),
                ws.creation_time.isoformat(timespec="seconds"),
            )
        console.print(table)

    available = available_percentage(disk, settings.availability_formula)
    console.print(f"Disk: {disk.free_bytes:,} of {disk.total_bytes:,} bytes free ({available}% available)")


@app.command()
def version():
    """Show version information."""
    from wsclean import __version__

    console.print(f"wsclean version {__version__}")
