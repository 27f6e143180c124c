from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from ... import __version__
from ...core.logging_utils import log_event
from ...web.app_state import OperatorContext
from .commands import (
    CliOptions,
    raise_exit,
    register_agent_commands,
    register_api_commands,
    register_queue_commands,
    register_ticket_commands,
    require_context,
)
from .commands.utils import require_launch_prerequisites

logger = logging.getLogger("ticket_operator.cli")

app = typer.Typer(add_completion=False, invoke_without_command=True)


def _version_callback(value: bool) -> None:
    if not value:
        return
    typer.echo(f"ticket-operator {__version__}")
    raise typer.Exit(code=0)


def _print_status(context: OperatorContext) -> None:
    counts = context.queue.counts()
    typer.echo(
        f"Queue: {counts.get('queued', 0)} queued, {counts.get('in_progress', 0)} in progress,"
        f" {counts.get('completed', 0)} completed"
    )
    agents = context.supervisor.snapshot()
    typer.echo(f"Agents: {len(agents)}/{context.supervisor.max_agents}")
    if context.supervisor.paused:
        typer.echo("Queue is paused; run `operator resume` to claim tickets.")


def _supervise(ctx: typer.Context) -> None:
    context = require_context(ctx)
    require_launch_prerequisites(context)
    _print_status(context)
    typer.echo("Supervising agents; press Ctrl+C to stop.")
    try:
        asyncio.run(context.supervisor.run_forever())
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "supervisor.interrupted")
        typer.echo("Stopped. Running sessions stay attached in tmux.")


@app.callback()
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
    workspace: Optional[Path] = typer.Option(
        None, "--workspace", "-w", help="Workspace root (defaults to the current directory)"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a workspace config.toml"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Also log to the console"),
) -> None:
    ctx.obj = CliOptions(workspace=workspace, config_path=config_path, verbose=verbose)
    # With no subcommand the CLI becomes the long-running supervisor.
    if ctx.invoked_subcommand is None:
        _supervise(ctx)


@app.command("status")
def status(ctx: typer.Context) -> None:
    """Show queue counts and agent capacity."""
    _print_status(require_context(ctx))


def main() -> None:
    """Entrypoint for CLI execution."""
    app()


register_queue_commands(app, require_context=require_context, raise_exit=raise_exit)
register_agent_commands(app, require_context=require_context)
register_ticket_commands(app, require_context=require_context, raise_exit=raise_exit)
register_api_commands(app, require_context=require_context)
