from __future__ import annotations

from typing import Callable, Optional

import typer

from ....agents.launcher import LaunchOptions
from ....core.exceptions import OperatorError
from ....tickets.models import Ticket
from ....web.app_state import OperatorContext
from .utils import describe_error, require_launch_prerequisites


def _ticket_line(ticket: Ticket, progress: str = "") -> str:
    line = (
        f"{ticket.id:<12} {ticket.ticket_type:<6} {ticket.priority:<12} "
        f"{ticket.status:<12} {ticket.project:<12} {ticket.summary}"
    )
    return f"{line}  {progress}" if progress else line


def register_queue_commands(
    app: typer.Typer,
    *,
    require_context: Callable[[typer.Context], OperatorContext],
    raise_exit: Callable,
) -> None:
    @app.command("queue")
    def queue(
        ctx: typer.Context,
        show_all: bool = typer.Option(
            False, "--all", help="Include in-progress and completed tickets"
        ),
    ) -> None:
        """List queued tickets in launch order."""
        context = require_context(ctx)
        tickets = context.queue.list_by_priority()
        if show_all:
            tickets += context.queue.list_in_progress() + context.queue.list_completed()
        if not tickets:
            typer.echo("Queue is empty.")
            return
        for ticket in tickets:
            typer.echo(_ticket_line(ticket, context.engine.format_progress(ticket)))

    @app.command("launch")
    def launch(
        ctx: typer.Context,
        ticket_id: Optional[str] = typer.Argument(
            None, help="Ticket id; defaults to the next ticket in the queue"
        ),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
        provider: Optional[str] = typer.Option(None, "--provider", help="LLM tool to use"),
        model: Optional[str] = typer.Option(None, "--model", help="Model name or alias"),
        docker: Optional[bool] = typer.Option(
            None, "--docker/--no-docker", help="Run the session inside docker"
        ),
        yolo: Optional[bool] = typer.Option(
            None, "--yolo/--no-yolo", help="Skip the tool's permission prompts"
        ),
    ) -> None:
        """Claim a ticket and start its agent session in tmux."""
        context = require_context(ctx)
        require_launch_prerequisites(context)
        if ticket_id is None:
            owned = {agent.ticket_id for agent in context.supervisor.snapshot()}
            ticket = context.queue.next_ticket(exclude_ids=owned)
            if ticket is None:
                typer.echo("Queue is empty.")
                return
            ticket_id = ticket.id
        else:
            ticket = context.queue.find_ticket(ticket_id)
            if ticket is None:
                raise_exit(f"Ticket not found: {ticket_id}")
        if not yes:
            typer.confirm(
                f"Launch {ticket.id} ({ticket.ticket_type}) for project {ticket.project}?",
                abort=True,
            )
        options = LaunchOptions.from_config(
            context.config, provider=provider, model=model, docker=docker, yolo=yolo
        )
        try:
            prepared = context.supervisor.launch_ticket(ticket_id, options)
        except OperatorError as exc:
            raise_exit(describe_error(exc), cause=exc)
        typer.echo(
            f"Launched {prepared.ticket_id} step {prepared.step} with {prepared.provider}"
            f" in tmux session {prepared.session_name}"
        )
        typer.echo(f"Attach with: tmux attach -t {prepared.session_name}")

    @app.command("pause")
    def pause(ctx: typer.Context) -> None:
        """Stop claiming new tickets; running agents continue."""
        require_context(ctx).supervisor.pause()
        typer.echo("Queue paused.")

    @app.command("resume")
    def resume(ctx: typer.Context) -> None:
        """Resume claiming tickets."""
        require_context(ctx).supervisor.resume()
        typer.echo("Queue resumed.")
