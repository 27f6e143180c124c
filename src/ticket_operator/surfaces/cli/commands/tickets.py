from __future__ import annotations

from typing import Callable, Optional

import typer

from ....core.exceptions import OperatorError
from ....notifications import NotificationEvent, NotificationEventType
from ....web.app_state import OperatorContext
from .utils import describe_error

SEVERITIES = ("low", "medium", "high", "critical")


def register_ticket_commands(
    app: typer.Typer,
    *,
    require_context: Callable[[typer.Context], OperatorContext],
    raise_exit: Callable,
) -> None:
    @app.command("alert")
    def alert(
        ctx: typer.Context,
        source: str = typer.Option(..., "--source", help="System that raised the alert"),
        message: str = typer.Option(..., "--message", help="Alert text"),
        severity: str = typer.Option("medium", "--severity", help="low|medium|high|critical"),
        project: Optional[str] = typer.Option(None, "--project", help="Affected project"),
    ) -> None:
        """Create an investigation ticket from an external alert."""
        if severity.lower() not in SEVERITIES:
            raise_exit(f"Unknown severity {severity!r}; expected one of {', '.join(SEVERITIES)}")
        context = require_context(ctx)
        try:
            ticket = context.creator.create_investigation(
                source, message, severity=severity.lower(), project=project
            )
        except OperatorError as exc:
            raise_exit(describe_error(exc), cause=exc)
        context.dispatcher.notify(
            NotificationEvent(
                type=NotificationEventType.INVESTIGATION_CREATED,
                ticket_id=ticket.id,
                ticket_type=ticket.ticket_type,
                project=ticket.project,
                message=ticket.summary,
                data={"source": source, "severity": severity.lower()},
            )
        )
        typer.echo(f"Created {ticket.id}: {ticket.filepath}")

    @app.command("create")
    def create(
        ctx: typer.Context,
        template: str = typer.Option(..., "--template", "-t", help="Issue type key, e.g. FEAT"),
        project: str = typer.Option(..., "--project", "-p", help="Target project"),
        summary: str = typer.Option("new ticket", "--summary", "-s", help="One-line summary"),
        priority: Optional[str] = typer.Option(None, "--priority", help="Ticket priority"),
        edit: bool = typer.Option(True, "--edit/--no-edit", help="Open the ticket in $EDITOR"),
    ) -> None:
        """Create a ticket from an issue type and open it for editing."""
        context = require_context(ctx)
        try:
            issue_type = context.registry.require(template.upper())
            ticket = context.creator.create_ticket(
                issue_type, project, summary, priority=priority
            )
        except OperatorError as exc:
            raise_exit(describe_error(exc), cause=exc)
        typer.echo(f"Created {ticket.id}: {ticket.filepath}")
        if edit:
            typer.edit(filename=str(ticket.filepath))
