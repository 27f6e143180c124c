from __future__ import annotations

from typing import Callable

import typer

from ....agents.state import AgentState
from ....web.app_state import OperatorContext


def _agent_line(agent: AgentState) -> str:
    return (
        f"{agent.id:<10} {agent.ticket_id:<12} {agent.step:<12} "
        f"{agent.status.value:<15} {agent.session_name}"
    )


def register_agent_commands(
    app: typer.Typer,
    *,
    require_context: Callable[[typer.Context], OperatorContext],
) -> None:
    @app.command("agents")
    def agents(
        ctx: typer.Context,
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Show session details"),
    ) -> None:
        """List running agents."""
        context = require_context(ctx)
        snapshot = context.supervisor.snapshot()
        if not snapshot:
            typer.echo("No active agents.")
            return
        for agent in snapshot:
            typer.echo(_agent_line(agent))
            if verbose:
                typer.echo(f"    provider={agent.provider} model={agent.model}")
                typer.echo(f"    session_uuid={agent.session_uuid} started_at={agent.started_at}")
                if agent.last_message:
                    typer.echo(f"    last_message={agent.last_message}")
                if agent.review:
                    typer.echo(f"    awaiting review of step {agent.review.get('step')}")

    @app.command("stalled")
    def stalled(ctx: typer.Context) -> None:
        """List agents waiting for human input."""
        context = require_context(ctx)
        waiting = context.supervisor.stalled()
        if not waiting:
            typer.echo("No stalled agents.")
            return
        for agent in waiting:
            reason = "review" if agent.awaiting_review else "input"
            typer.echo(f"{_agent_line(agent)}  waiting for {reason}")
