from __future__ import annotations

from typing import Callable, Optional

import typer

from ....web.app_factory import serve_api
from ....web.app_state import OperatorContext


def register_api_commands(
    app: typer.Typer,
    *,
    require_context: Callable[[typer.Context], OperatorContext],
) -> None:
    @app.command("api")
    def api(
        ctx: typer.Context,
        port: Optional[int] = typer.Option(None, "--port", help="Port to bind"),
        supervise: bool = typer.Option(
            False, "--supervise", help="Also run the agent supervisor in this process"
        ),
    ) -> None:
        """Serve the REST API used by the kanban UI and IDE integrations."""
        context = require_context(ctx)
        bind_port = port or context.config.api.port
        typer.echo(f"Serving API on http://{context.config.api.host}:{bind_port}/api/v1")
        serve_api(context.config, bind_port, context=context, run_supervisor=supervise)
