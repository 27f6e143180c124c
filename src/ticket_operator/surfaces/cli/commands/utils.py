from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, Optional

import typer

from ....core.config import OperatorConfig, load_config
from ....core.exceptions import ConfigError, OperatorError, PreconditionError
from ....core.logging_utils import setup_logging
from ....web.app_state import OperatorContext, build_operator_context


@dataclass
class CliOptions:
    workspace: Optional[Path] = None
    config_path: Optional[Path] = None
    verbose: bool = False


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def describe_error(exc: OperatorError) -> str:
    if isinstance(exc, PreconditionError):
        return exc.describe()
    return str(exc)


def _options(ctx: typer.Context) -> CliOptions:
    root = ctx.find_root()
    if isinstance(root.obj, CliOptions):
        return root.obj
    return CliOptions()


def require_config(ctx: typer.Context) -> OperatorConfig:
    options = _options(ctx)
    try:
        config = load_config(options.workspace, config_path=options.config_path)
    except ConfigError as exc:
        raise_exit(str(exc), cause=exc)
    setup_logging(config, console=options.verbose)
    return config


def require_context(ctx: typer.Context) -> OperatorContext:
    config = require_config(ctx)
    try:
        return build_operator_context(config)
    except OperatorError as exc:
        raise_exit(describe_error(exc), cause=exc)
    except OSError as exc:
        raise_exit(f"Could not prepare {config.tickets_path}: {exc}", cause=exc)


def require_launch_prerequisites(context: OperatorContext) -> None:
    """Exit 1 with remediation text when tmux or the default LLM tool is missing."""
    try:
        context.tmux.check_available(context.config.tmux.min_version)
        context.tools.require(context.config.launch.default_provider)
    except PreconditionError as exc:
        raise_exit(exc.describe(), cause=exc)
