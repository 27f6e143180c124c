from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .. import __version__
from ..agents.launcher import Launcher
from ..agents.state import StateStore
from ..agents.supervisor import Supervisor
from ..agents.tmux import RunFn, Tmux
from ..agents.tools import ToolRegistry, detect_tools
from ..core.config import OperatorConfig, ensure_operator_dirs
from ..git.worktrees import Git, WorktreeManager
from ..issuetypes import IssueTypeRegistry
from ..notifications import NotificationDispatcher
from ..permissions.resolver import PermissionResolver
from ..prompts import PromptComposer
from ..tickets.creator import TicketCreator
from ..tickets.store import TicketQueue
from ..workflow.engine import ReviewChecker, WorkflowEngine


@dataclass
class OperatorContext:
    """Everything a surface (REST or CLI) needs, wired once per process."""

    config: OperatorConfig
    registry: IssueTypeRegistry
    queue: TicketQueue
    creator: TicketCreator
    engine: WorkflowEngine
    tmux: Tmux
    tools: ToolRegistry
    launcher: Launcher
    supervisor: Supervisor
    dispatcher: NotificationDispatcher
    version: str = __version__


def build_operator_context(
    config: OperatorConfig,
    *,
    run_fn: Optional[RunFn] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
    env: Optional[Mapping[str, str]] = None,
    review_checker: Optional[ReviewChecker] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    cpu_count: Optional[int] = None,
) -> OperatorContext:
    ensure_operator_dirs(config)
    registry = IssueTypeRegistry.load_all(
        config.tickets_path, active_collection=config.collection
    )
    queue = TicketQueue(config.tickets_path, priority_fn=registry.priority_index)
    queue.ensure_dirs()
    engine = WorkflowEngine(registry, review_checker)
    tmux = Tmux(config.tmux.binary, run_fn=run_fn)
    tools = ToolRegistry(
        detect_tools(which=which, run_fn=run_fn, enabled=config.enabled_tools)
    )
    worktrees = None
    if config.git.use_worktrees:
        worktrees = WorktreeManager(
            config.worktrees_path, Git(config.git.binary, run_fn=run_fn)
        )
    launcher = Launcher(
        config,
        engine,
        PromptComposer(config, registry),
        PermissionResolver(config),
        tools,
        tmux,
        worktrees=worktrees,
    )
    if dispatcher is None:
        dispatcher = NotificationDispatcher.from_config(config, env=env, run_fn=run_fn)
    supervisor = Supervisor(
        config,
        queue,
        engine,
        launcher,
        tmux,
        dispatcher,
        StateStore(config.state_path),
        cpu_count=cpu_count,
    )
    return OperatorContext(
        config=config,
        registry=registry,
        queue=queue,
        creator=TicketCreator(queue),
        engine=engine,
        tmux=tmux,
        tools=tools,
        launcher=launcher,
        supervisor=supervisor,
        dispatcher=dispatcher,
    )
