"""Prepare and start one LLM session for a ticket's current step.

``prepare`` writes the prompt and launch script and returns everything a
host needs to run the session itself. ``launch`` additionally checks the
tmux preconditions and starts the detached session.
"""

from __future__ import annotations

import logging
import os
import shlex
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from ..core.config import OperatorConfig
from ..core.exceptions import ConflictError, PreconditionError
from ..core.logging_utils import log_event
from ..core.utils import atomic_write
from ..git.worktrees import WorktreeManager
from ..permissions.resolver import PermissionResolver
from ..prompts.composer import PromptComposer, StepCarry
from ..tickets.models import Ticket
from ..workflow.engine import WorkflowEngine
from .command import build_docker_command, build_tool_command, launch_script
from .tmux import Tmux
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

SCRIPT_MODE = 0o755


@dataclass(frozen=True)
class LaunchOptions:
    provider: Optional[str] = None
    model: Optional[str] = None
    docker: bool = False
    yolo: bool = False
    project_override: Optional[str] = None

    @classmethod
    def from_config(cls, config: OperatorConfig, **overrides: Any) -> "LaunchOptions":
        values: dict[str, Any] = {
            "provider": config.launch.default_provider,
            "docker": config.launch.docker.enabled,
            "yolo": config.launch.yolo_enabled,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class PreparedLaunch:
    agent_id: str
    ticket_id: str
    step: str
    working_dir: str
    command: str
    session_name: str
    session_uuid: str
    prompt_file: str
    script_file: str
    provider: str
    model: str
    worktree_created: bool = False
    branch: Optional[str] = None

    @property
    def session_command(self) -> str:
        return f"bash {shlex.quote(self.script_file)}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "ticket_id": self.ticket_id,
            "step": self.step,
            "working_dir": self.working_dir,
            "command": self.command,
            "session_name": self.session_name,
            "session_uuid": self.session_uuid,
            "prompt_file": self.prompt_file,
            "script_file": self.script_file,
            "provider": self.provider,
            "model": self.model,
            "worktree_created": self.worktree_created,
            "branch": self.branch,
        }


class Launcher:
    def __init__(
        self,
        config: OperatorConfig,
        engine: WorkflowEngine,
        composer: PromptComposer,
        resolver: PermissionResolver,
        tools: ToolRegistry,
        tmux: Tmux,
        *,
        worktrees: Optional[WorktreeManager] = None,
        uuid_fn: Callable[[], uuid.UUID] = uuid.uuid4,
    ) -> None:
        self.config = config
        self.engine = engine
        self.composer = composer
        self.resolver = resolver
        self.tools = tools
        self.tmux = tmux
        self.worktrees = worktrees
        self._uuid_fn = uuid_fn

    def session_name(self, ticket_id: str) -> str:
        return f"{self.config.tmux.session_prefix}{ticket_id}"

    def project_path(self, ticket: Ticket, options: LaunchOptions) -> Path:
        project = options.project_override or ticket.project
        path = self.config.project_path(project) if project else self.config.projects_path
        if not path.is_dir():
            raise PreconditionError(
                f"Project path does not exist: {path}",
                remediation="Check paths.projects in your config or pass a project override.",
            )
        return path

    def _working_dir(self, ticket: Ticket, project_path: Path) -> tuple[Path, bool]:
        if not self.config.git.use_worktrees or self.worktrees is None:
            return project_path, False
        if not self.worktrees.git.is_repo(project_path):
            return project_path, False
        branch = ticket.branch or ticket.branch_name()
        info = self.worktrees.ensure_worktree_exists(
            project_path,
            ticket.project or project_path.name,
            ticket.id,
            branch,
            self.config.git.base_branch,
        )
        ticket.update_fields({"worktree_path": str(info.path), "branch": info.branch})
        return info.path, True

    def _model(self, provider: str, options: LaunchOptions) -> str:
        if options.model:
            return options.model
        if provider == self.config.launch.default_provider:
            return self.config.launch.default_model
        aliases = self.tools.require(provider).definition.model_aliases
        return aliases[0] if aliases else ""

    def prepare(
        self,
        ticket: Ticket,
        options: LaunchOptions,
        carry: Optional[StepCarry] = None,
        *,
        agent_id: Optional[str] = None,
    ) -> PreparedLaunch:
        provider = options.provider or self.config.launch.default_provider
        tool = self.tools.require(provider)
        step = self.engine.require_step(ticket)
        if not ticket.step:
            ticket.update_field("step", step.name)

        session_uuid = str(self._uuid_fn())
        project_path = self.project_path(ticket, options)
        working_dir, worktree_created = self._working_dir(ticket, project_path)

        prompt_file = self.config.prompts_path / f"{session_uuid}.txt"
        atomic_write(prompt_file, self.composer.compose(ticket, working_dir, carry))

        generated = self.resolver.resolve(
            ticket_id=ticket.id,
            session_id=session_uuid,
            step=step,
            provider=provider,
            project_path=working_dir,
        )
        model = self._model(provider, options)
        command = build_tool_command(
            tool.definition,
            model=model,
            session_id=session_uuid,
            prompt_file=str(prompt_file),
            config_flags=generated.cli_flags,
            yolo=options.yolo,
        )
        if options.docker:
            command = build_docker_command(
                self.config.launch.docker, command, str(working_dir)
            )

        script_file = self.config.commands_path / f"{session_uuid}.sh"
        atomic_write(script_file, launch_script(str(working_dir), command))
        os.chmod(script_file, SCRIPT_MODE)

        ticket.set_session_id(step.name, session_uuid)
        prepared = PreparedLaunch(
            agent_id=agent_id or session_uuid.split("-")[0],
            ticket_id=ticket.id,
            step=step.name,
            working_dir=str(working_dir),
            command=command,
            session_name=self.session_name(ticket.id),
            session_uuid=session_uuid,
            prompt_file=str(prompt_file),
            script_file=str(script_file),
            provider=provider,
            model=model,
            worktree_created=worktree_created,
            branch=ticket.branch,
        )
        log_event(
            logger,
            logging.INFO,
            "launch.prepared",
            ticket_id=ticket.id,
            step=step.name,
            provider=provider,
            session_uuid=session_uuid,
        )
        return prepared

    def launch(
        self,
        ticket: Ticket,
        options: LaunchOptions,
        carry: Optional[StepCarry] = None,
        *,
        agent_id: Optional[str] = None,
    ) -> PreparedLaunch:
        self.tmux.check_available(self.config.tmux.min_version)
        name = self.session_name(ticket.id)
        if self.tmux.session_exists(name):
            raise ConflictError(f"tmux session already exists: {name}")
        prepared = self.prepare(ticket, options, carry, agent_id=agent_id)
        self.tmux.create_session(name, prepared.working_dir, prepared.session_command)
        log_event(
            logger,
            logging.INFO,
            "launch.started",
            ticket_id=ticket.id,
            session=name,
        )
        return prepared

    def release_worktree(self, ticket: Ticket, *, delete_branch: bool = False) -> bool:
        """Drop the ticket's worktree once no session uses it; dirty ones are kept."""
        if self.worktrees is None or not ticket.worktree_path:
            return False
        removed = self.worktrees.cleanup_for_ticket(
            Path(ticket.worktree_path), ticket.branch or "", delete_branch=delete_branch
        )
        if removed:
            ticket.update_field("worktree_path", None)
        return removed
