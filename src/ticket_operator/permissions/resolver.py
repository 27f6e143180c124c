from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from ..core.config import OperatorConfig
from ..core.logging_utils import log_event
from ..core.time_utils import now_iso_utc_z
from ..core.utils import write_json
from ..issuetypes.schema import StepSchema
from .models import PermissionSet, StepPermissions
from .translators import GeneratedConfig, TranslatorManager

logger = logging.getLogger(__name__)

PROJECT_PERMISSIONS_RELPATH = Path(".operator") / "permissions.json"
AUDIT_FILENAME = "audit.json"
SCHEMA_FILENAME = "schema.json"


def load_project_permissions(project_path: Path) -> StepPermissions:
    """Read ``<project>/.operator/permissions.json``; missing means no grants."""
    path = project_path / PROJECT_PERMISSIONS_RELPATH
    if not path.exists():
        return StepPermissions()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        log_event(
            logger, logging.WARNING, "permissions.project_unreadable", path=path, exc=exc
        )
        return StepPermissions()
    if not isinstance(raw, dict):
        return StepPermissions()
    base = raw.get("base", raw)
    return StepPermissions.from_dict(base if isinstance(base, dict) else None)


def step_permissions(step: StepSchema) -> StepPermissions:
    """The step's declared grants; ``allowed_tools`` fill in when none are listed."""
    permissions = step.permissions
    if permissions.tools:
        return permissions
    tools = [tool for tool in step.allowed_tools if tool != "*"]
    if not tools:
        return permissions
    return permissions.with_tools(tools)


class PermissionResolver:
    def __init__(
        self,
        config: OperatorConfig,
        translators: Optional[TranslatorManager] = None,
    ) -> None:
        self.config = config
        self.translators = translators or TranslatorManager()

    def session_dir(self, ticket_id: str) -> Path:
        return self.config.sessions_path / ticket_id

    def merged(self, project_path: Path, step: StepSchema) -> PermissionSet:
        project = load_project_permissions(project_path).with_directory(
            str(self.config.tickets_path)
        )
        return PermissionSet.merge(project, step_permissions(step), step.cli_args)

    def _schema_flag(self, step: StepSchema, session_dir: Path) -> Optional[str]:
        if step.json_schema is not None:
            path = session_dir / SCHEMA_FILENAME
            write_json(path, step.json_schema)
            return str(path)
        if step.json_schema_file:
            schema_path = Path(step.json_schema_file).expanduser()
            if not schema_path.is_absolute():
                schema_path = self.config.workspace / schema_path
            return str(schema_path)
        return None

    def _claude_extras(
        self, step: StepSchema, session_dir: Path, project_path: Path
    ) -> list[str]:
        flags: list[str] = []
        if step.permission_mode != "default":
            flags.extend(["--permission-mode", step.permission_mode])
        schema = self._schema_flag(step, session_dir)
        if schema:
            flags.extend(["--json-schema", schema])
        if self.config.git.use_worktrees:
            flags.extend(["--add-dir", str(self.config.worktrees_path)])
        flags.extend(["--add-dir", str(project_path)])
        return flags

    def resolve(
        self,
        *,
        ticket_id: str,
        session_id: str,
        step: StepSchema,
        provider: str,
        project_path: Path,
    ) -> GeneratedConfig:
        """Build the flags and aux files for one session and audit them."""
        session_dir = self.session_dir(ticket_id)
        session_dir.mkdir(parents=True, exist_ok=True)
        permissions = self.merged(project_path, step)
        generated = self.translators.generate_config(provider, permissions, session_dir)
        if provider == "claude":
            generated = replace(
                generated,
                cli_flags=[
                    *generated.cli_flags,
                    *self._claude_extras(step, session_dir, project_path),
                ],
            )
        write_json(
            session_dir / AUDIT_FILENAME,
            {
                "session_id": session_id,
                "ticket_id": ticket_id,
                "provider": provider,
                "timestamp": now_iso_utc_z(),
                "flags": list(generated.cli_flags),
                "config_path": (
                    str(generated.config_path) if generated.config_path else None
                ),
            },
        )
        log_event(
            logger,
            logging.DEBUG,
            "permissions.resolved",
            ticket_id=ticket_id,
            provider=provider,
            audit=generated.audit_info,
        )
        return generated
