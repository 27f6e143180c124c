from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from ..core.config import OperatorConfig
from ..issuetypes.registry import IssueTypeRegistry
from ..issuetypes.schema import IssueType, StepSchema
from ..tickets.models import Ticket

logger = logging.getLogger(__name__)

PART_SEPARATOR = "\n\n---\n\n"
STATUS_START_MARKER = "---OPERATOR_STATUS---"
STATUS_END_MARKER = "---END_OPERATOR_STATUS---"

TEMPLATE_FILES = {
    "acceptance_criteria": "ACCEPTANCE_CRITERIA.md",
    "definition_of_done": "DEFINITION_OF_DONE.md",
    "definition_of_ready": "DEFINITION_OF_READY.md",
}

OPERATOR_OUTPUT_INSTRUCTIONS = f"""## Status Reporting

When you complete your work or reach a stopping point, output a status block in this exact format:

```
{STATUS_START_MARKER}
status: complete | in_progress | blocked | failed
exit_signal: true | false
confidence: 0-100
files_modified: <count>
tests_status: passing | failing | skipped | not_run
error_count: <count>
tasks_completed: <count>
tasks_remaining: <count>
summary: <brief description of work done this iteration>
recommendation: <suggested next action or empty if done>
blockers: <comma-separated list if blocked, otherwise empty>
{STATUS_END_MARKER}
```

**Required fields:** status, exit_signal
**Set exit_signal: true** when your work on this step is complete
**Set exit_signal: false** if more work remains to be done"""

_PLACEHOLDER_RE = re.compile(
    r"\{\{\{\s*([A-Za-z_][\w.]*)\s*\}\}\}|\{\{\s*([A-Za-z_][\w.]*)\s*\}\}"
)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Substitute ``{{ key }}`` tags; unknown keys render as an empty string."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1) or match.group(2)
        return _stringify(context.get(key))

    return _PLACEHOLDER_RE.sub(_replace, template)


def load_template_file(path: Path) -> str:
    if not path.is_file():
        return ""
    return path.read_text(encoding="utf-8")


@dataclass(frozen=True)
class StepCarry:
    """What one step hands to the next: its summary and recommendation."""

    summary: str = ""
    recommendation: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.summary

    def render(self) -> str:
        lines = ["## Previous Step Context", "", f"**Summary:** {self.summary}"]
        if self.recommendation:
            lines.append(f"**Recommendation:** {self.recommendation}")
        return "\n".join(lines) + "\n"


class PromptComposer:
    def __init__(self, config: OperatorConfig, registry: IssueTypeRegistry) -> None:
        self.config = config
        self.registry = registry

    def _issue_type(self, ticket: Ticket) -> Optional[IssueType]:
        return self.registry.get(ticket.ticket_type)

    def _step(self, issue_type: Optional[IssueType], ticket: Ticket) -> Optional[StepSchema]:
        if issue_type is None:
            return None
        if ticket.step:
            return issue_type.get_step(ticket.step)
        return issue_type.first_step()

    def build_context(
        self,
        ticket: Ticket,
        project_path: Path,
        carry: Optional[StepCarry] = None,
    ) -> dict[str, Any]:
        issue_type = self._issue_type(ticket)
        step_names = issue_type.step_names() if issue_type else []
        context: dict[str, Any] = {
            "id": ticket.id,
            "ticket_type": ticket.ticket_type,
            "summary": ticket.summary,
            "priority": ticket.priority,
            "status": ticket.status,
            "step": ticket.step,
            "content": ticket.content,
            "filename": ticket.filename,
            "filepath": str(ticket.filepath),
            "timestamp": ticket.timestamp,
            "project": ticket.project,
            "branch": ticket.branch or ticket.branch_name(),
            "ticket_path": f"../{self.config.paths.tickets}/in-progress/{ticket.filename}",
            "cwd": str(project_path),
            "step_count": len(step_names),
            "step_names": ", ".join(step_names),
            "previous_summary": carry.summary if carry else "",
            "previous_recommendation": carry.recommendation if carry else "",
            "operator_output_instructions": OPERATOR_OUTPUT_INSTRUCTIONS,
        }
        for key, filename in TEMPLATE_FILES.items():
            context[key] = load_template_file(self.config.templates_path / filename)
        return context

    def compose(
        self,
        ticket: Ticket,
        project_path: Path,
        carry: Optional[StepCarry] = None,
    ) -> str:
        """Assemble the full prompt for the ticket's current step.

        Parts, in order: issue-type prompt, step prompt, ticket file,
        previous-step context, status trailer. Empty parts are skipped.
        """
        context = self.build_context(ticket, project_path, carry)
        issue_type = self._issue_type(ticket)
        parts: list[str] = []

        if issue_type is not None and issue_type.agent_prompt:
            rendered = render_template(issue_type.agent_prompt, context)
            if rendered.strip():
                parts.append(rendered)

        step = self._step(issue_type, ticket)
        if step is not None and step.prompt:
            rendered = render_template(step.prompt, context)
            if rendered.strip():
                parts.append(rendered)

        if ticket.filepath.is_file():
            contents = ticket.filepath.read_text(encoding="utf-8")
            if contents.strip():
                parts.append(f"## Ticket Contents\n\n{contents}")

        if carry is not None and not carry.is_empty:
            parts.append(carry.render())

        parts.append(OPERATOR_OUTPUT_INSTRUCTIONS)
        return PART_SEPARATOR.join(parts)
