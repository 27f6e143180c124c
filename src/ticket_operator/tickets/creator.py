from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Mapping, Optional

from ..core.logging_utils import log_event
from ..core.time_utils import now_local_history, now_ticket_stamp
from ..core.utils import slugify
from ..issuetypes.schema import IssueType
from .frontmatter import render_markdown_frontmatter
from .models import DEFAULT_PRIORITY, Ticket
from .store import TicketQueue

logger = logging.getLogger(__name__)

_PROJECT_STRIP_RE = re.compile(r"[^a-z0-9]+")

SEVERITY_PRIORITIES = {
    "critical": "P0-critical",
    "high": "P1-high",
    "medium": "P2-medium",
    "low": "P3-low",
}

_INVESTIGATION_TEMPLATE = """# Investigation: {message}

## Alert

- **Source**: {source}
- **Severity**: {severity}
- **Project**: {project}
- **Received**: {received}

## Details

{message}

## Findings

_Fill in during triage._
"""

_TICKET_TEMPLATE = """# {type_name}: {summary}

{description}
"""


def normalize_project(project: Optional[str]) -> str:
    cleaned = _PROJECT_STRIP_RE.sub("", (project or "").lower())
    return cleaned or "global"


class TicketCreator:
    """Write new ticket files into the queue with fresh, unique ids."""

    def __init__(self, queue: TicketQueue) -> None:
        self.queue = queue

    def next_id(self, ticket_type: str) -> str:
        pattern = re.compile(rf"^{re.escape(ticket_type)}-(\d+)$")
        highest = 0
        for ticket in self.queue.list_all():
            match = pattern.match(ticket.id)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{ticket_type}-{highest + 1}"

    def _target_path(self, ticket_type: str, project: str, summary: str) -> Path:
        slug = slugify(summary, 40) or "ticket"
        base = f"{now_ticket_stamp()}-{ticket_type}-{project}-{slug}"
        path = self.queue.queue_dir / f"{base}.md"
        counter = 2
        while path.exists():
            path = self.queue.queue_dir / f"{base}-{counter}.md"
            counter += 1
        return path

    def _write(
        self,
        ticket_type: str,
        project: str,
        summary: str,
        frontmatter: dict[str, Any],
        body: str,
    ) -> Ticket:
        self.queue.ensure_dirs()
        path = self._target_path(ticket_type, project, summary)
        path.write_text(render_markdown_frontmatter(frontmatter, body), encoding="utf-8")
        ticket = Ticket.from_file(path)
        log_event(
            logger,
            logging.INFO,
            "ticket.created",
            ticket_id=ticket.id,
            ticket_type=ticket_type,
            project=project,
            path=path,
        )
        return ticket

    def create_ticket(
        self,
        issue_type: IssueType,
        project: Optional[str],
        summary: str,
        *,
        fields: Optional[Mapping[str, Any]] = None,
        description: str = "",
        priority: Optional[str] = None,
    ) -> Ticket:
        project_name = normalize_project(project)
        frontmatter: dict[str, Any] = {}
        for schema in issue_type.fields:
            if schema.auto or schema.name in ("id", "summary"):
                continue
            if schema.default is not None and schema.default != "":
                frontmatter[schema.name] = schema.default
        if fields:
            frontmatter.update({k: v for k, v in fields.items() if v is not None})
        frontmatter.update(
            {
                "id": self.next_id(issue_type.key),
                "priority": priority or frontmatter.get("priority") or DEFAULT_PRIORITY,
                "status": "queued",
                "step": "",
            }
        )
        body = _TICKET_TEMPLATE.format(
            type_name=issue_type.name,
            summary=summary,
            description=description.strip() or "_No description provided._",
        )
        return self._write(issue_type.key, project_name, summary, frontmatter, body)

    def create_investigation(
        self,
        source: str,
        message: str,
        severity: str = "medium",
        project: Optional[str] = None,
    ) -> Ticket:
        project_name = normalize_project(project)
        summary = message.strip().splitlines()[0] if message.strip() else "alert"
        frontmatter = {
            "id": self.next_id("INV"),
            "priority": SEVERITY_PRIORITIES.get(severity.lower(), DEFAULT_PRIORITY),
            "status": "queued",
            "step": "",
            "severity": severity,
            "source": source,
        }
        body = _INVESTIGATION_TEMPLATE.format(
            message=message.strip(),
            source=source,
            severity=severity,
            project=project_name,
            received=now_local_history(),
        )
        return self._write("INV", project_name, slugify(summary, 30), frontmatter, body)
