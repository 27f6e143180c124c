from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..core.coercion import coerce_str
from ..core.time_utils import now_local_history
from ..core.utils import atomic_write, slugify
from .frontmatter import parse_markdown_frontmatter, render_markdown_frontmatter

if TYPE_CHECKING:
    from ..issuetypes.schema import IssueType

logger = logging.getLogger(__name__)

FILENAME_RE = re.compile(r"^(\d{8}-\d{4})-([A-Z]+)-([a-z0-9]+)-.*\.md$")
_LEGACY_FIELD_RE = "\\*\\*{name}\\*\\*:\\s*(.+)"
_TYPE_HEADER_RE = re.compile(
    r"^#\s+(?:Feature|Fix|Spike|Investigation|Task):\s*(.+)$"
)

DEFAULT_PRIORITY = "P2-medium"
DEFAULT_STATUS = "queued"
HISTORY_HEADING = "## History"

TICKET_STATUSES = (
    "queued",
    "in-progress",
    "awaiting",
    "completing",
    "completed",
    "failed",
)

# Directory each status may live in.
STATUS_DIRECTORIES = {
    "queued": "queue",
    "failed": "queue",
    "in-progress": "in-progress",
    "awaiting": "in-progress",
    "completing": "in-progress",
    "completed": "completed",
}

_BRANCH_PREFIXES = {
    "FEAT": "feature",
    "FIX": "fix",
    "SPIKE": "spike",
    "INV": "investigation",
}

_SCALAR_KEYS = (
    "worktree_path",
    "branch",
    "external_id",
    "external_url",
    "external_provider",
)


def match_filename(filename: str) -> Optional[tuple[str, str, str]]:
    match = FILENAME_RE.match(filename)
    if not match:
        return None
    return match.group(1), match.group(2), match.group(3)


def parse_filename(filename: str) -> tuple[str, str, str]:
    """Return ``(timestamp, ticket_type, project)`` for a ticket filename.

    Hand-written files that miss the strict pattern fall back to a plain
    hyphen split; fewer than four parts is an error.
    """
    parsed = match_filename(filename)
    if parsed is not None:
        return parsed
    stem = filename[:-3] if filename.endswith(".md") else filename
    parts = stem.split("-")
    if len(parts) >= 4:
        return f"{parts[0]}-{parts[1]}", parts[2], parts[3]
    raise ValueError(f"Could not parse ticket filename: {filename}")


def _legacy_field(content: str, name: str) -> Optional[str]:
    match = re.search(_LEGACY_FIELD_RE.format(name=re.escape(name)), content)
    if not match:
        return None
    return match.group(1).strip()


def extract_summary(body: str) -> str:
    for line in body.splitlines():
        match = _TYPE_HEADER_RE.match(line.strip())
        if match and match.group(1).strip():
            return match.group(1).strip()
    for line in body.splitlines():
        text = line.strip()
        if not text:
            continue
        return text.lstrip("#").strip()
    return ""


def _coerce_sessions(raw: Any) -> dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(k): coerce_str(v) for k, v in raw.items() if v is not None}


def insert_history_bullet(text: str, bullet: str) -> str:
    """Append ``bullet`` to the ``## History`` section, creating it if absent."""
    if text.startswith(HISTORY_HEADING):
        index = 0
    else:
        index = text.find("\n" + HISTORY_HEADING)
        if index != -1:
            index += 1
    if index == -1:
        base = text.rstrip("\n")
        return f"{base}\n\n{HISTORY_HEADING}\n\n{bullet}\n"
    section_start = index + len(HISTORY_HEADING)
    next_section = text.find("\n## ", section_start)
    if next_section == -1:
        trimmed = text.rstrip("\n")
        return f"{trimmed}\n{bullet}\n"
    head = text[:next_section].rstrip("\n")
    return f"{head}\n{bullet}\n{text[next_section:]}"


@dataclass
class Ticket:
    """One ticket file plus the attributes parsed out of it.

    The file on disk is the source of truth. Mutators rewrite the whole file
    and refresh the in-memory mirror of the keys they touch.
    """

    filename: str
    filepath: Path
    timestamp: str
    ticket_type: str
    project: str
    id: str
    summary: str
    priority: str = DEFAULT_PRIORITY
    status: str = DEFAULT_STATUS
    step: str = ""
    content: str = ""
    sessions: dict[str, str] = field(default_factory=dict)
    worktree_path: Optional[str] = None
    branch: Optional[str] = None
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    external_provider: Optional[str] = None
    frontmatter: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: Path) -> "Ticket":
        return cls.from_text(path, path.read_text(encoding="utf-8"))

    @classmethod
    def from_text(cls, path: Path, content: str) -> "Ticket":
        timestamp, ticket_type, project = parse_filename(path.name)
        data, body = parse_markdown_frontmatter(content)
        default_id = f"{ticket_type}-{timestamp.replace('-', '')}"
        if data:
            frontmatter: dict[str, Any] = {}
            for key, value in data.items():
                if key == "sessions":
                    frontmatter[key] = _coerce_sessions(value)
                else:
                    frontmatter[key] = coerce_str(value)
            ticket_id = frontmatter.get("id") or default_id
            priority = frontmatter.get("priority") or DEFAULT_PRIORITY
            status = frontmatter.get("status") or DEFAULT_STATUS
            step = frontmatter.get("step") or ""
            summary = frontmatter.get("summary") or extract_summary(body)
        else:
            frontmatter = {}
            ticket_id = _legacy_field(content, "ID") or default_id
            priority = _legacy_field(content, "Priority") or DEFAULT_PRIORITY
            status = _legacy_field(content, "Status") or DEFAULT_STATUS
            step = _legacy_field(content, "Step") or ""
            summary = extract_summary(body)
        ticket = cls(
            filename=path.name,
            filepath=path,
            timestamp=timestamp,
            ticket_type=ticket_type,
            project=project,
            id=ticket_id,
            summary=summary,
            priority=priority,
            status=status,
            step=step,
            content=content,
            sessions=dict(frontmatter.get("sessions") or {}),
            frontmatter=frontmatter,
        )
        for key in _SCALAR_KEYS:
            value = frontmatter.get(key)
            setattr(ticket, key, value or None)
        return ticket

    @property
    def body(self) -> str:
        _, body = parse_markdown_frontmatter(self.content)
        return body

    def reload(self) -> "Ticket":
        return Ticket.from_file(self.filepath)

    # Mutation

    def _current_frontmatter(self, text: str) -> tuple[dict[str, Any], str]:
        data, body = parse_markdown_frontmatter(text)
        if data:
            return data, body
        # Legacy ticket: promote the parsed fields into frontmatter on first write.
        return (
            {
                "id": self.id,
                "priority": self.priority,
                "status": self.status,
                "step": self.step,
            },
            body,
        )

    def _write(self, data: dict[str, Any], body: str) -> None:
        text = render_markdown_frontmatter(data, body)
        atomic_write(self.filepath, text)
        self.content = text
        self.frontmatter = {
            k: (_coerce_sessions(v) if k == "sessions" else coerce_str(v))
            for k, v in data.items()
        }

    def update_fields(self, values: Mapping[str, Any]) -> None:
        text = self.filepath.read_text(encoding="utf-8")
        data, body = self._current_frontmatter(text)
        for key, value in values.items():
            if value is None:
                data.pop(key, None)
            elif key == "sessions":
                data[key] = _coerce_sessions(value)
            else:
                data[key] = coerce_str(value)
        self._write(data, body)
        for key, value in values.items():
            if key in ("step", "status", "priority", "summary", "id"):
                setattr(self, key, coerce_str(value))
            elif key in _SCALAR_KEYS:
                setattr(self, key, coerce_str(value) if value is not None else None)
            elif key == "sessions":
                self.sessions = _coerce_sessions(value)

    def update_field(self, key: str, value: Any) -> None:
        self.update_fields({key: value})

    def append_history(self, entry: str) -> None:
        bullet = entry if entry.startswith("- ") else f"- {entry}"
        text = self.filepath.read_text(encoding="utf-8")
        updated = insert_history_bullet(text, bullet)
        atomic_write(self.filepath, updated)
        self.content = updated

    def add_awaiting_entry(self, step_display_name: str) -> None:
        self.append_history(
            f'**{now_local_history()}** - Moved to AWAITING during "{step_display_name}" step'
        )

    def advance_step(self, issue_type: "IssueType") -> Optional[str]:
        """Move to the successor of the current step; None when terminal."""
        current = issue_type.get_step(self.step) if self.step else issue_type.first_step()
        if current is None or not current.next_step:
            return None
        self.update_field("step", current.next_step)
        return current.next_step

    def set_session_id(self, step: str, session_id: str) -> None:
        sessions = dict(self.sessions)
        sessions[step] = session_id
        self.update_field("sessions", sessions)

    # Derived values

    def branch_name(self) -> str:
        prefix = _BRANCH_PREFIXES.get(self.ticket_type, "task")
        words = " ".join(self.summary.split()[:5])
        slug = slugify(words, 40)
        base = self.id.lower()
        return f"{prefix}/{base}-{slug}" if slug else f"{prefix}/{base}"

    def expected_directory(self) -> Optional[str]:
        return STATUS_DIRECTORIES.get(self.status)

    def to_markdown(self) -> str:
        data: dict[str, Any] = dict(self.frontmatter)
        data.update(
            {
                "id": self.id,
                "priority": self.priority,
                "status": self.status,
                "step": self.step,
            }
        )
        if self.sessions:
            data["sessions"] = dict(self.sessions)
        for key in _SCALAR_KEYS:
            value = getattr(self, key)
            if value:
                data[key] = value
        return render_markdown_frontmatter(data, self.body)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "filepath": str(self.filepath),
            "timestamp": self.timestamp,
            "ticket_type": self.ticket_type,
            "project": self.project,
            "summary": self.summary,
            "priority": self.priority,
            "status": self.status,
            "step": self.step,
            "sessions": dict(self.sessions),
            "worktree_path": self.worktree_path,
            "branch": self.branch,
            "external_id": self.external_id,
            "external_url": self.external_url,
            "external_provider": self.external_provider,
        }


def write_ticket(path: Path, ticket: Ticket) -> Ticket:
    atomic_write(path, ticket.to_markdown())
    return Ticket.from_file(path)
