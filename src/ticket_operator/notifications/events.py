from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..core.time_utils import now_iso


class NotificationEventType(str, Enum):
    AGENT_STARTED = "agent-started"
    AGENT_COMPLETED = "agent-completed"
    AGENT_FAILED = "agent-failed"
    AGENT_AWAITING_INPUT = "agent-awaiting-input"
    REVIEW_PENDING = "review-pending"
    SESSION_LOST = "session-lost"
    TICKET_RETURNED = "ticket-returned"
    INVESTIGATION_CREATED = "investigation-created"


_TITLES = {
    NotificationEventType.AGENT_STARTED: "Agent started",
    NotificationEventType.AGENT_COMPLETED: "Ticket completed",
    NotificationEventType.AGENT_FAILED: "Agent failed",
    NotificationEventType.AGENT_AWAITING_INPUT: "Agent needs input",
    NotificationEventType.REVIEW_PENDING: "Review requested",
    NotificationEventType.SESSION_LOST: "Session lost",
    NotificationEventType.TICKET_RETURNED: "Ticket returned to queue",
    NotificationEventType.INVESTIGATION_CREATED: "Investigation created",
}


@dataclass(frozen=True)
class NotificationEvent:
    type: NotificationEventType
    ticket_id: Optional[str] = None
    ticket_type: Optional[str] = None
    project: Optional[str] = None
    step: Optional[str] = None
    message: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=now_iso)

    @property
    def name(self) -> str:
        return self.type.value

    def render(self) -> tuple[str, str, str]:
        """Return ``(title, subtitle, body)`` for desktop-style notifications."""
        title = _TITLES[self.type]
        subtitle_parts = [part for part in (self.ticket_id, self.project) if part]
        subtitle = " / ".join(subtitle_parts)
        if self.message:
            body = self.message
        elif self.step:
            body = f"Step: {self.step}"
        else:
            body = title
        return title, subtitle, body

    def to_payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ticket_id": self.ticket_id,
            "ticket_type": self.ticket_type,
            "project": self.project,
            "step": self.step,
            "message": self.message,
        }
        data = {key: value for key, value in data.items() if value is not None}
        data.update(self.data)
        return {"event": self.name, "timestamp": self.timestamp, "data": data}
