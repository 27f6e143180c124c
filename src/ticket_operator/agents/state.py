from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from ..core.logging_utils import log_event
from ..core.time_utils import now_iso
from ..core.utils import write_json

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class AgentStatus(str, Enum):
    RUNNING = "running"
    AWAITING_INPUT = "awaiting_input"
    COMPLETING = "completing"
    FAILED = "failed"


@dataclass(frozen=True)
class AgentState:
    """Supervisor record for one live session."""

    id: str
    ticket_id: str
    ticket_type: str
    project: str
    session_name: str
    step: str
    status: AgentStatus = AgentStatus.RUNNING
    started_at: str = ""
    last_status_change: str = ""
    paired: bool = False
    last_message: Optional[str] = None
    review: Optional[dict[str, Any]] = None
    session_uuid: str = ""
    provider: str = ""
    model: str = ""
    step_started_at: float = 0.0
    last_output_at: float = 0.0
    pane_hash: Optional[str] = None

    def with_status(
        self, status: AgentStatus, *, message: Optional[str] = None, **changes: Any
    ) -> "AgentState":
        return replace(
            self,
            status=status,
            last_status_change=now_iso(),
            last_message=message if message is not None else self.last_message,
            **changes,
        )

    @property
    def awaiting_review(self) -> bool:
        return self.status == AgentStatus.AWAITING_INPUT and self.review is not None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AgentState":
        data = dict(raw)
        data["status"] = AgentStatus(data.get("status") or AgentStatus.RUNNING.value)
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SupervisorState:
    agents: dict[str, AgentState] = field(default_factory=dict)
    paused: bool = False
    updated_at: Optional[str] = None

    def by_ticket(self, ticket_id: str) -> Optional[AgentState]:
        for agent in self.agents.values():
            if agent.ticket_id == ticket_id:
                return agent
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "paused": self.paused,
            "updated_at": self.updated_at,
            "agents": [agent.to_dict() for agent in self.agents.values()],
        }


class StateStore:
    """Reads and writes ``state.json``; every write replaces the file atomically."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> SupervisorState:
        if not self.path.exists():
            return SupervisorState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log_event(logger, logging.WARNING, "state.unreadable", path=self.path, exc=exc)
            return SupervisorState()
        agents: dict[str, AgentState] = {}
        for item in raw.get("agents") or []:
            try:
                agent = AgentState.from_dict(item)
            except (TypeError, ValueError, KeyError) as exc:
                log_event(logger, logging.WARNING, "state.agent_invalid", exc=exc)
                continue
            agents[agent.id] = agent
        return SupervisorState(
            agents=agents,
            paused=bool(raw.get("paused", False)),
            updated_at=raw.get("updated_at"),
        )

    def save(self, state: SupervisorState) -> None:
        with self._lock:
            state.updated_at = now_iso()
            write_json(self.path, state.to_dict())

    def save_agents(self, agents: Iterable[AgentState], *, paused: bool) -> None:
        self.save(SupervisorState({a.id: a for a in agents}, paused=paused))
