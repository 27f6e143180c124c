"""Pure decisions about where a ticket sits in its issue type's workflow.

Nothing here writes to disk; callers apply the answers through the ticket
store.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Protocol

from ..core.exceptions import NotFoundError
from ..issuetypes.registry import IssueTypeRegistry
from ..issuetypes.schema import IssueType, StepSchema
from ..tickets.models import Ticket

_REJECTION_REASON_RE = re.compile(r"\{\{\s*rejection_reason\s*\}\}")


class ReviewChecker(Protocol):
    def is_approved(self, ticket: Ticket, step: StepSchema) -> bool: ...


class NeverApproved:
    """Stand-in review check: PR-producing steps always wait for a human."""

    def is_approved(self, ticket: Ticket, step: StepSchema) -> bool:
        return False


@dataclass(frozen=True)
class StepProgress:
    index: int
    total: int
    names: tuple[str, ...]

    def format(self) -> str:
        return " > ".join(
            f"[{name}]" if i == self.index else name for i, name in enumerate(self.names)
        )


class WorkflowEngine:
    def __init__(
        self,
        registry: IssueTypeRegistry,
        review_checker: Optional[ReviewChecker] = None,
    ) -> None:
        self.registry = registry
        self.review_checker = review_checker or NeverApproved()

    def issue_type(self, ticket: Ticket) -> IssueType:
        return self.registry.require(ticket.ticket_type)

    def current_step(self, ticket: Ticket) -> Optional[StepSchema]:
        issue_type = self.registry.get(ticket.ticket_type)
        if issue_type is None:
            return None
        if not ticket.step:
            return issue_type.first_step()
        return issue_type.get_step(ticket.step)

    def require_step(self, ticket: Ticket) -> StepSchema:
        step = self.current_step(ticket)
        if step is None:
            raise NotFoundError("step", f"{ticket.ticket_type}:{ticket.step or '<first>'}")
        return step

    def next_step(self, ticket: Ticket) -> Optional[StepSchema]:
        current = self.current_step(ticket)
        if current is None or not current.next_step:
            return None
        return self.issue_type(ticket).get_step(current.next_step)

    def can_proceed(self, ticket: Ticket) -> bool:
        step = self.current_step(ticket)
        if step is None:
            return False
        if not step.requires_review:
            return True
        if step.produces("pr"):
            return self.review_checker.is_approved(ticket, step)
        return False

    def get_rejection_step(self, ticket: Ticket) -> Optional[tuple[str, str]]:
        step = self.current_step(ticket)
        if step is None or step.on_reject is None:
            return None
        return step.on_reject.goto_step, step.on_reject.prompt

    def render_rejection_prompt(self, ticket: Ticket, reason: str) -> Optional[str]:
        rejection = self.get_rejection_step(ticket)
        if rejection is None:
            return None
        _, prompt = rejection
        return _REJECTION_REASON_RE.sub(lambda _: reason, prompt)

    def progress(self, ticket: Ticket) -> Optional[StepProgress]:
        issue_type = self.registry.get(ticket.ticket_type)
        current = self.current_step(ticket)
        if issue_type is None or current is None:
            return None
        names = tuple(issue_type.step_names())
        return StepProgress(names.index(current.name), len(names), names)

    def format_progress(self, ticket: Ticket) -> str:
        progress = self.progress(ticket)
        return progress.format() if progress else ""
