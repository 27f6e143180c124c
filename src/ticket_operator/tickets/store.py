from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..core.exceptions import AlreadyClaimedError, ConflictError, NotFoundError
from ..core.logging_utils import log_event
from ..core.time_utils import now_local_history
from .models import STATUS_DIRECTORIES, Ticket

logger = logging.getLogger(__name__)

QUEUE_DIR = "queue"
IN_PROGRESS_DIR = "in-progress"
COMPLETED_DIR = "completed"

PriorityFn = Callable[[str], int]


class TicketQueue:
    """Filesystem-backed ticket store rooted at the tickets directory.

    Directory moves are single ``os.rename`` calls, so two callers racing to
    claim the same file cannot both win.
    """

    def __init__(self, tickets_path: Path, priority_fn: Optional[PriorityFn] = None):
        self.tickets_path = tickets_path
        self.queue_dir = tickets_path / QUEUE_DIR
        self.in_progress_dir = tickets_path / IN_PROGRESS_DIR
        self.completed_dir = tickets_path / COMPLETED_DIR
        self._priority_fn = priority_fn

    def ensure_dirs(self) -> None:
        for directory in (self.queue_dir, self.in_progress_dir, self.completed_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def _list(self, directory: Path) -> list[Ticket]:
        if not directory.is_dir():
            return []
        tickets: list[Ticket] = []
        for path in sorted(directory.glob("*.md")):
            try:
                tickets.append(Ticket.from_file(path))
            except (OSError, ValueError) as exc:
                log_event(logger, logging.WARNING, "ticket.parse_failed", path=path, exc=exc)
        return tickets

    def list_queue(self) -> list[Ticket]:
        return self._list(self.queue_dir)

    def list_in_progress(self) -> list[Ticket]:
        return self._list(self.in_progress_dir)

    def list_completed(self) -> list[Ticket]:
        return self._list(self.completed_dir)

    def list_all(self) -> list[Ticket]:
        return self.list_queue() + self.list_in_progress() + self.list_completed()

    def list_by_priority(self) -> list[Ticket]:
        """Queued tickets sorted by (type priority, timestamp); ties keep file order."""
        tickets = self.list_queue()
        priority_fn = self._priority_fn
        if priority_fn is None:
            return sorted(tickets, key=lambda t: t.timestamp)
        return sorted(tickets, key=lambda t: (priority_fn(t.ticket_type), t.timestamp))

    def next_ticket(self, exclude_ids: Iterable[str] = ()) -> Optional[Ticket]:
        excluded = set(exclude_ids)
        for ticket in self.list_by_priority():
            if ticket.id in excluded or ticket.status == "failed":
                continue
            return ticket
        return None

    def find_ticket(self, ticket_id: str) -> Optional[Ticket]:
        tickets = self.list_all()
        for ticket in tickets:
            if ticket.id == ticket_id:
                return ticket
        for ticket in tickets:
            if ticket_id in ticket.filename:
                return ticket
        return None

    def require_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.find_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError("ticket", ticket_id)
        return ticket

    def reload_ticket(self, ticket: Ticket) -> Ticket:
        if ticket.filepath.exists():
            return Ticket.from_file(ticket.filepath)
        for directory in (self.queue_dir, self.in_progress_dir, self.completed_dir):
            candidate = directory / ticket.filename
            if candidate.exists():
                return Ticket.from_file(candidate)
        raise NotFoundError("ticket", ticket.id)

    def _move(self, ticket: Ticket, source: Path, target_dir: Path) -> Ticket:
        target_dir.mkdir(parents=True, exist_ok=True)
        src = source / ticket.filename
        dest = target_dir / ticket.filename
        if dest.exists():
            raise ConflictError(f"Ticket file already exists: {dest}")
        os.rename(src, dest)
        ticket.filepath = dest
        return ticket

    def claim_ticket(self, ticket: Ticket) -> Ticket:
        """Move a queued ticket to in-progress; losers get AlreadyClaimedError.

        A queued file whose name is already taken in ``in-progress/`` raises a
        plain ConflictError: nobody else holds the claim, the tree is inconsistent.
        """
        try:
            self._move(ticket, self.queue_dir, self.in_progress_dir)
        except FileNotFoundError as exc:
            raise AlreadyClaimedError(ticket.id) from exc
        except ConflictError as exc:
            if not (self.queue_dir / ticket.filename).exists():
                raise AlreadyClaimedError(ticket.id) from exc
            raise
        ticket.update_field("status", "in-progress")
        log_event(logger, logging.INFO, "ticket.claimed", ticket_id=ticket.id)
        return ticket

    def complete_ticket(self, ticket: Ticket) -> Ticket:
        try:
            self._move(ticket, self.in_progress_dir, self.completed_dir)
        except FileNotFoundError as exc:
            raise NotFoundError("in-progress ticket", ticket.id) from exc
        ticket.update_field("status", "completed")
        log_event(logger, logging.INFO, "ticket.completed", ticket_id=ticket.id)
        return ticket

    def return_to_queue(
        self,
        ticket: Ticket,
        *,
        reason: Optional[str] = None,
        status: str = "queued",
    ) -> Ticket:
        """Move an in-progress ticket back to the queue, recording why."""
        try:
            self._move(ticket, self.in_progress_dir, self.queue_dir)
        except FileNotFoundError as exc:
            raise NotFoundError("in-progress ticket", ticket.id) from exc
        ticket.update_field("status", status)
        if reason:
            ticket.append_history(f"{now_local_history()} - {reason}")
        log_event(
            logger,
            logging.INFO,
            "ticket.returned",
            ticket_id=ticket.id,
            status=status,
            reason=reason,
        )
        return ticket

    def _dir_for(self, name: str) -> Path:
        return {
            QUEUE_DIR: self.queue_dir,
            IN_PROGRESS_DIR: self.in_progress_dir,
            COMPLETED_DIR: self.completed_dir,
        }[name]

    def move_to(self, ticket: Ticket, status: str) -> Ticket:
        """Put ``ticket`` in the directory that matches ``status`` and record it."""
        target_name = STATUS_DIRECTORIES.get(status)
        if target_name is None:
            raise ValueError(f"Unknown ticket status: {status}")
        target_dir = self._dir_for(target_name)
        if ticket.filepath.parent != target_dir:
            try:
                self._move(ticket, ticket.filepath.parent, target_dir)
            except FileNotFoundError as exc:
                raise NotFoundError("ticket", ticket.id) from exc
        ticket.update_field("status", status)
        return ticket

    def set_status(self, ticket: Ticket, status: str) -> Ticket:
        """Change status for a ticket that stays in the in-progress directory."""
        if ticket.filepath.parent != self.in_progress_dir:
            raise ConflictError(
                f"Ticket {ticket.id} is not in progress; cannot set status {status}"
            )
        ticket.update_field("status", status)
        return ticket

    def counts(self) -> dict[str, int]:
        def _count(directory: Path) -> int:
            return len(list(directory.glob("*.md"))) if directory.is_dir() else 0

        return {
            "queued": _count(self.queue_dir),
            "in_progress": _count(self.in_progress_dir),
            "completed": _count(self.completed_dir),
        }
