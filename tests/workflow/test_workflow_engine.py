from __future__ import annotations

from pathlib import Path

import pytest

from conftest import write_ticket_file
from ticket_operator.core.exceptions import NotFoundError
from ticket_operator.issuetypes import (
    IssueType,
    IssueTypeRegistry,
    IssueTypeSource,
    StepSchema,
)
from ticket_operator.tickets.models import Ticket
from ticket_operator.workflow.engine import NeverApproved, WorkflowEngine


class AlwaysApproved:
    def is_approved(self, ticket: Ticket, step: StepSchema) -> bool:
        return True


@pytest.fixture()
def registry(tmp_path: Path) -> IssueTypeRegistry:
    return IssueTypeRegistry.load_all(tmp_path / ".tickets")


def _ticket(tmp_path: Path, kind: str = "FEAT", step: str = "") -> Ticket:
    path = write_ticket_file(
        tmp_path / "in-progress",
        f"20241221-1200-{kind}-demo-x.md",
        ticket_id=f"{kind}-1",
        step=step,
    )
    return Ticket.from_file(path)


def test_current_step_defaults_to_first(registry: IssueTypeRegistry, tmp_path: Path) -> None:
    engine = WorkflowEngine(registry)
    ticket = _ticket(tmp_path)
    assert engine.current_step(ticket).name == "plan"
    assert engine.next_step(ticket).name == "build"


def test_review_gate_blocks_until_approved(registry: IssueTypeRegistry, tmp_path: Path) -> None:
    engine = WorkflowEngine(registry)
    assert isinstance(engine.review_checker, NeverApproved)
    assert not engine.can_proceed(_ticket(tmp_path, step="plan"))
    assert engine.can_proceed(_ticket(tmp_path, step="build"))


def test_review_checker_only_consulted_for_pr_steps(
    registry: IssueTypeRegistry, tmp_path: Path
) -> None:
    registry.register(
        IssueType.from_dict(
            {
                "key": "REL",
                "name": "Release",
                "steps": [
                    {"name": "notes", "requires_review": True, "next_step": "ship"},
                    {"name": "ship", "outputs": ["pr"], "requires_review": True},
                ],
            },
            source=IssueTypeSource.user(),
        )
    )
    approving = WorkflowEngine(registry, AlwaysApproved())
    waiting = WorkflowEngine(registry)
    assert not approving.can_proceed(_ticket(tmp_path, "REL", step="notes"))
    assert approving.can_proceed(_ticket(tmp_path, "REL", step="ship"))
    assert not waiting.can_proceed(_ticket(tmp_path, "REL", step="ship"))


def test_rejection_target_and_prompt(registry: IssueTypeRegistry, tmp_path: Path) -> None:
    engine = WorkflowEngine(registry)
    ticket = _ticket(tmp_path, step="plan")
    goto, prompt = engine.get_rejection_step(ticket)
    assert goto == "plan"
    rendered = engine.render_rejection_prompt(ticket, "scope too large")
    assert "Reason: scope too large" in rendered
    assert "{{" not in rendered
    assert engine.get_rejection_step(_ticket(tmp_path, step="build")) is None
    assert engine.render_rejection_prompt(_ticket(tmp_path, step="build"), "x") is None


def test_rejection_reason_is_inserted_literally(
    registry: IssueTypeRegistry, tmp_path: Path
) -> None:
    engine = WorkflowEngine(registry)
    rendered = engine.render_rejection_prompt(_ticket(tmp_path, step="plan"), r"use \1 and {{x}}")
    assert r"Reason: use \1 and {{x}}" in rendered


def test_progress_formatting(registry: IssueTypeRegistry, tmp_path: Path) -> None:
    engine = WorkflowEngine(registry)
    assert engine.format_progress(_ticket(tmp_path, step="build")) == "plan > [build] > pr"
    assert engine.format_progress(_ticket(tmp_path, "TASK")) == "[execute]"
    progress = engine.progress(_ticket(tmp_path, step="pr"))
    assert (progress.index, progress.total) == (2, 3)


def test_unknown_step_is_reported(registry: IssueTypeRegistry, tmp_path: Path) -> None:
    engine = WorkflowEngine(registry)
    ticket = _ticket(tmp_path, step="deploy")
    assert engine.current_step(ticket) is None
    assert engine.format_progress(ticket) == ""
    assert not engine.can_proceed(ticket)
    with pytest.raises(NotFoundError):
        engine.require_step(ticket)
