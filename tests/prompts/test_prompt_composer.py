from __future__ import annotations

from pathlib import Path

import pytest

from conftest import write_ticket_file
from ticket_operator.issuetypes import IssueTypeRegistry
from ticket_operator.prompts.composer import (
    OPERATOR_OUTPUT_INSTRUCTIONS,
    PART_SEPARATOR,
    PromptComposer,
    StepCarry,
    render_template,
)
from ticket_operator.tickets.models import Ticket


@pytest.fixture()
def composer(config) -> PromptComposer:
    return PromptComposer(config, IssueTypeRegistry.load_all(config.tickets_path))


def _feature(config) -> Ticket:
    path = write_ticket_file(
        config.tickets_path / "in-progress",
        "20241221-1200-FEAT-demo-dark-mode.md",
        ticket_id="FEAT-1",
        status="in-progress",
        step="plan",
        summary="Dark mode",
    )
    return Ticket.from_file(path)


def test_render_template_handles_spacing_and_triple_braces() -> None:
    text = render_template("{{ id }}/{{{summary}}}/{{missing}}.", {"id": "T-1", "summary": "S"})
    assert text == "T-1/S/."


def test_render_template_stringifies_values() -> None:
    assert render_template("{{a}} {{b}} {{c}}", {"a": True, "b": None, "c": 3}) == "true  3"


def test_compose_orders_parts(composer: PromptComposer, config, workspace: Path) -> None:
    ticket = _feature(config)
    prompt = composer.compose(ticket, workspace / "demo")
    parts = prompt.split(PART_SEPARATOR)
    assert parts[0].startswith("You implement features for demo")
    assert parts[1].startswith("Read the ticket for FEAT-1 (Dark mode)")
    assert "## Ticket Contents" in prompt
    assert prompt.endswith(OPERATOR_OUTPUT_INSTRUCTIONS)
    assert "## Previous Step Context" not in prompt


def test_compose_is_deterministic(composer: PromptComposer, config, workspace: Path) -> None:
    ticket = _feature(config)
    carry = StepCarry(summary="Planned", recommendation="Build it")
    first = composer.compose(ticket, workspace / "demo", carry)
    second = composer.compose(ticket, workspace / "demo", carry)
    assert first == second
    assert "**Summary:** Planned" in first
    assert "**Recommendation:** Build it" in first


def test_templates_directory_feeds_placeholders(
    composer: PromptComposer, config, workspace: Path
) -> None:
    config.templates_path.mkdir(parents=True, exist_ok=True)
    (config.templates_path / "ACCEPTANCE_CRITERIA.md").write_text(
        "- Works offline", encoding="utf-8"
    )
    prompt = composer.compose(_feature(config), workspace / "demo")
    assert "The plan must satisfy these acceptance criteria:\n- Works offline" in prompt


def test_build_context_exposes_ticket_attributes(
    composer: PromptComposer, config, workspace: Path
) -> None:
    context = composer.build_context(_feature(config), workspace / "demo")
    assert context["id"] == "FEAT-1"
    assert context["step_names"] == "plan, build, pr"
    assert context["step_count"] == 3
    assert context["branch"] == "feature/feat-1-dark-mode"
    assert context["ticket_path"] == "../.tickets/in-progress/20241221-1200-FEAT-demo-dark-mode.md"


def test_empty_carry_is_skipped() -> None:
    assert StepCarry().is_empty
    assert StepCarry(summary="x").render().startswith("## Previous Step Context")
