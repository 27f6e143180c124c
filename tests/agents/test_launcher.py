from __future__ import annotations

import os
from pathlib import Path

import pytest

from conftest import write_ticket_file
from ticket_operator.agents.launcher import LaunchOptions
from ticket_operator.core.exceptions import (
    ConflictError,
    DockerImageMissingError,
    PreconditionError,
    TmuxError,
)


@pytest.fixture()
def ticket(context):
    write_ticket_file(
        context.queue.in_progress_dir,
        "20241221-1200-TASK-demo-readme.md",
        ticket_id="TASK-7",
        status="in-progress",
        summary="Update the readme",
    )
    return context.queue.require_ticket("TASK-7")


def test_prepare_writes_prompt_and_script(context, ticket, fake_tmux, workspace: Path) -> None:
    prepared = context.launcher.prepare(ticket, LaunchOptions.from_config(context.config))

    assert prepared.agent_id == prepared.session_uuid.split("-")[0]
    assert prepared.session_name == "op-TASK-7"
    assert prepared.step == "execute"
    assert prepared.provider == "claude"
    assert prepared.model == "sonnet"
    assert prepared.working_dir == str(workspace / "demo")
    assert fake_tmux.created == []

    prompt = Path(prepared.prompt_file).read_text(encoding="utf-8")
    assert "TASK-7" in prompt
    assert "---OPERATOR_STATUS---" in prompt

    script = Path(prepared.script_file)
    assert script.read_text(encoding="utf-8").startswith(
        f"#!/bin/bash\ncd '{workspace / 'demo'}'\nexec claude "
    )
    assert os.access(script, os.X_OK)
    assert "--model sonnet" in prepared.command
    assert f"--session-id {prepared.session_uuid}" in prepared.command

    reloaded = context.queue.require_ticket("TASK-7")
    assert reloaded.step == "execute"
    assert reloaded.sessions == {"execute": prepared.session_uuid}


def test_launch_starts_session_running_script(context, ticket, fake_tmux) -> None:
    prepared = context.launcher.launch(ticket, LaunchOptions.from_config(context.config))
    assert fake_tmux.created == ["op-TASK-7"]
    assert fake_tmux.commands["op-TASK-7"] == prepared.session_command
    assert prepared.session_command == f"bash {prepared.script_file}"


def test_launch_refuses_existing_session(context, ticket, fake_tmux) -> None:
    fake_tmux.panes["op-TASK-7"] = ""
    with pytest.raises(ConflictError):
        context.launcher.launch(ticket, LaunchOptions.from_config(context.config))
    assert list(context.config.prompts_path.glob("*.txt")) == []


def test_launch_checks_tmux_version(context, ticket, fake_tmux) -> None:
    fake_tmux.version = "tmux 1.8"
    with pytest.raises(TmuxError):
        context.launcher.launch(ticket, LaunchOptions.from_config(context.config))
    assert fake_tmux.created == []


def test_model_defaults_per_provider(context, ticket) -> None:
    gemini = context.launcher.prepare(ticket, LaunchOptions(provider="gemini"))
    assert gemini.model == "pro"
    explicit = context.launcher.prepare(ticket, LaunchOptions(provider="claude", model="opus"))
    assert explicit.model == "opus"


def test_yolo_flags_are_included(context, ticket) -> None:
    prepared = context.launcher.prepare(ticket, LaunchOptions(yolo=True))
    assert prepared.command.startswith("claude --dangerously-skip-permissions ")


def test_overrides_that_are_none_keep_config_values(config) -> None:
    options = LaunchOptions.from_config(config, provider=None, model="haiku", docker=None)
    assert options.provider == "claude"
    assert options.model == "haiku"
    assert options.docker is False


def test_docker_requires_an_image(context, ticket) -> None:
    with pytest.raises(DockerImageMissingError):
        context.launcher.prepare(ticket, LaunchOptions(docker=True))


def test_docker_wraps_command(make_context, workspace: Path) -> None:
    context = make_context({"OPERATOR_LAUNCH__DOCKER__IMAGE": "operator/agent:latest"})
    write_ticket_file(
        context.queue.in_progress_dir,
        "20241221-1200-TASK-demo-readme.md",
        ticket_id="TASK-7",
        status="in-progress",
    )
    ticket = context.queue.require_ticket("TASK-7")
    prepared = context.launcher.prepare(ticket, LaunchOptions(docker=True))
    assert prepared.command.startswith("docker run --rm -it -v ")
    assert f"{workspace / 'demo'}:/workspace:rw" in prepared.command
    assert "operator/agent:latest sh -c 'claude " in prepared.command


def test_project_override_must_exist(context, ticket, workspace: Path) -> None:
    with pytest.raises(PreconditionError):
        context.launcher.prepare(ticket, LaunchOptions(project_override="missing"))
    (workspace / "other").mkdir()
    prepared = context.launcher.prepare(ticket, LaunchOptions(project_override="other"))
    assert prepared.working_dir == str(workspace / "other")


def test_unknown_provider_is_a_precondition_error(context, ticket) -> None:
    with pytest.raises(PreconditionError):
        context.launcher.prepare(ticket, LaunchOptions(provider="not-a-tool"))


def test_worktree_is_used_as_working_dir(make_context, fake_tmux, tmp_path: Path) -> None:
    context = make_context({"OPERATOR_GIT__USE_WORKTREES": "true"})
    write_ticket_file(
        context.queue.in_progress_dir,
        "20241221-1200-FEAT-demo-dark.md",
        ticket_id="FEAT-2",
        status="in-progress",
        summary="Dark mode toggle",
    )
    ticket = context.queue.require_ticket("FEAT-2")

    prepared = context.launcher.prepare(ticket, LaunchOptions())

    expected = tmp_path / "worktrees" / "demo" / "feat-2"
    assert prepared.worktree_created
    assert prepared.working_dir == str(expected)
    assert prepared.branch == "feature/feat-2-dark-mode-toggle"
    add = [call for call in fake_tmux.calls if call[:3] == ["git", "worktree", "add"]]
    assert add == [
        ["git", "worktree", "add", "-b", prepared.branch, str(expected), "origin/main"]
    ]
    reloaded = context.queue.require_ticket("FEAT-2")
    assert reloaded.worktree_path == str(expected)
    assert reloaded.branch == prepared.branch
