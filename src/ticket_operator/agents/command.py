"""Turn a tool's command template into the shell line a session runs."""

from __future__ import annotations

import shlex
from typing import Sequence

from ..core.config import DockerConfig
from ..core.exceptions import DockerImageMissingError
from .tools import ToolDefinition

YOLO_PLACEHOLDER = "{{yolo_flags}}"


def shell_escape(value: str) -> str:
    """Single-quote ``value`` for POSIX shells, embedded quotes included."""
    return "'" + value.replace("'", "'\"'\"'") + "'"


def render_flags(flags: Sequence[str]) -> str:
    """Space-joined, shell-quoted flags with a trailing space; empty when none."""
    if not flags:
        return ""
    return " ".join(shlex.quote(flag) for flag in flags) + " "


def splice_after_first_token(command: str, flags: Sequence[str]) -> str:
    if not flags:
        return command
    head, sep, rest = command.partition(" ")
    inserted = " ".join(flags)
    if not sep:
        return f"{head} {inserted}"
    return f"{head} {inserted} {rest}"


def build_tool_command(
    tool: ToolDefinition,
    *,
    model: str,
    session_id: str,
    prompt_file: str,
    config_flags: Sequence[str] = (),
    yolo: bool = False,
) -> str:
    template = tool.command_template
    yolo_flags = list(tool.yolo_flags) if yolo else []
    has_placeholder = YOLO_PLACEHOLDER in template
    command = (
        template.replace(YOLO_PLACEHOLDER, render_flags(yolo_flags))
        .replace("{{config_flags}}", render_flags(config_flags))
        .replace("{{model_flag}}", tool.model_flag(model))
        .replace("{{model}}", model)
        .replace("{{session_id}}", session_id)
        .replace("{{prompt_file}}", shlex.quote(prompt_file))
    )
    if yolo_flags and not has_placeholder:
        command = splice_after_first_token(command, yolo_flags)
    return command


def build_docker_command(docker: DockerConfig, inner: str, project_path: str) -> str:
    if not docker.image:
        raise DockerImageMissingError()
    args = [
        "docker",
        "run",
        "--rm",
        "-it",
        "-v",
        shlex.quote(f"{project_path}:{docker.mount_path}:rw"),
        "-w",
        shlex.quote(docker.mount_path),
    ]
    for env_var in docker.env_vars:
        args.extend(["-e", shlex.quote(env_var)])
    args.extend(docker.extra_args)
    args.extend([shlex.quote(docker.image), "sh", "-c", shell_escape(inner)])
    return " ".join(args)


def launch_script(project_path: str, command: str) -> str:
    return f"#!/bin/bash\ncd {shell_escape(project_path)}\nexec {command}\n"
