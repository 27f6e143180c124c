from __future__ import annotations

import json
from pathlib import Path

from ticket_operator.issuetypes import StepSchema
from ticket_operator.permissions.models import PermissionSet, ProviderCliArgs, StepPermissions
from ticket_operator.permissions.resolver import (
    PermissionResolver,
    load_project_permissions,
    step_permissions,
)
from ticket_operator.permissions.translators import TranslatorManager


def _set(**raw) -> PermissionSet:
    return PermissionSet.from_step(StepPermissions.from_dict(raw))


def test_claude_flags(tmp_path: Path) -> None:
    perms = _set(
        tools={"allow": ["Read", "Bash(git:*)"]},
        directories={"allow": ["/data"]},
        custom_flags={"claude": {"max-turns": "5", "--verbose": ""}},
    )
    generated = TranslatorManager().generate_config("claude", perms, tmp_path)
    assert generated.cli_flags == [
        "--allowedTools",
        "Read",
        "--allowedTools",
        "Bash(git:*)",
        "--add-dir",
        "/data",
        "--verbose",
        "--max-turns",
        "5",
    ]
    assert generated.config_path is None
    assert list(tmp_path.iterdir()) == []


def test_gemini_writes_settings_file(tmp_path: Path) -> None:
    perms = _set(
        tools={"allow": ["Read", "Bash(npm test)"]},
        directories={"allow": ["/data"]},
        mcp_servers={"enable": ["github"]},
    )
    generated = TranslatorManager().generate_config("gemini", perms, tmp_path)
    assert generated.config_path == tmp_path / "settings.json"
    assert generated.cli_flags == ["--config-dir", str(tmp_path)]
    settings = json.loads(generated.config_path.read_text(encoding="utf-8"))
    assert settings == {
        "coreTools": ["ReadFileTool", "ShellTool(npm test)"],
        "includeDirectories": ["/data"],
        "mcpServers": {"github": {"trust": True}},
    }


def test_codex_writes_toml(tmp_path: Path) -> None:
    perms = _set(
        tools={"allow": ["Bash(cargo test)", "Read"]},
        directories={"allow": ["/src"]},
        custom_flags={"codex": {"model": "o3"}},
    )
    generated = TranslatorManager().generate_config("codex", perms, tmp_path)
    text = generated.config_path.read_text(encoding="utf-8")
    assert text.startswith('model = "o3"\n')
    assert '[tools."exec"]\nallow_patterns = ["cargo test"]' in text
    assert '[tools."read_file"]\nallow_patterns = ["/src"]' in text


def test_empty_permissions_write_nothing(tmp_path: Path) -> None:
    manager = TranslatorManager()
    for provider in manager.providers():
        generated = manager.generate_config(provider, PermissionSet(), tmp_path)
        assert generated.cli_flags == []
        assert generated.config_path is None


def test_unknown_provider_only_gets_cli_args(tmp_path: Path) -> None:
    perms = PermissionSet(cli_args=ProviderCliArgs(claude=("--x",)))
    generated = TranslatorManager().generate_config("aider", perms, tmp_path)
    assert generated.cli_flags == []


def test_step_permissions_fall_back_to_allowed_tools() -> None:
    step = StepSchema(name="build", allowed_tools=("Read", "Bash", "*"))
    assert [t.format() for t in step_permissions(step).tools] == ["Read", "Bash"]


def test_project_permissions_file(tmp_path: Path) -> None:
    assert load_project_permissions(tmp_path).is_empty()
    target = tmp_path / ".operator" / "permissions.json"
    target.parent.mkdir()
    target.write_text(json.dumps({"base": {"tools": {"allow": ["WebFetch"]}}}), encoding="utf-8")
    assert [t.tool for t in load_project_permissions(tmp_path).tools] == ["WebFetch"]
    target.write_text("{broken", encoding="utf-8")
    assert load_project_permissions(tmp_path).is_empty()


def test_resolver_writes_audit_and_adds_claude_extras(config, workspace: Path) -> None:
    step = StepSchema(
        name="plan",
        allowed_tools=("Read",),
        permission_mode="plan",
        json_schema={"type": "object"},
    )
    project = workspace / "demo"
    generated = PermissionResolver(config).resolve(
        ticket_id="FEAT-1",
        session_id="abc",
        step=step,
        provider="claude",
        project_path=project,
    )
    session_dir = config.sessions_path / "FEAT-1"
    flags = generated.cli_flags
    assert flags[:2] == ["--allowedTools", "Read"]
    assert ["--add-dir", str(config.tickets_path)] == flags[2:4]
    assert "--permission-mode" in flags and "plan" in flags
    assert flags[flags.index("--json-schema") + 1] == str(session_dir / "schema.json")
    assert flags[-2:] == ["--add-dir", str(project)]

    audit = json.loads((session_dir / "audit.json").read_text(encoding="utf-8"))
    assert audit["session_id"] == "abc"
    assert audit["provider"] == "claude"
    assert audit["flags"] == flags
