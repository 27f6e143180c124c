"""Provider translators: the only code that knows each CLI's flag vocabulary."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..core.utils import atomic_write
from .models import PermissionSet, ToolPattern


@dataclass(frozen=True)
class GeneratedConfig:
    cli_flags: list[str] = field(default_factory=list)
    config_path: Optional[Path] = None
    audit_info: str = ""


def _flag(name: str) -> str:
    return name if name.startswith("-") else f"--{name}"


class PermissionTranslator:
    provider_name: str = ""
    config_filename: Optional[str] = None

    def generate_cli_flags(self, permissions: PermissionSet) -> list[str]:
        return []

    def generate_config_content(self, permissions: PermissionSet) -> Optional[str]:
        return None

    @property
    def uses_cli_only(self) -> bool:
        return self.config_filename is None


class ClaudeTranslator(PermissionTranslator):
    provider_name = "claude"

    def generate_cli_flags(self, permissions: PermissionSet) -> list[str]:
        flags: list[str] = []
        for tool in permissions.tools:
            flags.extend(["--allowedTools", tool.format()])
        for directory in permissions.directories:
            flags.extend(["--add-dir", directory])
        for name, value in sorted(permissions.custom_flags.get("claude", {}).items()):
            flags.append(_flag(name))
            if value:
                flags.append(value)
        return flags


class GeminiTranslator(PermissionTranslator):
    provider_name = "gemini"
    config_filename = "settings.json"

    TOOL_NAMES = {
        "Bash": "ShellTool",
        "Read": "ReadFileTool",
        "Write": "WriteFileTool",
        "Edit": "EditFileTool",
        "Glob": "GlobTool",
        "Grep": "GrepTool",
        "WebFetch": "WebFetchTool",
    }

    def _format_tool(self, tool: ToolPattern) -> str:
        name = self.TOOL_NAMES.get(tool.tool, tool.tool)
        return f"{name}({tool.pattern})" if tool.pattern else name

    def generate_config_content(self, permissions: PermissionSet) -> Optional[str]:
        config: dict[str, object] = {}
        if permissions.tools:
            config["coreTools"] = [self._format_tool(t) for t in permissions.tools]
        if permissions.directories:
            config["includeDirectories"] = list(permissions.directories)
        if permissions.mcp_servers:
            config["mcpServers"] = {
                server: {"trust": True} for server in permissions.mcp_servers
            }
        for key, value in permissions.custom_flags.get("gemini", {}).items():
            config[key] = value
        if not config:
            return None
        return json.dumps(config, indent=2) + "\n"


def _toml_string(value: str) -> str:
    return json.dumps(value)


class CodexTranslator(PermissionTranslator):
    provider_name = "codex"
    config_filename = "config.toml"

    TOOL_NAMES = {
        "Bash": "exec",
        "Read": "read_file",
        "Write": "write_file",
        "Edit": "apply_patch",
        "Glob": "glob",
        "Grep": "grep",
    }

    def _tool_name(self, tool: str) -> str:
        return self.TOOL_NAMES.get(tool, tool.lower())

    def generate_config_content(self, permissions: PermissionSet) -> Optional[str]:
        lines: list[str] = []
        for key, value in sorted(permissions.custom_flags.get("codex", {}).items()):
            lines.append(f"{key} = {_toml_string(value)}")
        if lines:
            lines.append("")

        allow_by_tool: dict[str, list[str]] = {}
        for tool in permissions.tools:
            patterns = allow_by_tool.setdefault(self._tool_name(tool.tool), [])
            if tool.pattern:
                patterns.append(tool.pattern)
        if permissions.directories:
            for name in ("read_file", "write_file", "apply_patch"):
                allow_by_tool.setdefault(name, []).extend(permissions.directories)

        for server in permissions.mcp_servers:
            lines.append(f"[mcp_servers.{_toml_string(server)}]")
            lines.append("enabled = true")
            lines.append("")
        for name in sorted(allow_by_tool):
            patterns = allow_by_tool[name]
            if not patterns:
                continue
            rendered = ", ".join(_toml_string(p) for p in patterns)
            lines.append(f"[tools.{_toml_string(name)}]")
            lines.append(f"allow_patterns = [{rendered}]")
            lines.append("")
        if not lines:
            return None
        return "\n".join(lines).rstrip("\n") + "\n"


class TranslatorManager:
    def __init__(self) -> None:
        self._translators: dict[str, PermissionTranslator] = {
            t.provider_name: t
            for t in (ClaudeTranslator(), GeminiTranslator(), CodexTranslator())
        }

    def get(self, provider: str) -> Optional[PermissionTranslator]:
        return self._translators.get(provider)

    def providers(self) -> list[str]:
        return list(self._translators)

    def generate_config(
        self, provider: str, permissions: PermissionSet, session_dir: Path
    ) -> GeneratedConfig:
        """Translate ``permissions`` for ``provider``, writing any aux file.

        Unknown providers get no permission flags, only their CLI args.
        """
        translator = self.get(provider)
        flags: list[str] = []
        config_path: Optional[Path] = None
        if translator is not None:
            flags.extend(translator.generate_cli_flags(permissions))
            content = translator.generate_config_content(permissions)
            if content is not None and translator.config_filename:
                config_path = session_dir / translator.config_filename
                atomic_write(config_path, content)
                flags.extend(["--config-dir", str(session_dir)])
        flags.extend(permissions.cli_args.for_provider(provider))
        audit = (
            f"provider={provider} tools={len(permissions.tools)} "
            f"directories={len(permissions.directories)} "
            f"mcp_servers={len(permissions.mcp_servers)}"
        )
        return GeneratedConfig(cli_flags=flags, config_path=config_path, audit_info=audit)
