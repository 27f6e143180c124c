from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from ..core.utils import dedupe_preserve_order

PROVIDERS = ("claude", "gemini", "codex")

_TOOL_PATTERN_RE = re.compile(r"^([A-Za-z_][\w.-]*)\((.*)\)$")


@dataclass(frozen=True)
class ToolPattern:
    """A tool name with an optional argument pattern, ``Bash(git:*)``."""

    tool: str
    pattern: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> "ToolPattern":
        if isinstance(raw, ToolPattern):
            return raw
        if isinstance(raw, Mapping):
            tool = str(raw.get("tool") or "").strip()
            pattern = raw.get("pattern")
            if not tool:
                raise ValueError("tool pattern requires a 'tool' name")
            return cls(tool, str(pattern) if pattern not in (None, "") else None)
        text = str(raw).strip()
        match = _TOOL_PATTERN_RE.match(text)
        if match:
            return cls(match.group(1), match.group(2) or None)
        if not text:
            raise ValueError("empty tool pattern")
        return cls(text)

    def format(self) -> str:
        if self.pattern:
            return f"{self.tool}({self.pattern})"
        return self.tool

    def __str__(self) -> str:
        return self.format()


def _str_list(raw: Any) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        return [raw]
    return [str(item) for item in raw if str(item).strip()]


def _nested_list(raw: Mapping[str, Any], section: str, key: str) -> list[Any]:
    value = raw.get(section)
    if not isinstance(value, Mapping):
        return []
    items = value.get(key)
    return list(items) if isinstance(items, (list, tuple)) else []


@dataclass(frozen=True)
class StepPermissions:
    """Allow-lists declared by a project file or a step schema."""

    tools: tuple[ToolPattern, ...] = ()
    directories: tuple[str, ...] = ()
    mcp_servers: tuple[str, ...] = ()
    custom_flags: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "StepPermissions":
        if not raw:
            return cls()
        flags_raw = raw.get("custom_flags") or {}
        custom_flags: dict[str, dict[str, str]] = {}
        if isinstance(flags_raw, Mapping):
            for provider, flags in flags_raw.items():
                if isinstance(flags, Mapping):
                    custom_flags[str(provider)] = {
                        str(k): "" if v is None else str(v) for k, v in flags.items()
                    }
        return cls(
            tools=tuple(
                ToolPattern.parse(item) for item in _nested_list(raw, "tools", "allow")
            ),
            directories=tuple(
                _str_list(_nested_list(raw, "directories", "allow"))
            ),
            mcp_servers=tuple(
                _str_list(_nested_list(raw, "mcp_servers", "enable"))
            ),
            custom_flags=custom_flags,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.tools:
            data["tools"] = {"allow": [t.format() for t in self.tools]}
        if self.directories:
            data["directories"] = {"allow": list(self.directories)}
        if self.mcp_servers:
            data["mcp_servers"] = {"enable": list(self.mcp_servers)}
        if self.custom_flags:
            data["custom_flags"] = {k: dict(v) for k, v in self.custom_flags.items()}
        return data

    def is_empty(self) -> bool:
        return not (
            self.tools or self.directories or self.mcp_servers or self.custom_flags
        )

    def with_directory(self, directory: str) -> "StepPermissions":
        return StepPermissions(
            tools=self.tools,
            directories=tuple(dedupe_preserve_order([*self.directories, directory])),
            mcp_servers=self.mcp_servers,
            custom_flags=self.custom_flags,
        )

    def with_tools(self, tools: Iterable[str]) -> "StepPermissions":
        return StepPermissions(
            tools=tuple(
                dedupe_preserve_order([*self.tools, *(ToolPattern.parse(t) for t in tools)])
            ),
            directories=self.directories,
            mcp_servers=self.mcp_servers,
            custom_flags=self.custom_flags,
        )


@dataclass(frozen=True)
class ProviderCliArgs:
    claude: tuple[str, ...] = ()
    gemini: tuple[str, ...] = ()
    codex: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "ProviderCliArgs":
        if not raw:
            return cls()
        return cls(
            claude=tuple(_str_list(raw.get("claude"))),
            gemini=tuple(_str_list(raw.get("gemini"))),
            codex=tuple(_str_list(raw.get("codex"))),
        )

    def to_dict(self) -> dict[str, list[str]]:
        return {
            name: list(getattr(self, name)) for name in PROVIDERS if getattr(self, name)
        }

    def for_provider(self, provider: str) -> tuple[str, ...]:
        if provider in PROVIDERS:
            return getattr(self, provider)
        return ()

    def is_empty(self) -> bool:
        return not (self.claude or self.gemini or self.codex)


@dataclass(frozen=True)
class PermissionSet:
    """Provider-agnostic permission envelope for one session.

    Built only by union: nothing here can remove a grant, denial is the
    absence of an entry.
    """

    tools: tuple[ToolPattern, ...] = ()
    directories: tuple[str, ...] = ()
    mcp_servers: tuple[str, ...] = ()
    custom_flags: dict[str, dict[str, str]] = field(default_factory=dict)
    cli_args: ProviderCliArgs = field(default_factory=ProviderCliArgs)

    @classmethod
    def from_step(
        cls,
        permissions: StepPermissions,
        cli_args: Optional[ProviderCliArgs] = None,
    ) -> "PermissionSet":
        return cls(
            tools=tuple(dedupe_preserve_order(permissions.tools)),
            directories=tuple(dedupe_preserve_order(permissions.directories)),
            mcp_servers=tuple(dedupe_preserve_order(permissions.mcp_servers)),
            custom_flags={k: dict(v) for k, v in permissions.custom_flags.items()},
            cli_args=cli_args or ProviderCliArgs(),
        )

    def union(self, other: "PermissionSet") -> "PermissionSet":
        flags: dict[str, dict[str, str]] = {
            k: dict(v) for k, v in self.custom_flags.items()
        }
        for provider, values in other.custom_flags.items():
            flags.setdefault(provider, {}).update(values)
        return PermissionSet(
            tools=tuple(dedupe_preserve_order([*self.tools, *other.tools])),
            directories=tuple(
                dedupe_preserve_order([*self.directories, *other.directories])
            ),
            mcp_servers=tuple(
                dedupe_preserve_order([*self.mcp_servers, *other.mcp_servers])
            ),
            custom_flags=flags,
            cli_args=ProviderCliArgs(
                claude=tuple(
                    dedupe_preserve_order([*self.cli_args.claude, *other.cli_args.claude])
                ),
                gemini=tuple(
                    dedupe_preserve_order([*self.cli_args.gemini, *other.cli_args.gemini])
                ),
                codex=tuple(
                    dedupe_preserve_order([*self.cli_args.codex, *other.cli_args.codex])
                ),
            ),
        )

    @classmethod
    def merge(
        cls,
        project: StepPermissions,
        step: StepPermissions,
        cli_args: Optional[ProviderCliArgs] = None,
    ) -> "PermissionSet":
        """Project grants first, then the step's, then the step's CLI args."""
        return cls.from_step(project).union(cls.from_step(step, cli_args))

    def tool_names(self) -> list[str]:
        return [tool.format() for tool in self.tools]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tools": self.tool_names(),
            "directories": list(self.directories),
            "mcp_servers": list(self.mcp_servers),
            "custom_flags": {k: dict(v) for k, v in self.custom_flags.items()},
            "cli_args": self.cli_args.to_dict(),
        }
