from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from importlib import resources
from typing import Any, Callable, Mapping, Optional, Sequence

from ...core.exceptions import ToolNotDetectedError
from ...core.logging_utils import log_event

logger = logging.getLogger(__name__)

BUILTIN_TOOL_NAMES = ("claude", "gemini", "codex")
_VERSION_RE = re.compile(r"v?(\d+)\.(\d+)(?:\.(\d+))?")

WhichFn = Callable[[str], Optional[str]]
RunFn = Callable[..., "subprocess.CompletedProcess[str]"]


@dataclass(frozen=True)
class ToolDefinition:
    tool_name: str
    version_command: str
    command_template: str
    display_name: Optional[str] = None
    model_aliases: tuple[str, ...] = ()
    model_arg: str = ""
    yolo_flags: tuple[str, ...] = ()
    supports_sessions: bool = False
    supports_headless: bool = False

    @property
    def label(self) -> str:
        return self.display_name or self.tool_name

    def model_flag(self, model: str) -> str:
        if not self.model_arg or not model:
            return ""
        return f"{self.model_arg} {model} "

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ToolDefinition":
        capabilities = raw.get("capabilities") or {}
        arg_mapping = raw.get("arg_mapping") or {}
        return cls(
            tool_name=str(raw["tool_name"]),
            display_name=raw.get("display_name"),
            version_command=str(raw.get("version_command") or ""),
            command_template=str(raw["command_template"]),
            model_aliases=tuple(str(m) for m in raw.get("model_aliases") or ()),
            model_arg=str(arg_mapping.get("model") or ""),
            yolo_flags=tuple(str(f) for f in raw.get("yolo_flags") or ()),
            supports_sessions=bool(capabilities.get("supports_sessions", False)),
            supports_headless=bool(capabilities.get("supports_headless", False)),
        )


@dataclass(frozen=True)
class DetectedTool:
    definition: ToolDefinition
    path: str
    version: str = "unknown"

    @property
    def name(self) -> str:
        return self.definition.tool_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.definition.label,
            "path": self.path,
            "version": self.version,
            "model_aliases": list(self.definition.model_aliases),
        }


def load_builtin_tools() -> list[ToolDefinition]:
    package = resources.files("ticket_operator.agents.tools")
    definitions: list[ToolDefinition] = []
    for name in BUILTIN_TOOL_NAMES:
        raw = json.loads((package / f"{name}.json").read_text(encoding="utf-8"))
        definitions.append(ToolDefinition.from_dict(raw))
    return definitions


def parse_version(text: str) -> Optional[tuple[int, ...]]:
    match = _VERSION_RE.search(text or "")
    if not match:
        return None
    return tuple(int(part) for part in match.groups() if part is not None)


def _read_version(command: str, run_fn: RunFn) -> str:
    parts = command.split()
    if not parts:
        return "unknown"
    try:
        proc = run_fn(parts, capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return "unknown"
    if proc.returncode != 0:
        return "unknown"
    return (proc.stdout or "").strip() or "unknown"


def detect_tools(
    definitions: Optional[Sequence[ToolDefinition]] = None,
    *,
    which: WhichFn = shutil.which,
    run_fn: Optional[RunFn] = None,
    enabled: Sequence[str] = (),
) -> dict[str, DetectedTool]:
    """Return the installed tools keyed by name.

    ``enabled`` narrows detection to the listed names when non-empty. With
    no ``run_fn`` the version probe is skipped.
    """
    detected: dict[str, DetectedTool] = {}
    for definition in definitions if definitions is not None else load_builtin_tools():
        if enabled and definition.tool_name not in enabled:
            continue
        path = which(definition.tool_name)
        if not path:
            continue
        version = (
            _read_version(definition.version_command, run_fn) if run_fn else "unknown"
        )
        detected[definition.tool_name] = DetectedTool(definition, path, version)
        log_event(
            logger,
            logging.DEBUG,
            "tools.detected",
            tool=definition.tool_name,
            path=path,
            version=version,
        )
    return detected


@dataclass
class ToolRegistry:
    """Detected tools, looked up by provider name at launch time."""

    tools: dict[str, DetectedTool] = field(default_factory=dict)

    def require(self, name: str) -> DetectedTool:
        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotDetectedError(name)
        return tool

    def names(self) -> list[str]:
        return sorted(self.tools)

    def __contains__(self, name: object) -> bool:
        return name in self.tools
