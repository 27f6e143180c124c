"""Parser for the ``---OPERATOR_STATUS---`` block agents print when they stop.

Wire format::

    ---OPERATOR_STATUS---
    status: complete
    exit_signal: true
    summary: Implemented the parser
    ---END_OPERATOR_STATUS---

Keys are case-insensitive and ``_``/``-`` are ignored, so ``exit-signal``
and ``ExitSignal`` both work. Pairs may also share a line
(``status: complete exit_signal: true``). Unknown keys are ignored.
``status`` and ``exit_signal`` are required; anything without them is
malformed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional

from ..core.exceptions import StatusBlockError

START_MARKER = "---OPERATOR_STATUS---"
END_MARKER = "---END_OPERATOR_STATUS---"

VALID_STATUSES = ("complete", "in_progress", "blocked", "failed")
SUMMARY_MAX_LEN = 500
RECOMMENDATION_MAX_LEN = 200

_TRUE_WORDS = {"true", "yes", "1", "on", "y"}
_INT_KEYS = {
    "filesmodified": "files_modified",
    "errorcount": "error_count",
    "taskscompleted": "tasks_completed",
    "tasksremaining": "tasks_remaining",
}
_FREE_TEXT_KEYS = {"summary", "recommendation", "blockers"}
_KNOWN_KEYS = {
    "status",
    "exitsignal",
    "confidence",
    "testsstatus",
    *_INT_KEYS,
    *_FREE_TEXT_KEYS,
}
_KEY_RE = re.compile(r"(?:^|(?<=\s))([A-Za-z][A-Za-z_-]*)\s*:")
# The format description in the prompt lists the allowed values for ``status``.
_TEMPLATE_RE = re.compile(r"^\s*status:\s*complete\s*\|", re.MULTILINE)


def _normalize_key(key: str) -> str:
    return key.strip().lower().replace("_", "").replace("-", "")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_WORDS


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except ValueError:
        return None


def _truncate(value: str, max_len: int) -> str:
    if len(value) <= max_len:
        return value
    head = value[:max_len]
    cut = head.rfind(" ")
    return f"{value[:cut] if cut > 0 else head}..."


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class StatusBlock:
    status: str
    exit_signal: bool
    confidence: Optional[int] = None
    files_modified: Optional[int] = None
    tests_status: Optional[str] = None
    error_count: Optional[int] = None
    tasks_completed: Optional[int] = None
    tasks_remaining: Optional[int] = None
    summary: Optional[str] = None
    recommendation: Optional[str] = None
    blockers: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status, "exit_signal": self.exit_signal}
        for key in (
            "confidence",
            "files_modified",
            "tests_status",
            "error_count",
            "tasks_completed",
            "tasks_remaining",
            "summary",
            "recommendation",
        ):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.blockers:
            data["blockers"] = list(self.blockers)
        return data

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StatusBlock":
        """Build a block from already-structured data (REST callers)."""
        lines = []
        for key, value in raw.items():
            if isinstance(value, (list, tuple)):
                value = ", ".join(str(v) for v in value)
            elif isinstance(value, bool):
                value = "true" if value else "false"
            lines.append(f"{key}: {value}")
        return _parse_pairs(lines)


def _split_line(line: str) -> list[tuple[str, str]]:
    matches = [m for m in _KEY_RE.finditer(line) if _normalize_key(m.group(1)) in _KNOWN_KEYS]
    if not matches:
        return []
    pairs: list[tuple[str, str]] = []
    for index, match in enumerate(matches):
        key = _normalize_key(match.group(1))
        if key in _FREE_TEXT_KEYS:
            pairs.append((key, line[match.end():].strip()))
            break
        end = matches[index + 1].start() if index + 1 < len(matches) else len(line)
        pairs.append((key, line[match.end():end].strip()))
    return pairs


def _parse_pairs(lines: list[str]) -> StatusBlock:
    values: dict[str, Any] = {}
    for raw_line in lines:
        for key, value in _split_line(raw_line.strip()):
            if key == "status":
                values["status"] = value.lower()
            elif key == "exitsignal":
                values["exit_signal"] = _parse_bool(value)
            elif key == "confidence":
                confidence = _parse_int(value)
                if confidence is not None and 0 <= confidence <= 100:
                    values["confidence"] = confidence
            elif key in _INT_KEYS:
                values[_INT_KEYS[key]] = _parse_int(value)
            elif key == "testsstatus":
                values["tests_status"] = value
            elif key == "summary":
                values["summary"] = _truncate(value, SUMMARY_MAX_LEN)
            elif key == "recommendation":
                values["recommendation"] = _truncate(value, RECOMMENDATION_MAX_LEN)
            elif key == "blockers":
                values["blockers"] = _parse_list(value)
    missing = [key for key in ("status", "exit_signal") if key not in values]
    if missing:
        raise StatusBlockError(f"Status block missing required field(s): {', '.join(missing)}")
    if values["status"] not in VALID_STATUSES:
        raise StatusBlockError(f"Unknown status in status block: {values['status']!r}")
    return StatusBlock(**values)


def parse_status_block(text: str) -> StatusBlock:
    """Parse the first marker-delimited block in ``text``."""
    start = text.find(START_MARKER)
    if start == -1:
        raise StatusBlockError("No status block found")
    end = text.find(END_MARKER, start + len(START_MARKER))
    if end == -1:
        raise StatusBlockError("Status block is not terminated")
    body = text[start + len(START_MARKER):end]
    return _parse_pairs(body.splitlines())


def _block_bodies(text: str) -> Iterator[str]:
    position = 0
    while True:
        start = text.find(START_MARKER, position)
        if start == -1:
            return
        end = text.find(END_MARKER, start + len(START_MARKER))
        if end == -1:
            return
        yield text[start + len(START_MARKER):end]
        position = end + len(END_MARKER)


def find_last_status_block(text: str) -> Optional[StatusBlock]:
    """Return the last well-formed block in ``text``, skipping malformed ones."""
    found: Optional[StatusBlock] = None
    for body in _block_bodies(text):
        try:
            found = _parse_pairs(body.splitlines())
        except StatusBlockError:
            continue
    return found


def has_status_markers(text: str) -> bool:
    """True if the agent printed a delimited block, ignoring an echoed format description."""
    return any(not _TEMPLATE_RE.search(body) for body in _block_bodies(text))
