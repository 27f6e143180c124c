from __future__ import annotations

import re
from typing import Any, Optional, Tuple

import yaml

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?=\r?\n|\Z)", re.S)


def split_markdown_frontmatter(text: str) -> Tuple[Optional[str], str]:
    """Split ``---`` delimited frontmatter from the body.

    A missing closing delimiter means there is no frontmatter; the whole text
    is returned as the body.
    """
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return None, text
    return match.group(1), text[match.end() :]


def parse_markdown_frontmatter(text: str) -> Tuple[dict[str, Any], str]:
    raw, body = split_markdown_frontmatter(text)
    if raw is None:
        return {}, body
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError:
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return {str(k): v for k, v in data.items()}, body


def render_markdown_frontmatter(data: dict[str, Any], body: str) -> str:
    """Serialize ``data`` with sorted keys ahead of ``body``."""
    dumped = yaml.safe_dump(
        data,
        sort_keys=True,
        default_flow_style=False,
        allow_unicode=True,
    ).rstrip("\n")
    if not body:
        body = "\n"
    elif not body.startswith("\n"):
        body = "\n" + body
    return f"---\n{dumped}\n---{body}"
