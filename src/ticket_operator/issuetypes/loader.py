"""Read issue type definitions and collections from disk."""

from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from ..core.logging_utils import log_event
from ..core.utils import write_json
from .collection import IssueTypeCollection
from .schema import IssueType, IssueTypeSource

logger = logging.getLogger(__name__)

BUILTIN_KEYS = ("TASK", "FEAT", "FIX", "SPIKE", "INV")
COLLECTIONS_FILENAME = "collections.toml"
_RESERVED_STEMS = {"imports", "collections"}


@dataclass
class LoadedTypes:
    types: list[IssueType] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def load_builtin_types() -> list[IssueType]:
    package = resources.files("ticket_operator.issuetypes.builtins")
    loaded: list[IssueType] = []
    for key in BUILTIN_KEYS:
        raw = json.loads((package / f"{key}.json").read_text(encoding="utf-8"))
        loaded.append(IssueType.from_dict(raw, source=IssueTypeSource.builtin()))
    return loaded


def _read_type_file(path: Path, source: IssueTypeSource) -> IssueType:
    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("issue type file must contain a JSON object")
    return IssueType.from_dict(raw, source=source)


def load_user_types(issuetypes_dir: Path) -> LoadedTypes:
    """Read ``<KEY>.json`` files; broken files are skipped with a warning."""
    result = LoadedTypes()
    if not issuetypes_dir.is_dir():
        return result
    for path in sorted(issuetypes_dir.glob("*.json")):
        if path.stem in _RESERVED_STEMS:
            continue
        try:
            result.types.append(_read_type_file(path, IssueTypeSource.user()))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            message = f"Skipping invalid issue type file {path.name}: {exc}"
            result.warnings.append(message)
            log_event(logger, logging.WARNING, "issuetypes.user.invalid", path=path, exc=exc)
    return result


def load_imported_types(issuetypes_dir: Path) -> LoadedTypes:
    """Read ``imports/<provider>/<project>/*.json`` as namespaced types.

    The key becomes ``<PROJECT>_<KEY>`` so imports never shadow local types.
    """
    result = LoadedTypes()
    imports_dir = issuetypes_dir / "imports"
    if not imports_dir.is_dir():
        return result
    for provider_dir in sorted(p for p in imports_dir.iterdir() if p.is_dir()):
        for project_dir in sorted(p for p in provider_dir.iterdir() if p.is_dir()):
            source = IssueTypeSource.imported(provider_dir.name, project_dir.name)
            prefix = project_dir.name.upper().replace("-", "_")
            for path in sorted(project_dir.glob("*.json")):
                try:
                    issue_type = _read_type_file(path, source)
                except (OSError, ValueError, KeyError, TypeError) as exc:
                    message = f"Skipping invalid imported type {path}: {exc}"
                    result.warnings.append(message)
                    log_event(
                        logger,
                        logging.WARNING,
                        "issuetypes.import.invalid",
                        path=path,
                        exc=exc,
                    )
                    continue
                result.types.append(issue_type.with_key(f"{prefix}_{issue_type.key}"))
    return result


def load_collections_file(path: Path) -> list[IssueTypeCollection]:
    """Parse ``[collections.<name>]`` tables from collections.toml."""
    if not path.exists():
        return []
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        log_event(logger, logging.WARNING, "issuetypes.collections.invalid", path=path, exc=exc)
        return []
    tables = data.get("collections")
    if not isinstance(tables, dict):
        return []
    collections: list[IssueTypeCollection] = []
    for name, raw in tables.items():
        if not isinstance(raw, dict):
            continue
        collections.append(IssueTypeCollection.from_dict(raw, name=name))
    return collections


def write_user_type(issuetypes_dir: Path, issue_type: IssueType) -> Path:
    path = issuetypes_dir / f"{issue_type.key}.json"
    payload = issue_type.to_dict()
    payload.pop("source", None)
    write_json(path, payload)
    return path


def remove_user_type(issuetypes_dir: Path, key: str) -> bool:
    path = issuetypes_dir / f"{key}.json"
    if not path.exists():
        return False
    path.unlink()
    return True
