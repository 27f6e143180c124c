from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

NOT_PRIORITIZED = sys.maxsize


@dataclass(frozen=True)
class IssueTypeCollection:
    """A named, ordered subset of issue type keys."""

    name: str
    types: tuple[str, ...]
    description: str = ""
    priority_order: tuple[str, ...] = ()
    builtin: bool = False

    def contains(self, key: str) -> bool:
        return key in self.types

    def priority_index(self, key: str) -> int:
        order = self.priority_order or self.types
        try:
            return order.index(key)
        except ValueError:
            return NOT_PRIORITIZED

    def restricted_to(self, known: Iterable[str]) -> "IssueTypeCollection":
        known_set = set(known)
        return IssueTypeCollection(
            name=self.name,
            types=tuple(k for k in self.types if k in known_set),
            description=self.description,
            priority_order=tuple(k for k in self.priority_order if k in known_set),
            builtin=self.builtin,
        )

    def missing_from(self, known: Iterable[str]) -> list[str]:
        known_set = set(known)
        return [k for k in self.types if k not in known_set]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "types": list(self.types),
            "priority_order": list(self.priority_order),
            "builtin": self.builtin,
        }

    @classmethod
    def from_dict(
        cls, raw: Mapping[str, Any], *, name: Optional[str] = None
    ) -> "IssueTypeCollection":
        return cls(
            name=str(name or raw["name"]),
            types=tuple(str(t) for t in raw.get("types") or ()),
            description=str(raw.get("description") or ""),
            priority_order=tuple(str(t) for t in raw.get("priority_order") or ()),
        )


BUILTIN_COLLECTIONS: tuple[IssueTypeCollection, ...] = (
    IssueTypeCollection(
        name="simple",
        types=("TASK",),
        description="A single general-purpose task type",
        builtin=True,
    ),
    IssueTypeCollection(
        name="dev_kanban",
        types=("TASK", "FEAT", "FIX"),
        description="Feature and bug work for a development team",
        priority_order=("FIX", "FEAT", "TASK"),
        builtin=True,
    ),
    IssueTypeCollection(
        name="devops_kanban",
        types=("TASK", "SPIKE", "INV", "FEAT", "FIX"),
        description="Development plus operations: spikes and incident investigations",
        priority_order=("INV", "FIX", "FEAT", "SPIKE", "TASK"),
        builtin=True,
    ),
)

COLLECTION_ALIASES = {
    "dev": "dev_kanban",
    "devops": "devops_kanban",
}


def canonical_collection_name(name: str) -> str:
    return COLLECTION_ALIASES.get(name, name)
