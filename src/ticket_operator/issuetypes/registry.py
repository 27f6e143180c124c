from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from ..core.config import DEFAULT_COLLECTION, OPERATOR_DIRNAME
from ..core.exceptions import (
    ConflictError,
    NotFoundError,
    ReadonlyError,
    ValidationError,
)
from ..core.locks import ReadWriteLock
from ..core.logging_utils import log_event
from .collection import (
    BUILTIN_COLLECTIONS,
    NOT_PRIORITIZED,
    IssueTypeCollection,
    canonical_collection_name,
)
from .loader import (
    COLLECTIONS_FILENAME,
    load_builtin_types,
    load_collections_file,
    load_imported_types,
    load_user_types,
    remove_user_type,
    write_user_type,
)
from .schema import IssueType, IssueTypeSource

logger = logging.getLogger(__name__)

CUSTOM_COLLECTION = "custom"


class IssueTypeRegistry:
    """Authoritative, thread-safe view of issue types and collections.

    Reads take the shared side of a reader/writer lock; registration and
    activation take the exclusive side. Nothing here shells out, so the lock
    is never held across a subprocess call.
    """

    def __init__(self, issuetypes_dir: Optional[Path] = None) -> None:
        self._lock = ReadWriteLock()
        self._types: dict[str, IssueType] = {}
        self._collections: dict[str, IssueTypeCollection] = {}
        self._active: Optional[str] = None
        self._issuetypes_dir = issuetypes_dir
        self.warnings: list[str] = []

    @classmethod
    def load_all(
        cls,
        tickets_path: Path,
        *,
        active_collection: str = DEFAULT_COLLECTION,
    ) -> "IssueTypeRegistry":
        """Builtins, then user types, then imports, then collections."""
        issuetypes_dir = tickets_path / OPERATOR_DIRNAME / "issuetypes"
        registry = cls(issuetypes_dir)
        for issue_type in load_builtin_types():
            registry._types[issue_type.key] = issue_type
        for loaded in (
            load_user_types(issuetypes_dir),
            load_imported_types(issuetypes_dir),
        ):
            registry.warnings.extend(loaded.warnings)
            for issue_type in loaded.types:
                errors = issue_type.validate()
                if errors:
                    registry._warn(
                        f"Skipping issue type {issue_type.key}: "
                        + "; ".join(str(e) for e in errors)
                    )
                    continue
                registry._types[issue_type.key] = issue_type

        for collection in (
            *BUILTIN_COLLECTIONS,
            *load_collections_file(issuetypes_dir / COLLECTIONS_FILENAME),
        ):
            registry._add_collection(collection)

        name = canonical_collection_name(active_collection)
        if name in registry._collections:
            registry._active = name
        else:
            registry._warn(f"Unknown collection '{active_collection}', none active")
        log_event(
            logger,
            logging.INFO,
            "issuetypes.loaded",
            types=len(registry._types),
            collections=len(registry._collections),
            active=registry._active,
        )
        return registry

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning(message)

    def _add_collection(self, collection: IssueTypeCollection) -> bool:
        missing = collection.missing_from(self._types)
        for key in missing:
            self._warn(
                f"Collection '{collection.name}' references unknown type '{key}', dropping it"
            )
        restricted = collection.restricted_to(self._types)
        if not restricted.types:
            self._warn(f"Collection '{collection.name}' has no valid types, skipping")
            return False
        self._collections[restricted.name] = restricted
        return True

    # Reads

    def get(self, key: str) -> Optional[IssueType]:
        with self._lock.read():
            return self._types.get(key)

    def require(self, key: str) -> IssueType:
        issue_type = self.get(key)
        if issue_type is None:
            raise NotFoundError("issue type", key)
        return issue_type

    def all_types(self) -> list[IssueType]:
        with self._lock.read():
            return list(self._types.values())

    def all_collections(self) -> list[IssueTypeCollection]:
        with self._lock.read():
            return list(self._collections.values())

    def get_collection(self, name: str) -> Optional[IssueTypeCollection]:
        with self._lock.read():
            return self._collections.get(canonical_collection_name(name))

    def active_collection(self) -> Optional[IssueTypeCollection]:
        with self._lock.read():
            if self._active is None:
                return None
            return self._collections.get(self._active)

    @property
    def active_collection_name(self) -> Optional[str]:
        with self._lock.read():
            return self._active

    def active_types(self) -> list[IssueType]:
        with self._lock.read():
            collection = self._collections.get(self._active) if self._active else None
            if collection is None:
                return list(self._types.values())
            return [self._types[k] for k in collection.types if k in self._types]

    def is_active(self, key: str) -> bool:
        with self._lock.read():
            collection = self._collections.get(self._active) if self._active else None
            if collection is None:
                return key in self._types
            return collection.contains(key)

    def priority_index(self, key: str) -> int:
        """Position in the active collection's priority order; lower runs first."""
        with self._lock.read():
            collection = self._collections.get(self._active) if self._active else None
            if collection is None:
                keys = list(self._types)
                return keys.index(key) if key in keys else NOT_PRIORITIZED
            return collection.priority_index(key)

    def type_count(self) -> int:
        with self._lock.read():
            return len(self._types)

    def collection_count(self) -> int:
        with self._lock.read():
            return len(self._collections)

    # Writes

    def activate_collection(self, name: str) -> IssueTypeCollection:
        canonical = canonical_collection_name(name)
        with self._lock.write():
            collection = self._collections.get(canonical)
            if collection is None:
                raise NotFoundError("collection", name)
            changed = self._active != canonical
            self._active = canonical
        if changed:
            log_event(logger, logging.INFO, "issuetypes.collection.activated", name=canonical)
        return collection

    def activate_custom(self, keys: Iterable[str]) -> IssueTypeCollection:
        wanted = tuple(keys)
        with self._lock.write():
            unknown = [k for k in wanted if k not in self._types]
            if unknown:
                raise NotFoundError("issue type", ", ".join(unknown))
            collection = IssueTypeCollection(
                name=CUSTOM_COLLECTION,
                types=wanted,
                description="Custom selection",
            )
            self._collections[CUSTOM_COLLECTION] = collection
            self._active = CUSTOM_COLLECTION
        return collection

    def register(self, issue_type: IssueType, *, replace: bool = False) -> IssueType:
        """Validate and insert; an invalid type leaves the registry untouched."""
        errors = issue_type.validate()
        if errors:
            raise ValidationError(errors, subject=issue_type.key)
        with self._lock.write():
            existing = self._types.get(issue_type.key)
            if existing is not None:
                if not replace:
                    raise ConflictError(f"Issue type already exists: {issue_type.key}")
                if existing.is_builtin:
                    raise ReadonlyError(issue_type.key)
            self._types[issue_type.key] = issue_type
        log_event(
            logger,
            logging.INFO,
            "issuetypes.registered",
            key=issue_type.key,
            source=issue_type.source.kind,
        )
        return issue_type

    def unregister(self, key: str) -> IssueType:
        with self._lock.write():
            existing = self._types.get(key)
            if existing is None:
                raise NotFoundError("issue type", key)
            if existing.is_builtin:
                raise ReadonlyError(key)
            del self._types[key]
            for name, collection in list(self._collections.items()):
                if collection.contains(key):
                    restricted = collection.restricted_to(self._types)
                    if restricted.types:
                        self._collections[name] = restricted
                    else:
                        del self._collections[name]
                        if self._active == name:
                            self._active = None
        log_event(logger, logging.INFO, "issuetypes.unregistered", key=key)
        return existing

    def register_collection(
        self, collection: IssueTypeCollection
    ) -> IssueTypeCollection:
        with self._lock.read():
            known = set(self._types)
        missing = collection.missing_from(known)
        if missing:
            raise ValidationError(
                [f"References unknown type '{key}'" for key in missing],
                subject=collection.name,
            )
        if not collection.types:
            raise ValidationError(
                ["Collection must have at least one type"], subject=collection.name
            )
        with self._lock.write():
            self._collections[collection.name] = collection
        return collection

    # Persistence of user-defined types

    def save_user_type(self, issue_type: IssueType, *, replace: bool = False) -> IssueType:
        issue_type = issue_type.with_source(IssueTypeSource.user())
        self.register(issue_type, replace=replace)
        if self._issuetypes_dir is not None:
            write_user_type(self._issuetypes_dir, issue_type)
        return issue_type

    def delete_user_type(self, key: str) -> IssueType:
        removed = self.unregister(key)
        if self._issuetypes_dir is not None:
            remove_user_type(self._issuetypes_dir, key)
        return removed
