from .collection import BUILTIN_COLLECTIONS, NOT_PRIORITIZED, IssueTypeCollection
from .registry import IssueTypeRegistry
from .schema import (
    ExecutionMode,
    FieldSchema,
    IssueType,
    IssueTypeSource,
    IssueTypeValidationError,
    OnReject,
    StepSchema,
    StepStatus,
    ValidationKind,
)

__all__ = [
    "BUILTIN_COLLECTIONS",
    "NOT_PRIORITIZED",
    "ExecutionMode",
    "FieldSchema",
    "IssueType",
    "IssueTypeCollection",
    "IssueTypeRegistry",
    "IssueTypeSource",
    "IssueTypeValidationError",
    "OnReject",
    "StepSchema",
    "StepStatus",
    "ValidationKind",
]
