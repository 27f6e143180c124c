"""Core runtime primitives."""

from .exceptions import (
    AlreadyClaimedError,
    ConfigError,
    ConflictError,
    NotFoundError,
    OperatorError,
    PreconditionError,
    ReadonlyError,
    ValidationError,
)
from .logging_utils import log_event

__all__ = [
    "AlreadyClaimedError",
    "ConfigError",
    "ConflictError",
    "NotFoundError",
    "OperatorError",
    "PreconditionError",
    "ReadonlyError",
    "ValidationError",
    "log_event",
]
