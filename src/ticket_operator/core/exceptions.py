from __future__ import annotations

from typing import Iterable, Optional


class OperatorError(Exception):
    """Base class for every error the orchestrator raises on purpose."""


class ConfigError(OperatorError):
    pass


class ValidationError(OperatorError):
    """An issue type (or collection) failed validation.

    Every individual reason is kept in ``errors`` so callers can surface
    them one by one.
    """

    def __init__(self, errors: Iterable[object], *, subject: Optional[str] = None):
        self.errors = list(errors)
        self.subject = subject
        reasons = "; ".join(str(err) for err in self.errors) or "invalid"
        prefix = f"{subject}: " if subject else ""
        super().__init__(f"{prefix}{reasons}")

    @property
    def reasons(self) -> list[str]:
        return [str(err) for err in self.errors]


class NotFoundError(OperatorError):
    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ConflictError(OperatorError):
    pass


class AlreadyClaimedError(ConflictError):
    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket already claimed: {ticket_id}")


class PreconditionError(OperatorError):
    """A prerequisite for the requested action is missing.

    ``remediation`` carries the hint shown to the user next to the message.
    """

    def __init__(self, message: str, *, remediation: Optional[str] = None):
        self.remediation = remediation
        super().__init__(message)

    def describe(self) -> str:
        if self.remediation:
            return f"{self}\n{self.remediation}"
        return str(self)


class ToolNotDetectedError(PreconditionError):
    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(
            f"LLM tool '{tool_name}' not detected.",
            remediation="Install it or choose a different provider.",
        )


class DockerImageMissingError(PreconditionError):
    def __init__(self) -> None:
        super().__init__(
            "Docker mode is enabled but no image is configured.",
            remediation="Set launch.docker.image in your config.",
        )


class TmuxError(PreconditionError):
    pass


class ReadonlyError(OperatorError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Builtin issue type '{key}' cannot be modified")


class WorktreeError(OperatorError):
    pass


class StatusBlockError(OperatorError):
    pass


class TransientError(OperatorError):
    """Retryable failure talking to an external service."""


__all__ = [
    "AlreadyClaimedError",
    "ConfigError",
    "ConflictError",
    "DockerImageMissingError",
    "NotFoundError",
    "OperatorError",
    "PreconditionError",
    "ReadonlyError",
    "StatusBlockError",
    "TmuxError",
    "ToolNotDetectedError",
    "TransientError",
    "ValidationError",
    "WorktreeError",
]
