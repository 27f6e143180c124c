from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional

from ..permissions.models import ProviderCliArgs, StepPermissions

_KEY_RE = re.compile(r"^[A-Z]+$")

STEP_OUTPUTS = (
    "plan",
    "code",
    "test",
    "pr",
    "ticket",
    "review",
    "report",
    "documentation",
)
FIELD_TYPES = ("string", "text", "enum", "bool", "date")
AUTO_STRATEGIES = ("id", "date", "branch", "status")
PERMISSION_MODES = ("default", "plan", "acceptEdits", "delegate")


class ExecutionMode(str, Enum):
    AUTONOMOUS = "autonomous"
    PAIRED = "paired"


class StepStatus(str, Enum):
    TODO = "TODO"
    DOING = "DOING"
    AWAIT = "AWAIT"
    DONE = "DONE"


class ValidationKind(str, Enum):
    INVALID_KEY = "invalid_key"
    KEY_LENGTH = "key_length"
    INVALID_GLYPH = "invalid_glyph"
    MISSING_DEFAULT = "missing_default"
    MISSING_ENUM_OPTIONS = "missing_enum_options"
    NO_STEPS = "no_steps"
    INVALID_STEP_REF = "invalid_step_ref"


_VALIDATION_MESSAGES = {
    ValidationKind.INVALID_KEY: "Key '{0}' must be uppercase letters only",
    ValidationKind.KEY_LENGTH: "Key '{0}' must be 2-10 characters",
    ValidationKind.INVALID_GLYPH: "Glyph '{0}' must be 1-4 characters",
    ValidationKind.MISSING_DEFAULT: "Required field '{0}' must have a default value",
    ValidationKind.MISSING_ENUM_OPTIONS: "Enum field '{0}' must have options",
    ValidationKind.NO_STEPS: "Issue type must have at least one step",
    ValidationKind.INVALID_STEP_REF: "References unknown step '{0}'",
}


@dataclass(frozen=True)
class IssueTypeValidationError:
    kind: ValidationKind
    subject: str = ""

    @property
    def message(self) -> str:
        return _VALIDATION_MESSAGES[self.kind].format(self.subject)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "subject": self.subject, "message": self.message}

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class IssueTypeSource:
    kind: str = "builtin"  # "builtin" | "user" | "import"
    provider: Optional[str] = None
    project: Optional[str] = None

    @classmethod
    def builtin(cls) -> "IssueTypeSource":
        return cls("builtin")

    @classmethod
    def user(cls) -> "IssueTypeSource":
        return cls("user")

    @classmethod
    def imported(cls, provider: str, project: str) -> "IssueTypeSource":
        return cls("import", provider=provider, project=project)

    @property
    def is_builtin(self) -> bool:
        return self.kind == "builtin"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.kind}
        if self.provider:
            data["provider"] = self.provider
        if self.project:
            data["project"] = self.project
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> "IssueTypeSource":
        if isinstance(raw, str):
            return cls(raw)
        if not isinstance(raw, Mapping):
            return cls.user()
        return cls(
            str(raw.get("type") or "user"),
            provider=raw.get("provider"),
            project=raw.get("project"),
        )


@dataclass(frozen=True)
class FieldSchema:
    name: str
    description: str = ""
    type: str = "string"
    required: bool = False
    default: Optional[str] = None
    auto: Optional[str] = None
    options: tuple[str, ...] = ()
    placeholder: Optional[str] = None
    max_length: Optional[int] = None
    display_order: Optional[int] = None
    user_editable: bool = True

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "FieldSchema":
        field_type = str(raw.get("type") or "string")
        if field_type not in FIELD_TYPES:
            raise ValueError(f"Unknown field type '{field_type}'")
        default = raw.get("default")
        return cls(
            name=str(raw["name"]),
            description=str(raw.get("description") or ""),
            type=field_type,
            required=bool(raw.get("required", False)),
            default=None if default is None else str(default),
            auto=raw.get("auto"),
            options=tuple(str(o) for o in raw.get("options") or ()),
            placeholder=raw.get("placeholder"),
            max_length=raw.get("max_length"),
            display_order=raw.get("display_order"),
            user_editable=bool(raw.get("user_editable", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "required": self.required,
        }
        for key in ("default", "auto", "placeholder", "max_length", "display_order"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.options:
            data["options"] = list(self.options)
        if not self.user_editable:
            data["user_editable"] = False
        return data


@dataclass(frozen=True)
class OnReject:
    goto_step: str
    prompt: str = ""


@dataclass(frozen=True)
class StepSchema:
    name: str
    display_name: Optional[str] = None
    outputs: tuple[str, ...] = ()
    prompt: str = ""
    allowed_tools: tuple[str, ...] = ()
    requires_review: bool = False
    on_reject: Optional[OnReject] = None
    next_step: Optional[str] = None
    permissions: StepPermissions = field(default_factory=StepPermissions)
    cli_args: ProviderCliArgs = field(default_factory=ProviderCliArgs)
    permission_mode: str = "default"
    json_schema: Optional[dict[str, Any]] = None
    json_schema_file: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def is_terminal(self) -> bool:
        return not self.next_step

    def produces(self, output: str) -> bool:
        return output in self.outputs

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StepSchema":
        outputs = tuple(str(o) for o in raw.get("outputs") or ())
        for output in outputs:
            if output not in STEP_OUTPUTS:
                raise ValueError(f"Unknown step output '{output}'")
        mode = str(raw.get("permission_mode") or "default")
        if mode not in PERMISSION_MODES:
            raise ValueError(f"Unknown permission mode '{mode}'")
        on_reject_raw = raw.get("on_reject")
        on_reject = None
        if isinstance(on_reject_raw, Mapping) and on_reject_raw.get("goto_step"):
            on_reject = OnReject(
                goto_step=str(on_reject_raw["goto_step"]),
                prompt=str(on_reject_raw.get("prompt") or ""),
            )
        json_schema = raw.get("json_schema")
        return cls(
            name=str(raw["name"]),
            display_name=raw.get("display_name"),
            outputs=outputs,
            prompt=str(raw.get("prompt") or ""),
            allowed_tools=tuple(str(t) for t in raw.get("allowed_tools") or ()),
            requires_review=bool(raw.get("requires_review", False)),
            on_reject=on_reject,
            next_step=raw.get("next_step") or None,
            permissions=StepPermissions.from_dict(raw.get("permissions")),
            cli_args=ProviderCliArgs.from_dict(raw.get("cli_args")),
            permission_mode=mode,
            json_schema=dict(json_schema) if isinstance(json_schema, Mapping) else None,
            json_schema_file=raw.get("json_schema_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "outputs": list(self.outputs),
            "prompt": self.prompt,
            "allowed_tools": list(self.allowed_tools),
            "requires_review": self.requires_review,
        }
        if self.display_name:
            data["display_name"] = self.display_name
        if self.on_reject is not None:
            data["on_reject"] = {
                "goto_step": self.on_reject.goto_step,
                "prompt": self.on_reject.prompt,
            }
        if self.next_step:
            data["next_step"] = self.next_step
        if not self.permissions.is_empty():
            data["permissions"] = self.permissions.to_dict()
        if not self.cli_args.is_empty():
            data["cli_args"] = self.cli_args.to_dict()
        if self.permission_mode != "default":
            data["permission_mode"] = self.permission_mode
        if self.json_schema is not None:
            data["json_schema"] = self.json_schema
        if self.json_schema_file:
            data["json_schema_file"] = self.json_schema_file
        return data


@dataclass(frozen=True)
class IssueType:
    key: str
    name: str
    description: str = ""
    mode: ExecutionMode = ExecutionMode.AUTONOMOUS
    glyph: str = "*"
    color: Optional[str] = None
    project_required: bool = True
    fields: tuple[FieldSchema, ...] = ()
    steps: tuple[StepSchema, ...] = ()
    agent_prompt: Optional[str] = None
    source: IssueTypeSource = field(default_factory=IssueTypeSource.builtin)
    branch_prefix: str = "task"
    external_id: Optional[str] = None

    @property
    def is_builtin(self) -> bool:
        return self.source.is_builtin

    @property
    def is_paired(self) -> bool:
        return self.mode == ExecutionMode.PAIRED

    def get_step(self, name: str) -> Optional[StepSchema]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def first_step(self) -> Optional[StepSchema]:
        return self.steps[0] if self.steps else None

    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def step_index(self, name: str) -> Optional[int]:
        for index, step in enumerate(self.steps):
            if step.name == name:
                return index
        return None

    def step_status(self, name: str) -> Optional[StepStatus]:
        step = self.get_step(name)
        if step is None:
            return None
        if step.is_terminal:
            return StepStatus.DONE
        if step.requires_review:
            return StepStatus.AWAIT
        if self.steps[0].name == name:
            return StepStatus.TODO
        return StepStatus.DOING

    def validate(self) -> list[IssueTypeValidationError]:
        """Return every problem with this type; an empty list means valid.

        Imported types carry a namespaced `<PROJECT>_<KEY>` key, so the key
        format rules only apply to local types.
        """
        errors: list[IssueTypeValidationError] = []
        if self.source.kind != "import":
            if not _KEY_RE.match(self.key):
                errors.append(
                    IssueTypeValidationError(ValidationKind.INVALID_KEY, self.key)
                )
            if not 2 <= len(self.key) <= 10:
                errors.append(
                    IssueTypeValidationError(ValidationKind.KEY_LENGTH, self.key)
                )
        if not 1 <= len(self.glyph) <= 4:
            errors.append(
                IssueTypeValidationError(ValidationKind.INVALID_GLYPH, self.glyph)
            )
        for schema in self.fields:
            if (
                schema.required
                and schema.default is None
                and schema.auto is None
                and schema.name != "id"
            ):
                errors.append(
                    IssueTypeValidationError(ValidationKind.MISSING_DEFAULT, schema.name)
                )
            if schema.type == "enum" and not schema.options:
                errors.append(
                    IssueTypeValidationError(
                        ValidationKind.MISSING_ENUM_OPTIONS, schema.name
                    )
                )
        if not self.steps:
            errors.append(IssueTypeValidationError(ValidationKind.NO_STEPS))
        names = set(self.step_names())
        for step in self.steps:
            if step.next_step and step.next_step not in names:
                errors.append(
                    IssueTypeValidationError(
                        ValidationKind.INVALID_STEP_REF, step.next_step
                    )
                )
            if step.on_reject and step.on_reject.goto_step not in names:
                errors.append(
                    IssueTypeValidationError(
                        ValidationKind.INVALID_STEP_REF, step.on_reject.goto_step
                    )
                )
        return errors

    def with_source(self, source: IssueTypeSource) -> "IssueType":
        return replace(self, source=source)

    def with_key(self, key: str) -> "IssueType":
        return replace(self, key=key)

    @classmethod
    def from_dict(
        cls, raw: Mapping[str, Any], *, source: Optional[IssueTypeSource] = None
    ) -> "IssueType":
        mode = raw.get("mode") or ExecutionMode.AUTONOMOUS.value
        try:
            execution_mode = ExecutionMode(str(mode))
        except ValueError as exc:
            raise ValueError(f"Unknown mode '{mode}'") from exc
        if source is None:
            source = IssueTypeSource.from_dict(raw.get("source"))
        return cls(
            key=str(raw["key"]),
            name=str(raw.get("name") or raw["key"]),
            description=str(raw.get("description") or ""),
            mode=execution_mode,
            glyph=str(raw.get("glyph") or "*"),
            color=raw.get("color"),
            project_required=bool(raw.get("project_required", True)),
            fields=tuple(FieldSchema.from_dict(f) for f in raw.get("fields") or ()),
            steps=tuple(StepSchema.from_dict(s) for s in raw.get("steps") or ()),
            agent_prompt=raw.get("agent_prompt"),
            source=source,
            branch_prefix=str(raw.get("branch_prefix") or "task"),
            external_id=raw.get("external_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "mode": self.mode.value,
            "glyph": self.glyph,
            "project_required": self.project_required,
            "fields": [f.to_dict() for f in self.fields],
            "steps": [s.to_dict() for s in self.steps],
            "source": self.source.to_dict(),
            "branch_prefix": self.branch_prefix,
        }
        if self.color:
            data["color"] = self.color
        if self.agent_prompt:
            data["agent_prompt"] = self.agent_prompt
        if self.external_id:
            data["external_id"] = self.external_id
        return data

    @classmethod
    def from_import(
        cls,
        key: str,
        name: str,
        description: str,
        provider: str,
        project: str,
        *,
        external_id: Optional[str] = None,
    ) -> "IssueType":
        """Minimal type for tickets pulled from an external tracker."""
        return cls(
            key=key,
            name=name,
            description=description,
            glyph=key[:1] or "*",
            fields=(
                FieldSchema(name="id", type="string", required=True, auto="id"),
                FieldSchema(
                    name="summary",
                    description="Short summary",
                    type="string",
                    required=True,
                    default="",
                ),
            ),
            steps=(
                StepSchema(
                    name="execute",
                    display_name="Execute",
                    outputs=("code",),
                    prompt="Work on the ticket described below.",
                    allowed_tools=("*",),
                ),
            ),
            source=IssueTypeSource.imported(provider, project),
            external_id=external_id,
        )
