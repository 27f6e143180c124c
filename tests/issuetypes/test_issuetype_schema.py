from __future__ import annotations

from typing import Any

import pytest

from ticket_operator.issuetypes import (
    ExecutionMode,
    IssueType,
    IssueTypeSource,
    StepStatus,
    ValidationKind,
)


def _raw(**overrides: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "key": "DOCS",
        "name": "Documentation",
        "glyph": "D",
        "fields": [
            {"name": "id", "type": "string", "required": True, "auto": "id"},
            {"name": "summary", "type": "string", "required": True, "default": ""},
        ],
        "steps": [
            {
                "name": "draft",
                "outputs": ["documentation"],
                "requires_review": True,
                "on_reject": {"goto_step": "draft", "prompt": "Fix: {{ rejection_reason }}"},
                "next_step": "publish",
            },
            {"name": "publish", "outputs": ["pr"]},
        ],
    }
    raw.update(overrides)
    return raw


def _kinds(issue_type: IssueType) -> list[ValidationKind]:
    return [error.kind for error in issue_type.validate()]


def test_valid_type_has_no_errors() -> None:
    issue_type = IssueType.from_dict(_raw(), source=IssueTypeSource.user())
    assert issue_type.validate() == []
    assert issue_type.mode == ExecutionMode.AUTONOMOUS
    assert issue_type.step_names() == ["draft", "publish"]


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("docs", [ValidationKind.INVALID_KEY]),
        ("D", [ValidationKind.KEY_LENGTH]),
        ("ABCDEFGHIJK", [ValidationKind.KEY_LENGTH]),
        ("DOC1", [ValidationKind.INVALID_KEY]),
    ],
)
def test_key_rules(key: str, expected: list[ValidationKind]) -> None:
    issue_type = IssueType.from_dict(_raw(key=key), source=IssueTypeSource.user())
    assert _kinds(issue_type) == expected


def test_imported_types_skip_key_format_rules() -> None:
    issue_type = IssueType.from_dict(
        _raw(key="WEB_story"), source=IssueTypeSource.imported("jira", "web")
    )
    assert issue_type.validate() == []


def test_glyph_length() -> None:
    issue_type = IssueType.from_dict(_raw(glyph="TOOLONG"), source=IssueTypeSource.user())
    (error,) = issue_type.validate()
    assert error.kind == ValidationKind.INVALID_GLYPH
    assert error.message == "Glyph 'TOOLONG' must be 1-4 characters"


def test_required_field_needs_default_and_enum_needs_options() -> None:
    raw = _raw(
        fields=[
            {"name": "owner", "type": "string", "required": True},
            {"name": "size", "type": "enum"},
        ]
    )
    issue_type = IssueType.from_dict(raw, source=IssueTypeSource.user())
    messages = [str(error) for error in issue_type.validate()]
    assert messages == [
        "Required field 'owner' must have a default value",
        "Enum field 'size' must have options",
    ]


def test_steps_are_required_and_references_checked() -> None:
    empty = IssueType.from_dict(_raw(steps=[]), source=IssueTypeSource.user())
    assert _kinds(empty) == [ValidationKind.NO_STEPS]

    dangling = IssueType.from_dict(
        _raw(
            steps=[
                {
                    "name": "draft",
                    "next_step": "ship",
                    "on_reject": {"goto_step": "redo"},
                }
            ]
        ),
        source=IssueTypeSource.user(),
    )
    errors = dangling.validate()
    assert [e.kind for e in errors] == [ValidationKind.INVALID_STEP_REF] * 2
    assert [e.subject for e in errors] == ["ship", "redo"]


def test_unknown_mode_output_and_field_type_are_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown mode"):
        IssueType.from_dict(_raw(mode="solo"))
    with pytest.raises(ValueError, match="Unknown step output"):
        IssueType.from_dict(_raw(steps=[{"name": "a", "outputs": ["binary"]}]))
    with pytest.raises(ValueError, match="Unknown field type"):
        IssueType.from_dict(_raw(fields=[{"name": "a", "type": "number"}]))


def test_step_status_labels() -> None:
    raw = _raw(
        steps=[
            {"name": "triage", "next_step": "draft"},
            {"name": "draft", "requires_review": True, "next_step": "publish"},
            {"name": "publish"},
        ]
    )
    issue_type = IssueType.from_dict(raw, source=IssueTypeSource.user())
    assert issue_type.step_status("triage") == StepStatus.TODO
    assert issue_type.step_status("draft") == StepStatus.AWAIT
    assert issue_type.step_status("publish") == StepStatus.DONE
    assert issue_type.step_status("missing") is None


def test_dict_round_trip_preserves_rejection_and_source() -> None:
    issue_type = IssueType.from_dict(_raw(), source=IssueTypeSource.user())
    data = issue_type.to_dict()
    assert data["source"] == {"type": "user"}
    assert data["steps"][0]["on_reject"]["goto_step"] == "draft"
    assert IssueType.from_dict(data) == issue_type


def test_from_import_builds_minimal_valid_type() -> None:
    issue_type = IssueType.from_import(
        "WEB_BUG", "Bug", "Imported bug", "jira", "web", external_id="10004"
    )
    assert issue_type.validate() == []
    assert issue_type.source.kind == "import"
    assert issue_type.first_step().name == "execute"
