from __future__ import annotations

import pytest

from ticket_operator.agents.status_block import (
    END_MARKER,
    START_MARKER,
    StatusBlock,
    find_last_status_block,
    has_status_markers,
    parse_status_block,
)
from ticket_operator.core.exceptions import StatusBlockError
from ticket_operator.prompts.composer import OPERATOR_OUTPUT_INSTRUCTIONS


def _block(*lines: str) -> str:
    return "\n".join([START_MARKER, *lines, END_MARKER])


def test_parses_full_block() -> None:
    block = parse_status_block(
        _block(
            "status: complete",
            "exit_signal: true",
            "confidence: 85",
            "files_modified: 3",
            "tests_status: passing",
            "summary: Implemented the parser: with colons",
            "recommendation: Merge it",
            "blockers: none yet, maybe later",
        )
    )
    assert block.status == "complete"
    assert block.exit_signal is True
    assert block.confidence == 85
    assert block.files_modified == 3
    assert block.tests_status == "passing"
    assert block.summary == "Implemented the parser: with colons"
    assert block.recommendation == "Merge it"
    assert block.blockers == ("none yet", "maybe later")


def test_keys_are_case_and_separator_insensitive() -> None:
    block = parse_status_block(_block("STATUS: Blocked", "Exit-Signal: no"))
    assert block.status == "blocked"
    assert block.exit_signal is False


def test_pairs_may_share_a_line() -> None:
    block = parse_status_block(_block("status: complete exit_signal: true summary: done it"))
    assert (block.status, block.exit_signal, block.summary) == ("complete", True, "done it")


def test_unknown_keys_and_out_of_range_confidence_are_ignored() -> None:
    block = parse_status_block(
        _block("status: failed", "exit_signal: 1", "mood: grim", "confidence: 140")
    )
    assert block.status == "failed"
    assert block.confidence is None


@pytest.mark.parametrize(
    "text",
    [
        "no markers at all",
        START_MARKER + "\nstatus: complete\n",
        _block("status: complete"),
        _block("exit_signal: true"),
        _block("status: done", "exit_signal: true"),
    ],
)
def test_malformed_blocks_raise(text: str) -> None:
    with pytest.raises(StatusBlockError):
        parse_status_block(text)


def test_summary_is_truncated_on_a_word_boundary() -> None:
    long_summary = "word " * 150
    block = parse_status_block(
        _block("status: complete", "exit_signal: true", f"summary: {long_summary}")
    )
    assert block.summary.endswith("...")
    assert len(block.summary) <= 503


def test_find_last_block_skips_malformed_ones() -> None:
    text = "\n".join(
        [
            "noise",
            _block("status: in_progress", "exit_signal: false", "summary: first"),
            "more noise",
            _block("status: complete", "exit_signal: true", "summary: second"),
            _block("status: ???"),
        ]
    )
    block = find_last_status_block(text)
    assert block is not None and block.summary == "second"
    assert find_last_status_block("nothing here") is None
    assert find_last_status_block(_block("garbage")) is None


def test_has_status_markers() -> None:
    assert has_status_markers(_block("garbage"))
    assert not has_status_markers(START_MARKER)
    assert not has_status_markers("plain output")


def test_echoed_prompt_instructions_are_not_a_status_block() -> None:
    echoed = f"> {OPERATOR_OUTPUT_INSTRUCTIONS}\nWorking...\n"
    assert find_last_status_block(echoed) is None
    assert not has_status_markers(echoed)
    assert has_status_markers(echoed + _block("status: done"))


def test_from_dict_accepts_structured_values() -> None:
    block = StatusBlock.from_dict(
        {"status": "complete", "exit_signal": True, "blockers": ["a", "b"], "files_modified": 2}
    )
    assert block.exit_signal is True
    assert block.blockers == ("a", "b")
    assert block.to_dict() == {
        "status": "complete",
        "exit_signal": True,
        "files_modified": 2,
        "blockers": ["a", "b"],
    }
