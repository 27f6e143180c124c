from __future__ import annotations

import logging
from pathlib import Path

from ticket_operator.core.config import load_config
from ticket_operator.core.logging_utils import format_event, log_event, setup_logging


def test_format_event_sorts_and_json_encodes_fields() -> None:
    line = format_event("agent.started", ticket_id="FEAT-1", step="plan", extra=None)
    assert line == 'agent.started step="plan" ticket_id="FEAT-1"'


def test_format_event_renders_paths_and_exceptions() -> None:
    line = format_event("x", path=Path("/tmp/a"), exc=ValueError("boom"))
    assert 'path="/tmp/a"' in line
    assert 'exc="ValueError: boom"' in line


def test_log_event_respects_level(caplog) -> None:
    logger = logging.getLogger("ticket_operator.test")
    with caplog.at_level(logging.WARNING, logger="ticket_operator.test"):
        log_event(logger, logging.INFO, "hidden.event")
        log_event(logger, logging.WARNING, "shown.event", count=2)
    messages = [record.getMessage() for record in caplog.records]
    assert messages == ["shown.event count=2"]


def test_setup_logging_writes_rotating_file(tmp_path: Path) -> None:
    config = load_config(
        tmp_path,
        user_config_path=tmp_path / "absent.toml",
        env={"OPERATOR_LOGGING__LEVEL": "DEBUG"},
    )
    log_path = setup_logging(config)
    try:
        assert log_path is not None
        assert log_path.parent == config.logs_path
        logger = logging.getLogger("ticket_operator.sample")
        log_event(logger, logging.INFO, "sample.written", value=1)
        for handler in logging.getLogger("ticket_operator").handlers:
            handler.flush()
        assert "sample.written value=1" in log_path.read_text(encoding="utf-8")
    finally:
        config_off = load_config(
            tmp_path,
            user_config_path=tmp_path / "absent.toml",
            env={"OPERATOR_LOGGING__TO_FILE": "false"},
        )
        assert setup_logging(config_off) is None


def test_setup_logging_replaces_its_own_handlers(tmp_path: Path) -> None:
    config = load_config(
        tmp_path,
        user_config_path=tmp_path / "absent.toml",
        env={"OPERATOR_LOGGING__TO_FILE": "false"},
    )
    root = logging.getLogger("ticket_operator")
    setup_logging(config)
    before = len(root.handlers)
    setup_logging(config, console=True)
    setup_logging(config, console=True)
    try:
        assert len(root.handlers) == before + 1
    finally:
        setup_logging(config)
    assert len(root.handlers) == before
