from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from .time_utils import now_log_stamp

if TYPE_CHECKING:
    from .config import OperatorConfig

ROOT_LOGGER_NAME = "ticket_operator"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_HANDLER_ATTR = "_ticket_operator_handler"


def _format_value(value: Any) -> str:
    if isinstance(value, BaseException):
        return json.dumps(f"{type(value).__name__}: {value}")
    if isinstance(value, Path):
        value = str(value)
    try:
        return json.dumps(value, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return json.dumps(repr(value))


def format_event(event: str, **fields: Any) -> str:
    parts = [event]
    for key in sorted(fields):
        value = fields[key]
        if value is None:
            continue
        parts.append(f"{key}={_format_value(value)}")
    return " ".join(parts)


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Emit ``event`` as one ``name key=value`` line.

    Values are JSON encoded so the line stays greppable and machine-parsable.
    """
    if not logger.isEnabledFor(level):
        return
    exc = fields.get("exc")
    logger.log(
        level,
        format_event(event, **fields),
        exc_info=exc if isinstance(exc, BaseException) and level >= logging.ERROR else None,
    )


def _drop_installed_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_ATTR, False):
            root.removeHandler(handler)
            handler.close()


def setup_logging(
    config: "OperatorConfig", *, console: bool = False
) -> Optional[Path]:
    """Install the rotating file handler (and optionally stderr).

    Returns the log file path, or None when file logging is disabled.
    Calling it again replaces the handlers it installed earlier.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    _drop_installed_handlers(root)
    level = logging.getLevelName(config.logging.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    root.setLevel(level)
    formatter = logging.Formatter(_LOG_FORMAT)

    log_path: Optional[Path] = None
    if config.logging.to_file:
        logs_dir = config.logs_path
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = logs_dir / f"operator-{now_log_stamp()}.log"
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=config.logging.max_bytes,
            backupCount=config.logging.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_ATTR, True)
        root.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        setattr(stream_handler, _HANDLER_ATTR, True)
        root.addHandler(stream_handler)

    return log_path


__all__ = ["format_event", "log_event", "setup_logging"]
