from datetime import datetime, timezone


def now_iso_utc_z() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def now_local_history() -> str:
    """Timestamp format used for ticket history bullets."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def now_ticket_stamp() -> str:
    """Filename timestamp, ``YYYYMMDD-HHMM``."""
    return datetime.now().strftime("%Y%m%d-%H%M")


def now_log_stamp() -> str:
    return datetime.now().strftime("%Y-%m-%dT%H-%M-%S")


now_iso = now_iso_utc_z


__all__ = [
    "now_iso",
    "now_iso_utc_z",
    "now_local_history",
    "now_log_stamp",
    "now_ticket_stamp",
]
