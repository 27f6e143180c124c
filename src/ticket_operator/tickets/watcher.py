"""Filesystem watcher for the queue and in-progress directories.

Backed by watchdog's polling observer so behaviour is the same on every
platform. The watcher only reports; debouncing is the consumer's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers.polling import PollingObserver

from ..core.logging_utils import log_event

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 1.0


class QueueEventKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class QueueEvent:
    kind: QueueEventKind
    path: Path


QueueEventCallback = Callable[[QueueEvent], None]


def _is_ticket(path: str) -> bool:
    return path.endswith(".md")


class _TicketEventHandler(FileSystemEventHandler):
    def __init__(self, callback: QueueEventCallback) -> None:
        super().__init__()
        self._callback = callback

    def _emit(self, kind: QueueEventKind, raw_path: str) -> None:
        if _is_ticket(raw_path):
            self._callback(QueueEvent(kind, Path(raw_path)))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(QueueEventKind.ADDED, str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(QueueEventKind.MODIFIED, str(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(QueueEventKind.REMOVED, str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._emit(QueueEventKind.REMOVED, str(event.src_path))
        self._emit(QueueEventKind.ADDED, str(event.dest_path))


class QueueWatcher:
    def __init__(
        self,
        tickets_path: Path,
        callback: QueueEventCallback,
        *,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self._dirs = [tickets_path / "queue", tickets_path / "in-progress"]
        self._handler = _TicketEventHandler(callback)
        self._poll_interval = poll_interval
        self._observer: Optional[PollingObserver] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = PollingObserver(timeout=self._poll_interval)
        for directory in self._dirs:
            directory.mkdir(parents=True, exist_ok=True)
            observer.schedule(self._handler, str(directory), recursive=False)
        observer.start()
        self._observer = observer
        log_event(
            logger,
            logging.INFO,
            "watcher.started",
            dirs=[str(d) for d in self._dirs],
        )

    def stop(self) -> None:
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        observer.stop()
        observer.join(timeout=5)
        log_event(logger, logging.INFO, "watcher.stopped")

