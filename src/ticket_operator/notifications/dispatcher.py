from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Iterable, Mapping, Optional

from ..core.config import OperatorConfig
from ..core.logging_utils import log_event
from .events import NotificationEvent
from .sinks import NotificationSink, OsNotificationSink, RunFn, WebhookSink

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fan events out to every matching sink without ever raising.

    ``notify`` is fire-and-forget: with a running event loop (or one bound
    through ``bind_loop``) each send becomes a task; otherwise the sends
    run to completion before ``notify`` returns.
    """

    def __init__(self, sinks: Iterable[NotificationSink] = (), *, enabled: bool = True):
        self._sinks: list[NotificationSink] = list(sinks)
        self.enabled = enabled
        self._tasks: set[asyncio.Future] = set()
        self._threaded: set[concurrent.futures.Future] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @classmethod
    def from_config(
        cls,
        config: OperatorConfig,
        *,
        env: Optional[Mapping[str, str]] = None,
        run_fn: Optional[RunFn] = None,
    ) -> "NotificationDispatcher":
        settings = config.notifications
        sinks: list[NotificationSink] = [
            OsNotificationSink.from_config(settings.os, run_fn=run_fn)
        ]
        sinks.extend(WebhookSink(hook, env=env) for hook in settings.webhooks)
        return cls(sinks, enabled=settings.enabled)

    @property
    def sinks(self) -> list[NotificationSink]:
        return list(self._sinks)

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        self._loop = loop

    def matching(self, event: NotificationEvent) -> list[NotificationSink]:
        if not self.enabled:
            return []
        return [sink for sink in self._sinks if sink.accepts(event)]

    async def _send(self, sink: NotificationSink, event: NotificationEvent) -> None:
        try:
            await sink.send(event)
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "notification.failed",
                sink=sink.name,
                event_type=event.name,
                exc=exc,
            )

    async def _send_all(self, sinks: list[NotificationSink], event: NotificationEvent) -> None:
        await asyncio.gather(*(self._send(sink, event) for sink in sinks))

    def _track(self, future: asyncio.Future) -> None:
        self._tasks.add(future)
        future.add_done_callback(self._tasks.discard)

    def notify(self, event: NotificationEvent) -> None:
        sinks = self.matching(event)
        log_event(
            logger,
            logging.INFO,
            "notification.dispatched",
            event_type=event.name,
            ticket_id=event.ticket_id,
            sinks=[sink.name for sink in sinks],
        )
        if not sinks:
            return
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            for sink in sinks:
                self._track(loop.create_task(self._send(sink, event)))
            return
        bound = self._loop
        if bound is not None and bound.is_running():
            future = asyncio.run_coroutine_threadsafe(self._send_all(sinks, event), bound)
            self._threaded.add(future)
            future.add_done_callback(self._threaded.discard)
            return
        asyncio.run(self._send_all(sinks, event))

    async def drain(self) -> None:
        """Wait for every in-flight send; used by tests and graceful shutdown."""
        while self._tasks or self._threaded:
            pending = list(self._tasks) + [asyncio.wrap_future(f) for f in list(self._threaded)]
            await asyncio.gather(*pending, return_exceptions=True)
