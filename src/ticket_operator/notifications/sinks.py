"""Notification sinks: desktop notifications and JSON webhooks.

Each sink owns its event filter (empty means every event) and its send
implementation; the dispatcher only knows ``accepts`` and ``send``.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import subprocess
import sys
from typing import Callable, Iterable, Mapping, Optional, Protocol

import httpx

from ..core.config import OsNotificationConfig, WebhookConfig
from ..core.exceptions import TransientError
from ..core.logging_utils import log_event
from ..core.retry import retry_transient
from .events import NotificationEvent

logger = logging.getLogger(__name__)

RunFn = Callable[..., "subprocess.CompletedProcess[str]"]
ClientFactory = Callable[[], httpx.AsyncClient]

_HELPER_TIMEOUT_SECONDS = 10
_WEBHOOK_TIMEOUT_SECONDS = 10.0


class NotificationSink(Protocol):
    name: str
    enabled: bool

    def accepts(self, event: NotificationEvent) -> bool: ...

    async def send(self, event: NotificationEvent) -> None: ...


class _FilteredSink:
    name = "sink"

    def __init__(self, *, enabled: bool, events: Iterable[str]) -> None:
        self.enabled = enabled
        self.events = frozenset(events)

    def accepts(self, event: NotificationEvent) -> bool:
        return self.enabled and (not self.events or event.name in self.events)


def _applescript_string(value: str) -> str:
    return json.dumps(value)


class OsNotificationSink(_FilteredSink):
    name = "os"

    def __init__(
        self,
        *,
        enabled: bool = True,
        sound: bool = False,
        events: Iterable[str] = (),
        platform: str = sys.platform,
        run_fn: Optional[RunFn] = None,
    ) -> None:
        super().__init__(enabled=enabled, events=events)
        self.sound = sound
        self.platform = platform
        self._run_fn: RunFn = run_fn or subprocess.run

    @classmethod
    def from_config(
        cls, config: OsNotificationConfig, *, run_fn: Optional[RunFn] = None
    ) -> "OsNotificationSink":
        return cls(
            enabled=config.enabled,
            sound=config.sound,
            events=config.events,
            run_fn=run_fn,
        )

    def command(self, event: NotificationEvent) -> Optional[list[str]]:
        title, subtitle, body = event.render()
        if self.platform == "darwin":
            script = (
                f"display notification {_applescript_string(body)}"
                f" with title {_applescript_string(title)}"
            )
            if subtitle:
                script += f" subtitle {_applescript_string(subtitle)}"
            if self.sound:
                script += ' sound name "default"'
            return ["osascript", "-e", script]
        if self.platform.startswith("linux"):
            message = f"{subtitle}\n{body}" if subtitle else body
            cmd = ["notify-send", "--app-name=operator"]
            if self.sound:
                cmd.append("--hint=string:sound-name:message-new-instant")
            cmd.extend([title, message])
            return cmd
        return None

    def _run(self, cmd: list[str]) -> None:
        try:
            proc = self._run_fn(
                cmd,
                capture_output=True,
                text=True,
                timeout=_HELPER_TIMEOUT_SECONDS,
                check=False,
            )
        except FileNotFoundError:
            log_event(logger, logging.INFO, "notification.os.helper_missing", helper=cmd[0])
            return
        if proc.returncode != 0:
            log_event(
                logger,
                logging.WARNING,
                "notification.os.failed",
                helper=cmd[0],
                returncode=proc.returncode,
                stderr=(proc.stderr or "").strip() or None,
            )

    async def send(self, event: NotificationEvent) -> None:
        cmd = self.command(event)
        if cmd is None:
            log_event(logger, logging.DEBUG, "notification.os.unsupported", platform=self.platform)
            return
        await asyncio.to_thread(self._run, cmd)


def _auth_header(config: WebhookConfig, env: Mapping[str, str]) -> Optional[str]:
    if config.auth_type == "bearer":
        token = env.get(config.token_env or "")
        if not token:
            log_event(
                logger,
                logging.WARNING,
                "notification.webhook.token_missing",
                webhook=config.name,
                env=config.token_env,
            )
            return None
        return f"Bearer {token}"
    if config.auth_type == "basic":
        password = env.get(config.password_env or "", "")
        raw = f"{config.username or ''}:{password}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"
    return None


class WebhookSink(_FilteredSink):
    """POSTs ``{event, timestamp, data}`` to a URL; 5xx and transport errors are retried."""

    def __init__(
        self,
        config: WebhookConfig,
        *,
        env: Optional[Mapping[str, str]] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        super().__init__(enabled=config.enabled and bool(config.url), events=config.events)
        self.name = f"webhook:{config.name}"
        self.url = config.url
        self.headers = {"Content-Type": "application/json"}
        auth = _auth_header(config, os.environ if env is None else env)
        if auth:
            self.headers["Authorization"] = auth
        self._client_factory: ClientFactory = client_factory or (
            lambda: httpx.AsyncClient(timeout=_WEBHOOK_TIMEOUT_SECONDS)
        )

    @retry_transient()
    async def _post(self, payload: dict) -> None:
        async with self._client_factory() as client:
            try:
                response = await client.post(self.url, json=payload, headers=self.headers)
            except httpx.TransportError as exc:
                raise TransientError(f"Webhook {self.url} unreachable: {exc}") from exc
        if response.status_code >= 500:
            raise TransientError(f"Webhook {self.url} returned {response.status_code}")
        response.raise_for_status()

    async def send(self, event: NotificationEvent) -> None:
        await self._post(event.to_payload())
        log_event(
            logger,
            logging.DEBUG,
            "notification.webhook.sent",
            webhook=self.name,
            event_type=event.name,
        )
