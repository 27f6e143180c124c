from __future__ import annotations

import asyncio
import base64
import json
from subprocess import CompletedProcess

import httpx
import pytest

from ticket_operator.core.config import WebhookConfig
from ticket_operator.core.exceptions import TransientError
from ticket_operator.notifications import (
    NotificationEvent,
    NotificationEventType,
    OsNotificationSink,
    WebhookSink,
)

EVENT = NotificationEvent(
    type=NotificationEventType.AGENT_COMPLETED,
    ticket_id="FIX-3",
    project="api",
    message="Merged",
    timestamp="2024-12-21T12:00:00Z",
)


def _webhook(**kwargs) -> WebhookConfig:
    values = {
        "name": "ops",
        "url": "https://hooks.example.test/operator",
        "enabled": True,
        "events": (),
    }
    values.update(kwargs)
    return WebhookConfig(**values)


class TestOsNotificationSink:
    def test_linux_uses_notify_send(self) -> None:
        sink = OsNotificationSink(platform="linux")
        assert sink.command(EVENT) == [
            "notify-send",
            "--app-name=operator",
            "Ticket completed",
            "FIX-3 / api\nMerged",
        ]

    def test_darwin_uses_osascript(self) -> None:
        sink = OsNotificationSink(platform="darwin", sound=True)
        cmd = sink.command(EVENT)
        assert cmd[:2] == ["osascript", "-e"]
        assert cmd[2] == (
            'display notification "Merged" with title "Ticket completed"'
            ' subtitle "FIX-3 / api" sound name "default"'
        )

    def test_other_platforms_are_skipped(self) -> None:
        calls: list = []
        sink = OsNotificationSink(platform="win32", run_fn=lambda *a, **k: calls.append(a))
        assert sink.command(EVENT) is None
        asyncio.run(sink.send(EVENT))
        assert calls == []

    def test_send_runs_helper(self) -> None:
        calls: list[list[str]] = []

        def run_fn(cmd, **_kwargs):
            calls.append(cmd)
            return CompletedProcess(cmd, 0, "", "")

        asyncio.run(OsNotificationSink(platform="linux", run_fn=run_fn).send(EVENT))
        assert calls[0][0] == "notify-send"

    def test_missing_helper_is_tolerated(self) -> None:
        def run_fn(cmd, **_kwargs):
            raise FileNotFoundError(cmd[0])

        asyncio.run(OsNotificationSink(platform="linux", run_fn=run_fn).send(EVENT))

    def test_event_filter(self) -> None:
        sink = OsNotificationSink(platform="linux", events=["agent-failed"])
        assert not sink.accepts(EVENT)
        assert OsNotificationSink(platform="linux").accepts(EVENT)
        assert not OsNotificationSink(platform="linux", enabled=False).accepts(EVENT)


class TestWebhookSink:
    @staticmethod
    def _sink(handler, **kwargs) -> WebhookSink:
        transport = httpx.MockTransport(handler)
        return WebhookSink(
            _webhook(**kwargs),
            env={"OPS_TOKEN": "s3cret", "OPS_PASSWORD": "hunter2"},
            client_factory=lambda: httpx.AsyncClient(transport=transport),
        )

    @pytest.mark.asyncio
    async def test_posts_payload_with_bearer_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        sink = self._sink(handler, auth_type="bearer", token_env="OPS_TOKEN")
        await sink.send(EVENT)

        (request,) = seen
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.test/operator"
        assert request.headers["Authorization"] == "Bearer s3cret"
        assert json.loads(request.content) == EVENT.to_payload()

    @pytest.mark.asyncio
    async def test_basic_auth_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        sink = self._sink(
            handler, auth_type="basic", username="ops", password_env="OPS_PASSWORD"
        )
        await sink.send(EVENT)
        expected = base64.b64encode(b"ops:hunter2").decode("ascii")
        assert seen[0].headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self) -> None:
        statuses = iter([503, 200])
        attempts: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            attempts.append(status)
            return httpx.Response(status)

        await self._sink(handler).send(EVENT)
        assert attempts == [503, 200]

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self) -> None:
        attempts: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(404)
            return httpx.Response(404)

        with pytest.raises(httpx.HTTPStatusError):
            await self._sink(handler).send(EVENT)
        assert attempts == [404]

    @pytest.mark.asyncio
    async def test_unreachable_host_raises_transient_after_retries(self) -> None:
        attempts: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientError):
            await self._sink(handler).send(EVENT)
        assert len(attempts) == 3

    def test_missing_token_sends_without_auth(self) -> None:
        sink = WebhookSink(
            _webhook(auth_type="bearer", token_env="MISSING"), env={}
        )
        assert "Authorization" not in sink.headers
        assert sink.name == "webhook:ops"

    def test_disabled_without_url(self) -> None:
        assert not WebhookSink(_webhook(url=""), env={}).enabled
