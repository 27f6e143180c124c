from __future__ import annotations

import asyncio

import pytest

from conftest import RecordingSink
from ticket_operator.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationEventType,
    OsNotificationSink,
    WebhookSink,
)


class ExplodingSink(RecordingSink):
    name = "exploding"

    async def send(self, event) -> None:
        raise RuntimeError("boom")


class FilteringSink(RecordingSink):
    name = "filtering"

    def accepts(self, event) -> bool:
        return event.type == NotificationEventType.AGENT_FAILED


def _event(kind=NotificationEventType.AGENT_STARTED, **kwargs) -> NotificationEvent:
    return NotificationEvent(type=kind, ticket_id="FEAT-1", project="web", **kwargs)


def test_notify_without_loop_runs_sends_inline() -> None:
    sink = RecordingSink()
    dispatcher = NotificationDispatcher([sink])
    dispatcher.notify(_event())
    assert sink.names() == ["agent-started"]


def test_failing_sink_does_not_block_others() -> None:
    good = RecordingSink()
    dispatcher = NotificationDispatcher([ExplodingSink(), good])
    dispatcher.notify(_event(NotificationEventType.AGENT_FAILED))
    assert good.names() == ["agent-failed"]


def test_sinks_filter_their_own_events() -> None:
    picky = FilteringSink()
    dispatcher = NotificationDispatcher([picky])
    dispatcher.notify(_event())
    dispatcher.notify(_event(NotificationEventType.AGENT_FAILED))
    assert picky.names() == ["agent-failed"]
    assert dispatcher.matching(_event()) == []


def test_disabled_dispatcher_sends_nothing() -> None:
    sink = RecordingSink()
    dispatcher = NotificationDispatcher([sink], enabled=False)
    dispatcher.notify(_event())
    assert sink.events == []


@pytest.mark.asyncio
async def test_notify_inside_loop_schedules_tasks() -> None:
    sink = RecordingSink()
    dispatcher = NotificationDispatcher([sink])
    dispatcher.notify(_event())
    assert sink.events == []
    await dispatcher.drain()
    assert sink.names() == ["agent-started"]


@pytest.mark.asyncio
async def test_notify_from_worker_thread_uses_bound_loop() -> None:
    sink = RecordingSink()
    dispatcher = NotificationDispatcher([sink])
    dispatcher.bind_loop(asyncio.get_running_loop())
    await asyncio.to_thread(dispatcher.notify, _event(NotificationEventType.REVIEW_PENDING))
    await dispatcher.drain()
    assert sink.names() == ["review-pending"]


def test_from_config_builds_os_and_webhook_sinks(make_config) -> None:
    config = make_config(
        {
            "OPERATOR_NOTIFICATIONS__OS__ENABLED": "false",
        }
    )
    dispatcher = NotificationDispatcher.from_config(config, env={})
    (os_sink,) = dispatcher.sinks
    assert isinstance(os_sink, OsNotificationSink)
    assert os_sink.enabled is False
    assert not any(isinstance(sink, WebhookSink) for sink in dispatcher.sinks)


def test_event_payload_and_render() -> None:
    event = NotificationEvent(
        type=NotificationEventType.REVIEW_PENDING,
        ticket_id="FEAT-1",
        project="web",
        step="plan",
        message="Plan ready",
        data={"agent_id": "a1b2c3d4"},
        timestamp="2024-12-21T12:00:00Z",
    )
    assert event.to_payload() == {
        "event": "review-pending",
        "timestamp": "2024-12-21T12:00:00Z",
        "data": {
            "ticket_id": "FEAT-1",
            "project": "web",
            "step": "plan",
            "message": "Plan ready",
            "agent_id": "a1b2c3d4",
        },
    }
    assert event.render() == ("Review requested", "FEAT-1 / web", "Plan ready")
    quiet = NotificationEvent(type=NotificationEventType.AGENT_STARTED, step="build")
    assert quiet.render() == ("Agent started", "", "Step: build")
