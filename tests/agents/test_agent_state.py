from __future__ import annotations

from pathlib import Path

from ticket_operator.agents.state import AgentState, AgentStatus, StateStore, SupervisorState


def _agent(**overrides) -> AgentState:
    values = dict(
        id="feat-1",
        ticket_id="FEAT-1",
        ticket_type="FEAT",
        project="demo",
        session_name="op-FEAT-1",
        step="plan",
    )
    values.update(overrides)
    return AgentState(**values)


def test_with_status_keeps_message_unless_given() -> None:
    agent = _agent(last_message="hello")
    waiting = agent.with_status(AgentStatus.AWAITING_INPUT)
    assert waiting.last_message == "hello"
    assert waiting.last_status_change
    assert not waiting.awaiting_review
    reviewing = waiting.with_status(
        AgentStatus.AWAITING_INPUT, message="plan ready", review={"step": "plan"}
    )
    assert reviewing.awaiting_review
    assert reviewing.last_message == "plan ready"


def test_state_file_round_trip(tmp_path: Path) -> None:
    store = StateStore(tmp_path / "state.json")
    assert store.load().agents == {}
    agent = _agent(status=AgentStatus.AWAITING_INPUT, review={"step": "plan"})
    store.save(SupervisorState({agent.id: agent}, paused=True))

    loaded = store.load()
    assert loaded.paused is True
    assert loaded.updated_at
    assert loaded.agents == {"feat-1": agent}
    assert loaded.by_ticket("FEAT-1") == agent
    assert loaded.by_ticket("FEAT-2") is None


def test_corrupt_state_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{oops", encoding="utf-8")
    assert StateStore(path).load() == SupervisorState()


def test_invalid_agent_entries_are_dropped(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    store = StateStore(path)
    store.save_agents([_agent()], paused=False)
    text = path.read_text(encoding="utf-8").replace('"running"', '"sleeping"')
    path.write_text(text, encoding="utf-8")
    assert store.load().agents == {}
