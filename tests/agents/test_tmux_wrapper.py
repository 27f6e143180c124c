from __future__ import annotations

import subprocess

import pytest

from conftest import FakeTmux
from ticket_operator.agents.tmux import Tmux, TmuxVersion, text_hash
from ticket_operator.core.exceptions import ConflictError, TmuxError


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("tmux 3.4", (3, 4)),
        ("tmux 3.3a", (3, 3)),
        ("tmux next-3.5", None),
        ("tmux 2", (2, 0)),
        ("garbage", None),
    ],
)
def test_version_parse(text: str, expected) -> None:
    parsed = TmuxVersion.parse(text)
    if expected is None:
        assert parsed is None
    else:
        assert (parsed.major, parsed.minor) == expected


def test_check_available_enforces_minimum() -> None:
    assert str(Tmux(run_fn=FakeTmux("tmux 3.4")).check_available("2.1")) == "3.4"
    with pytest.raises(TmuxError, match="older than"):
        Tmux(run_fn=FakeTmux("tmux 1.8")).check_available("2.1")


def test_missing_binary_has_remediation() -> None:
    def missing(args, **_kwargs):
        raise FileNotFoundError(args[0])

    with pytest.raises(TmuxError) as excinfo:
        Tmux(run_fn=missing).version()
    assert "Install tmux" in excinfo.value.describe()


def test_timeouts_become_tmux_errors() -> None:
    def slow(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs.get("timeout"))

    with pytest.raises(TmuxError, match="timed out"):
        Tmux(run_fn=slow).capture_pane("op-X")


def test_session_lifecycle() -> None:
    fake = FakeTmux()
    tmux = Tmux(run_fn=fake)
    tmux.create_session("op-T-1", "/srv", "bash /x.sh")
    new_session = next(call for call in fake.calls if call[1] == "new-session")
    assert new_session[-6:] == [";", "set-option", "-t", "=op-T-1", "remain-on-exit", "on"]
    assert tmux.session_exists("op-T-1")
    assert fake.commands["op-T-1"] == "bash /x.sh"
    with pytest.raises(ConflictError):
        tmux.create_session("op-T-1", "/srv")

    fake.emit("op-T-1", "hello\n")
    assert tmux.capture_pane("op-T-1") == "hello\n"
    assert tmux.pane_hash("op-T-1") == text_hash("hello\n")
    assert not tmux.pane_dead("op-T-1")
    fake.exit("op-T-1")
    assert tmux.pane_dead("op-T-1")

    tmux.kill_session("op-T-1")
    assert not tmux.session_exists("op-T-1")
    with pytest.raises(TmuxError):
        tmux.kill_session("op-T-1")


def test_list_sessions_filters_prefix_and_tolerates_no_server() -> None:
    fake = FakeTmux()
    tmux = Tmux(run_fn=fake)
    assert tmux.list_sessions() == []
    fake.panes.update({"op-A": "", "main": ""})
    assert tmux.list_sessions("op-") == ["op-A"]
    assert sorted(tmux.list_sessions()) == ["main", "op-A"]


def test_send_keys() -> None:
    fake = FakeTmux()
    Tmux(run_fn=fake).send_keys("op-A", "y")
    assert fake.calls[-1] == ["tmux", "send-keys", "-t", "=op-A:", "y", "Enter"]


def test_pane_commands_never_prefix_match_other_sessions() -> None:
    fake = FakeTmux()
    fake.panes["op-FEAT-10"] = "someone else\n"
    tmux = Tmux(run_fn=fake)

    with pytest.raises(TmuxError):
        tmux.capture_pane("op-FEAT-1")
    assert not tmux.pane_dead("op-FEAT-1")
    tmux.send_keys("op-FEAT-1", "y")
    assert not tmux.session_exists("op-FEAT-1")

    targets = [call[call.index("-t") + 1] for call in fake.calls]
    assert targets == ["=op-FEAT-1:", "=op-FEAT-1:", "=op-FEAT-1:", "=op-FEAT-1"]
