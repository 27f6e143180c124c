"""Test harness configuration.

This repo uses a `src/` layout. Ensure tests always import the in-repo code
rather than an older installed `ticket_operator`.
"""

from __future__ import annotations

import sys
from pathlib import Path
from subprocess import CompletedProcess
from typing import Optional

import pytest

DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS = 120


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    src_path = str(src_dir)
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    """
    Apply a default per-test timeout to non-integration tests.

    This relies on `pytest-timeout` when installed; if it isn't installed, the
    marker is inert but still documents the intent.
    """
    _ = session, config
    for item in items:
        if item.get_closest_marker("integration") is not None:
            continue
        item.add_marker(pytest.mark.timeout(DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS))


def _proc(args: list[str], returncode: int = 0, stdout: str = "") -> CompletedProcess[str]:
    return CompletedProcess(args=args, returncode=returncode, stdout=stdout, stderr="")


class FakeTmux:
    """Stands in for the tmux binary: sessions, pane text and dead panes.

    Any command that is not tmux (tool version probes, notify-send) succeeds
    with empty output.
    """

    def __init__(self, version: str = "tmux 3.4") -> None:
        self.version = version
        self.panes: dict[str, str] = {}
        self.commands: dict[str, str] = {}
        self.dead: set[str] = set()
        self.calls: list[list[str]] = []
        self.created: list[str] = []

    def emit(self, name: str, text: str) -> None:
        self.panes[name] = self.panes.get(name, "") + text

    def exit(self, name: str) -> None:
        self.dead.add(name)

    def vanish(self, name: str) -> None:
        self.panes.pop(name, None)
        self.dead.discard(name)

    @staticmethod
    def _session(target: str) -> str:
        return target.lstrip("=").rstrip(":")

    def __call__(self, args: list[str], **_kwargs) -> CompletedProcess[str]:
        self.calls.append(list(args))
        if not args or args[0] != "tmux":
            return _proc(args)
        verb = args[1]
        if verb == "-V":
            return _proc(args, stdout=f"{self.version}\n")
        if verb == "has-session":
            return _proc(args, 0 if self._session(args[3]) in self.panes else 1)
        if verb == "new-session":
            name = args[args.index("-s") + 1]
            self.panes[name] = ""
            self.dead.discard(name)
            self.commands[name] = args[7] if len(args) > 7 and args[7] != ";" else ""
            self.created.append(name)
            return _proc(args)
        if verb == "kill-session":
            name = self._session(args[3])
            if name not in self.panes:
                return _proc(args, 1)
            self.vanish(name)
            return _proc(args)
        if verb == "list-sessions":
            if not self.panes:
                return _proc(args, 1)
            return _proc(args, stdout="\n".join(self.panes) + "\n")
        if verb == "capture-pane":
            name = self._session(args[-1])
            if name not in self.panes:
                return _proc(args, 1)
            return _proc(args, stdout=self.panes[name])
        if verb == "display-message":
            name = self._session(args[4])
            if name not in self.panes:
                return _proc(args, 1)
            return _proc(args, stdout="1\n" if name in self.dead else "0\n")
        if verb == "send-keys":
            return _proc(args)
        raise AssertionError(f"unexpected tmux args: {args}")


class RecordingSink:
    name = "recording"
    enabled = True

    def __init__(self) -> None:
        self.events: list = []

    def accepts(self, event) -> bool:
        return True

    async def send(self, event) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.name for event in self.events]


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    (root / "demo").mkdir(parents=True)
    return root


@pytest.fixture()
def make_config(workspace: Path, tmp_path: Path):
    from ticket_operator.core.config import load_config

    def _make(env: Optional[dict[str, str]] = None, **kwargs):
        values = {
            "OPERATOR_LOGGING__TO_FILE": "false",
            "OPERATOR_PATHS__WORKTREES": str(tmp_path / "worktrees"),
        }
        values.update(env or {})
        return load_config(
            workspace,
            user_config_path=tmp_path / "no-user-config.toml",
            env=values,
            **kwargs,
        )

    return _make


@pytest.fixture()
def config(make_config):
    return make_config()


@pytest.fixture()
def fake_tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def make_context(make_config, fake_tmux: FakeTmux, sink: RecordingSink):
    from ticket_operator.notifications import NotificationDispatcher
    from ticket_operator.web.app_state import build_operator_context

    def _make(env: Optional[dict[str, str]] = None, **kwargs):
        return build_operator_context(
            make_config(env),
            run_fn=fake_tmux,
            which=lambda name: f"/usr/local/bin/{name}",
            env={},
            dispatcher=NotificationDispatcher([sink]),
            cpu_count=8,
            **kwargs,
        )

    return _make


@pytest.fixture()
def context(make_context):
    return make_context()


def write_ticket_file(
    directory: Path,
    filename: str,
    *,
    ticket_id: str,
    status: str = "queued",
    step: str = "",
    summary: str = "Example ticket",
    priority: str = "P2-medium",
) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    lines = [
        "---",
        f"id: {ticket_id}",
        f"priority: {priority}",
        f"status: {status}",
    ]
    if step:
        lines.append(f"step: {step}")
    lines.extend(["---", "", f"# Task: {summary}", "", "Body text.", ""])
    path.write_text("\n".join(lines), encoding="utf-8")
    return path
