from __future__ import annotations

import hashlib
import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ..core.exceptions import ConflictError, TmuxError
from ..core.logging_utils import log_event

logger = logging.getLogger(__name__)

RunFn = Callable[..., "subprocess.CompletedProcess[str]"]

_TMUX_TIMEOUT_SECONDS = 15
_INSTALL_HINT = "Install tmux 2.1 or newer (e.g. `brew install tmux` or `apt install tmux`)."


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def session_target(name: str) -> str:
    """Exact-match session target; plain names fall back to prefix matching."""
    return f"={name}"


def pane_target(name: str) -> str:
    return f"={name}:"


@dataclass(frozen=True)
class TmuxVersion:
    major: int
    minor: int
    raw: str = ""

    @classmethod
    def parse(cls, text: str) -> Optional["TmuxVersion"]:
        """Parse ``tmux -V`` output such as ``tmux 3.4`` or ``tmux 3.3a``."""
        parts = text.split()
        if len(parts) < 2:
            return None
        numeric = ""
        for char in parts[1]:
            if not (char.isdigit() or char == "."):
                break
            numeric += char
        pieces = numeric.split(".")
        if not pieces[0]:
            return None
        major = int(pieces[0])
        minor = int(pieces[1]) if len(pieces) > 1 and pieces[1].isdigit() else 0
        return cls(major, minor, text.strip())

    @classmethod
    def parse_minimum(cls, text: str) -> "TmuxVersion":
        parsed = cls.parse(f"tmux {text}")
        if parsed is None:
            raise ValueError(f"Invalid tmux version: {text}")
        return parsed

    def meets_minimum(self, major: int, minor: int) -> bool:
        return self.major > major or (self.major == major and self.minor >= minor)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


class Tmux:
    """The subset of tmux the launcher and supervisor rely on."""

    def __init__(self, binary: str = "tmux", run_fn: Optional[RunFn] = None) -> None:
        self.binary = binary
        self._run_fn: RunFn = run_fn or subprocess.run

    def _run(self, args: Sequence[str]) -> "subprocess.CompletedProcess[str]":
        try:
            return self._run_fn(
                [self.binary, *args],
                capture_output=True,
                text=True,
                timeout=_TMUX_TIMEOUT_SECONDS,
            )
        except FileNotFoundError as exc:
            raise TmuxError("tmux is not installed.", remediation=_INSTALL_HINT) from exc
        except subprocess.TimeoutExpired as exc:
            raise TmuxError(f"tmux {' '.join(args)} timed out") from exc

    def _check(self, proc: "subprocess.CompletedProcess[str]", action: str) -> str:
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout or "").strip() or f"exit {proc.returncode}"
            raise TmuxError(f"tmux {action} failed: {detail}")
        return proc.stdout or ""

    def version(self) -> TmuxVersion:
        output = self._check(self._run(["-V"]), "-V")
        parsed = TmuxVersion.parse(output)
        if parsed is None:
            raise TmuxError(f"Could not parse tmux version: {output.strip()!r}")
        return parsed

    def check_available(self, min_version: str = "2.1") -> TmuxVersion:
        version = self.version()
        minimum = TmuxVersion.parse_minimum(min_version)
        if not version.meets_minimum(minimum.major, minimum.minor):
            raise TmuxError(
                f"tmux {version} is older than the required {minimum}.",
                remediation=_INSTALL_HINT,
            )
        return version

    def session_exists(self, name: str) -> bool:
        return self._run(["has-session", "-t", session_target(name)]).returncode == 0

    def create_session(
        self,
        name: str,
        cwd: str,
        command: Optional[str] = None,
        *,
        remain_on_exit: bool = True,
    ) -> None:
        """Start a detached session; with ``remain_on_exit`` the pane outlives the command."""
        if self.session_exists(name):
            raise ConflictError(f"tmux session already exists: {name}")
        args = ["new-session", "-d", "-s", name, "-c", cwd]
        if command:
            args.append(command)
        if remain_on_exit:
            args.extend([";", "set-option", "-t", session_target(name), "remain-on-exit", "on"])
        self._check(self._run(args), f"new-session {name}")
        log_event(logger, logging.INFO, "tmux.session_created", session=name, cwd=cwd)

    def kill_session(self, name: str) -> None:
        proc = self._run(["kill-session", "-t", session_target(name)])
        self._check(proc, f"kill-session {name}")
        log_event(logger, logging.INFO, "tmux.session_killed", session=name)

    def list_sessions(self, prefix: Optional[str] = None) -> list[str]:
        proc = self._run(["list-sessions", "-F", "#{session_name}"])
        if proc.returncode != 0:
            # No server running means no sessions.
            return []
        names = [line.strip() for line in (proc.stdout or "").splitlines() if line.strip()]
        if prefix:
            names = [name for name in names if name.startswith(prefix)]
        return names

    def capture_pane(self, name: str, *, history_lines: int = 2000) -> str:
        proc = self._run(
            ["capture-pane", "-p", "-J", "-S", f"-{history_lines}", "-t", pane_target(name)]
        )
        return self._check(proc, f"capture-pane {name}")

    def pane_hash(self, name: str) -> str:
        return text_hash(self.capture_pane(name))

    def send_keys(self, name: str, keys: str, *, enter: bool = True) -> None:
        args = ["send-keys", "-t", pane_target(name), keys]
        if enter:
            args.append("Enter")
        self._check(self._run(args), f"send-keys {name}")

    def pane_dead(self, name: str) -> bool:
        """True once the command in the session's pane has exited."""
        proc = self._run(["display-message", "-p", "-t", pane_target(name), "#{pane_dead}"])
        if proc.returncode != 0:
            return False
        return (proc.stdout or "").strip() == "1"
