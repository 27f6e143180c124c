"""Per-ticket git worktrees under ``<base>/<project>/<ticket-id>``."""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from ..core.exceptions import WorktreeError
from ..core.logging_utils import log_event

logger = logging.getLogger(__name__)

RunFn = Callable[..., "subprocess.CompletedProcess[str]"]

_GIT_TIMEOUT_SECONDS = 120

_path_locks: dict[Path, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _path_lock(path: Path) -> threading.Lock:
    with _path_locks_guard:
        lock = _path_locks.get(path)
        if lock is None:
            lock = threading.Lock()
            _path_locks[path] = lock
        return lock


@dataclass(frozen=True)
class WorktreeInfo:
    path: Path
    branch: str
    base_commit: str
    repo_path: Path
    target_branch: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "branch": self.branch,
            "base_commit": self.base_commit,
            "repo_path": str(self.repo_path),
            "target_branch": self.target_branch,
        }


class Git:
    """Thin wrapper over the git binary; every call goes through ``run_fn``."""

    def __init__(self, binary: str = "git", run_fn: Optional[RunFn] = None) -> None:
        self.binary = binary
        self._run_fn: RunFn = run_fn or subprocess.run

    def run(
        self, args: Sequence[str], cwd: Path, *, check: bool = True
    ) -> "subprocess.CompletedProcess[str]":
        try:
            proc = self._run_fn(
                [self.binary, *args],
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=_GIT_TIMEOUT_SECONDS,
            )
        except FileNotFoundError as exc:
            raise WorktreeError(f"git not available or bad path {cwd}: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise WorktreeError(f"git {' '.join(args)} timed out") from exc
        if check and proc.returncode != 0:
            detail = (proc.stderr or proc.stdout or "").strip() or f"exit {proc.returncode}"
            raise WorktreeError(f"git {' '.join(args)} failed: {detail}")
        return proc

    def output(self, args: Sequence[str], cwd: Path) -> str:
        return (self.run(args, cwd).stdout or "").strip()

    def succeeds(self, args: Sequence[str], cwd: Path) -> bool:
        try:
            return self.run(args, cwd, check=False).returncode == 0
        except WorktreeError:
            return False

    def is_repo(self, path: Path) -> bool:
        return path.is_dir() and self.succeeds(["rev-parse", "--git-dir"], path)

    def is_worktree_root(self, path: Path) -> bool:
        if not (path / ".git").exists():
            return False
        try:
            top = self.output(["rev-parse", "--show-toplevel"], path)
        except WorktreeError:
            return False
        return Path(top).resolve() == path.resolve()

    def current_branch(self, path: Path) -> str:
        return self.output(["rev-parse", "--abbrev-ref", "HEAD"], path)

    def head_commit(self, path: Path, ref: str = "HEAD") -> str:
        return self.output(["rev-parse", ref], path)

    def is_dirty(self, path: Path) -> bool:
        return bool(self.output(["status", "--porcelain"], path))

    def has_branch(self, path: Path, branch: str) -> bool:
        return bool(self.output(["branch", "--list", branch], path))

    def main_repo(self, path: Path) -> Path:
        """The checkout that owns the linked worktree at ``path``."""
        common = Path(self.output(["rev-parse", "--git-common-dir"], path))
        if not common.is_absolute():
            common = path / common
        return common.resolve().parent


class WorktreeManager:
    def __init__(self, base_dir: Path, git: Optional[Git] = None) -> None:
        self.base_dir = base_dir
        self.git = git or Git()

    def worktree_path(self, project: str, ticket_id: str) -> Path:
        return self.base_dir / project / ticket_id.lower()

    def _resolve_base_ref(self, repo_path: Path, base_branch: str) -> str:
        for ref in (f"origin/{base_branch}", base_branch):
            if self.git.succeeds(["rev-parse", "--verify", "--quiet", ref], repo_path):
                return ref
        return "HEAD"

    def _existing(
        self, path: Path, repo_path: Path, branch: str, base_branch: str
    ) -> WorktreeInfo:
        if not self.git.is_worktree_root(path):
            raise WorktreeError(f"Path exists but is not a valid git worktree: {path}")
        current = self.git.current_branch(path)
        if current != branch:
            log_event(
                logger,
                logging.WARNING,
                "worktree.branch_mismatch",
                path=path,
                expected=branch,
                actual=current,
            )
        return WorktreeInfo(
            path=path,
            branch=current,
            base_commit=self.git.head_commit(path),
            repo_path=repo_path,
            target_branch=base_branch,
        )

    def create_for_ticket(
        self,
        repo_path: Path,
        project: str,
        ticket_id: str,
        branch: str,
        base_branch: str,
    ) -> WorktreeInfo:
        """Add a worktree on a new ``branch`` forked from ``base_branch``."""
        path = self.worktree_path(project, ticket_id)
        with _path_lock(path):
            if path.exists():
                raise WorktreeError(f"Worktree path already exists: {path}")
            if not self.git.is_repo(repo_path):
                raise WorktreeError(f"Not a git repository: {repo_path}")
            path.parent.mkdir(parents=True, exist_ok=True)
            if not self.git.succeeds(["fetch", "origin"], repo_path):
                log_event(logger, logging.DEBUG, "worktree.fetch_skipped", repo=repo_path)
            base_ref = self._resolve_base_ref(repo_path, base_branch)
            base_commit = self.git.head_commit(repo_path, base_ref)
            if self.git.has_branch(repo_path, branch):
                # Kept from an earlier failed run; resume on it.
                args = ["worktree", "add", str(path), branch]
            else:
                args = ["worktree", "add", "-b", branch, str(path), base_ref]
            self.git.run(args, repo_path)
            log_event(
                logger,
                logging.INFO,
                "worktree.created",
                path=path,
                branch=branch,
                base_ref=base_ref,
            )
            return WorktreeInfo(
                path=path,
                branch=branch,
                base_commit=base_commit,
                repo_path=repo_path,
                target_branch=base_branch,
            )

    def ensure_worktree_exists(
        self,
        repo_path: Path,
        project: str,
        ticket_id: str,
        branch: str,
        base_branch: str,
    ) -> WorktreeInfo:
        path = self.worktree_path(project, ticket_id)
        if path.exists():
            return self._existing(path, repo_path, branch, base_branch)
        return self.create_for_ticket(repo_path, project, ticket_id, branch, base_branch)

    def list_project_worktrees(self, project: str) -> list[Path]:
        project_dir = self.base_dir / project
        if not project_dir.is_dir():
            return []
        return [
            entry
            for entry in sorted(project_dir.iterdir())
            if entry.is_dir() and self.git.is_worktree_root(entry)
        ]

    def cleanup_worktree(
        self, info: WorktreeInfo, *, delete_branch: bool = False, force: bool = False
    ) -> None:
        with _path_lock(info.path):
            if info.path.exists():
                args = ["worktree", "remove", str(info.path)]
                if force:
                    args.insert(2, "--force")
                try:
                    self.git.run(args, info.repo_path)
                except WorktreeError as exc:
                    if not force:
                        raise
                    log_event(
                        logger, logging.WARNING, "worktree.remove_failed", path=info.path, exc=exc
                    )
                    shutil.rmtree(info.path, ignore_errors=True)
            self.git.run(["worktree", "prune"], info.repo_path, check=False)
            branch_deleted = False
            if delete_branch and info.branch:
                # Without force only merged branches go; unmerged work stays reachable.
                flag = "-D" if force else "-d"
                proc = self.git.run(["branch", flag, info.branch], info.repo_path, check=False)
                branch_deleted = proc.returncode == 0
                if not branch_deleted:
                    log_event(
                        logger,
                        logging.INFO,
                        "worktree.branch_kept",
                        branch=info.branch,
                        detail=(proc.stderr or "").strip(),
                    )
            log_event(
                logger,
                logging.INFO,
                "worktree.removed",
                path=info.path,
                branch_deleted=branch_deleted,
            )

    def cleanup_for_ticket(
        self, path: Path, branch: str = "", *, delete_branch: bool = False
    ) -> bool:
        """Remove a ticket's worktree unless it holds uncommitted changes."""
        if not self.git.is_worktree_root(path):
            log_event(logger, logging.INFO, "worktree.cleanup_skipped", path=path)
            return False
        if self.git.is_dirty(path):
            log_event(logger, logging.WARNING, "worktree.kept_dirty", path=path)
            return False
        info = WorktreeInfo(
            path=path,
            branch=branch or self.git.current_branch(path),
            base_commit="",
            repo_path=self.git.main_repo(path),
            target_branch="",
        )
        self.cleanup_worktree(info, delete_branch=delete_branch)
        return True

    def cleanup_project_worktrees(self, project: str, repo_path: Path) -> int:
        removed = 0
        for path in self.list_project_worktrees(project):
            info = WorktreeInfo(
                path=path,
                branch=self.git.current_branch(path),
                base_commit="",
                repo_path=repo_path,
                target_branch="",
            )
            self.cleanup_worktree(info, force=True)
            removed += 1
        project_dir = self.base_dir / project
        if project_dir.is_dir() and not any(project_dir.iterdir()):
            project_dir.rmdir()
        return removed

    def is_dirty(self, info: WorktreeInfo) -> bool:
        return self.git.is_dirty(info.path)
