from .worktrees import Git, WorktreeInfo, WorktreeManager

__all__ = ["Git", "WorktreeInfo", "WorktreeManager"]
