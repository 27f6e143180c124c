from .launcher import Launcher, LaunchOptions, PreparedLaunch
from .state import AgentState, AgentStatus, StateStore, SupervisorState
from .status_block import StatusBlock, find_last_status_block, parse_status_block
from .supervisor import Supervisor
from .tmux import Tmux, TmuxVersion

__all__ = [
    "AgentState",
    "AgentStatus",
    "LaunchOptions",
    "Launcher",
    "PreparedLaunch",
    "StateStore",
    "StatusBlock",
    "Supervisor",
    "SupervisorState",
    "Tmux",
    "TmuxVersion",
    "find_last_status_block",
    "parse_status_block",
]
