from .agents import register_agent_commands
from .api import register_api_commands
from .queue import register_queue_commands
from .tickets import register_ticket_commands
from .utils import CliOptions, raise_exit, require_context

__all__ = [
    "CliOptions",
    "raise_exit",
    "register_agent_commands",
    "register_api_commands",
    "register_queue_commands",
    "register_ticket_commands",
    "require_context",
]
