"""Screen state and the status-message dispatcher."""

from .dispatcher import handle_command_message
from .state import AppState, Workflow

__all__ = ["AppState", "Workflow", "handle_command_message"]
