"""
Capability handlers for delivered commands.

    - BaseCommandHandler: Abstract base class for all handlers
    - ShellCommandHandler: Executes shell commands (actuator/shell)
"""
from .base_handler import BaseCommandHandler
from .shell_handler import ShellCommandHandler

__all__ = [
    'BaseCommandHandler',
    'ShellCommandHandler'
]
