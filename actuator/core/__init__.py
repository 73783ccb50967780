"""
Core functionality of the actuator: connection state, reconnection backoff
and command bookkeeping.
"""
from actuator.core.connection_state import ConnectionState
from actuator.core.backoff import BackoffPolicy
from actuator.core.command_registry import CommandRegistry, CommandEntry
from actuator.core.command_executor import CommandExecutor

__all__ = [
    'ConnectionState',
    'BackoffPolicy',
    'CommandRegistry',
    'CommandEntry',
    'CommandExecutor'
]
