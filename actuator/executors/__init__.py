"""
Subprocess executors used by the command handlers.
"""
from .shell_executor import (
    ProcessExecutor,
    ShellExecRequest,
    ExecCallbacks,
    kill_process_group,
    kill_process_tree,
    DEFAULT_TIMEOUT_MS,
    MAX_TIMEOUT_MS
)

__all__ = [
    'ProcessExecutor',
    'ShellExecRequest',
    'ExecCallbacks',
    'kill_process_group',
    'kill_process_tree',
    'DEFAULT_TIMEOUT_MS',
    'MAX_TIMEOUT_MS'
]
