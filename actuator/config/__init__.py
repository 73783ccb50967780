"""
Configuration management for the actuator.
"""
from .config_manager import (
    ConfigManager,
    SHELL_CAPABILITY,
    HANDSHAKE_QUERY,
    HANDSHAKE_REGISTER
)

__all__ = [
    'ConfigManager',
    'SHELL_CAPABILITY',
    'HANDSHAKE_QUERY',
    'HANDSHAKE_REGISTER'
]
