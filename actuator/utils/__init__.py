"""
Utility functions for the actuator.
"""
from actuator.utils.logger import get_logger, setup_logger, get_file_logging_status

__all__ = [
    'get_logger',
    'setup_logger',
    'get_file_logging_status'
]
