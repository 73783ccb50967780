"""
SEKS Actuator - remote execution agent for the SEKS broker.
"""
from actuator.version import __version__, __app_name__

__all__ = [
    '__version__',
    '__app_name__'
]
