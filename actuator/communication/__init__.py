"""
Communication with the broker: wire protocol and WebSocket session.
"""
from actuator.communication import protocol
from actuator.communication.ws_client import WSClient

__all__ = [
    'protocol',
    'WSClient'
]
