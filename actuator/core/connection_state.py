"""
Defines the states of the broker connection session.
"""
from enum import Enum, auto


class ConnectionState(Enum):
    """
    Enumeration of connection session states.

    States:
        DISCONNECTED: No transport; a reconnect may be pending
        CONNECTING: A connection attempt is in flight
        CONNECTED: Transport open and registration done
        SHUTTING_DOWN: stop() was called; terminal
    """
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    SHUTTING_DOWN = auto()
