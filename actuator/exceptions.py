"""
Exception types raised by the actuator core.
"""


class ActuatorError(Exception):
    """Base class for all actuator errors."""


class ProtocolError(ActuatorError):
    """An inbound message could not be parsed into a known shape."""


class InvalidPayloadError(ActuatorError):
    """A command delivery payload is missing required fields or has bad types."""


class DuplicateCommandError(ActuatorError):
    """A command id is already registered and still running."""

    def __init__(self, command_id: str):
        super().__init__(f"Duplicate command id: {command_id}")
        self.command_id = command_id


class RegistryClosedError(ActuatorError):
    """The command registry no longer accepts commands (shutdown in progress)."""
