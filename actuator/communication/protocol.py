"""
Wire protocol between the actuator and the broker.

Every frame is a JSON object discriminated by its ``type`` field (``kind``
is accepted as a fallback). Inbound frames are parsed into one of the
dataclasses below; anything unrecognised becomes an UnknownMessage so newer
brokers can add message kinds without breaking older actuators.
"""
import json
import platform
import socket
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from actuator.exceptions import ProtocolError

# Broker -> actuator
COMMAND_DELIVERY = 'command_delivery'
PING = 'ping'
ERROR = 'error'
REGISTERED = 'actuator.registered'

# Actuator -> broker
COMMAND_RESULT = 'command_result'
PONG = 'pong'
REGISTER = 'actuator.register'

STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'


# --- Inbound ---

@dataclass(frozen=True)
class CommandDelivery:
    id: str
    capability: str
    payload: Any = None


@dataclass(frozen=True)
class Ping:
    ts: Any = None


@dataclass(frozen=True)
class ServerError:
    code: str
    message: str
    ref_id: Optional[str] = None


@dataclass(frozen=True)
class RegistrationAck:
    actuator_id: Optional[str] = None


@dataclass(frozen=True)
class UnknownMessage:
    kind: str
    raw: Dict[str, Any] = field(default_factory=dict)


InboundMessage = Union[CommandDelivery, Ping, ServerError, RegistrationAck, UnknownMessage]


# --- Outbound ---

@dataclass(frozen=True)
class CommandResult:
    id: str
    status: str
    result: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': COMMAND_RESULT, 'id': self.id, 'status': self.status, 'result': self.result}

    @classmethod
    def failure(cls, command_id: str, error: str, **extra: Any) -> 'CommandResult':
        """Shortcut for a failed result carrying an error message."""
        result: Dict[str, Any] = {'error': error}
        result.update(extra)
        return cls(id=command_id, status=STATUS_FAILED, result=result)


@dataclass(frozen=True)
class Pong:
    ts: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {'type': PONG, 'ts': self.ts}


@dataclass(frozen=True)
class Register:
    token: str
    actuator_id: str
    capabilities: List[str]
    metadata: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': REGISTER,
            'token': self.token,
            'actuatorId': self.actuator_id,
            'capabilities': list(self.capabilities),
            'metadata': dict(self.metadata),
        }


OutboundMessage = Union[CommandResult, Pong, Register]


def encode(message: OutboundMessage) -> str:
    """Serializes an outbound message to a compact JSON text frame."""
    return json.dumps(message.to_dict(), separators=(',', ':'))


def parse_inbound(raw: Union[str, bytes]) -> InboundMessage:
    """
    Parses one inbound frame.

    :param raw: Text or binary frame as received
    :type raw: Union[str, bytes]
    :return: The typed message
    :rtype: InboundMessage
    :raises ProtocolError: If the frame is not a JSON object with a string
        discriminator, or a command delivery cannot be correlated
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not valid UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ProtocolError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Frame must be a JSON object, got {type(data).__name__}")

    kind = data.get('type', data.get('kind'))
    if not isinstance(kind, str) or not kind:
        raise ProtocolError("Frame has no 'type' discriminator")

    if kind == COMMAND_DELIVERY:
        command_id = data.get('id')
        if not isinstance(command_id, str) or not command_id:
            raise ProtocolError("command_delivery without a string 'id'")
        capability = data.get('capability')
        return CommandDelivery(
            id=command_id,
            capability=capability if isinstance(capability, str) else '',
            payload=data.get('payload')
        )
    if kind == PING:
        return Ping(ts=data.get('ts'))
    if kind == ERROR:
        return ServerError(
            code=str(data.get('code', 'unknown')),
            message=str(data.get('message', '')),
            ref_id=data.get('ref_id')
        )
    if kind == REGISTERED:
        return RegistrationAck(actuator_id=data.get('actuatorId'))
    return UnknownMessage(kind=kind, raw=data)


def host_metadata() -> Dict[str, str]:
    """Describes the local host for the registration message."""
    return {
        'hostname': socket.gethostname(),
        'os': sys.platform,
        'arch': platform.machine(),
    }
