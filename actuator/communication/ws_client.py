"""
WebSocket connection session with the broker: connect, authenticate,
dispatch inbound messages, send outbound ones and reconnect with backoff.
"""
import asyncio
import re
from typing import Any, Awaitable, Callable, Optional, Set, Union, TYPE_CHECKING
from urllib.parse import quote, urlencode

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from actuator.communication.protocol import (
    CommandDelivery,
    OutboundMessage,
    Ping,
    Pong,
    Register,
    RegistrationAck,
    ServerError,
    encode,
    host_metadata,
    parse_inbound
)
from actuator.config import HANDSHAKE_QUERY, HANDSHAKE_REGISTER, SHELL_CAPABILITY
from actuator.core.connection_state import ConnectionState
from actuator.exceptions import ProtocolError
from actuator.utils import get_logger

if TYPE_CHECKING:
    from actuator.config import ConfigManager
    from actuator.core.backoff import BackoffPolicy
    from actuator.core.command_executor import CommandExecutor

logger = get_logger("session")

NORMAL_CLOSURE = 1000
INTERNAL_ERROR = 1011
SHUTDOWN_REASON = 'actuator shutting down'
MAX_FRAME_BYTES = 16 * 1024 * 1024

Connector = Callable[..., Awaitable[Any]]


def _is_open(ws: Any) -> bool:
    return getattr(ws, 'state', None) is State.OPEN


class WSClient:
    """
    Owns the broker connection and its state machine::

        DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED -> ...
        any state -> SHUTTING_DOWN (terminal)

    All methods run on the event loop thread. Running commands are not tied
    to the connection: a disconnect leaves them running, only stop()
    cancels them.
    """

    def __init__(self,
                 config: 'ConfigManager',
                 backoff: 'BackoffPolicy',
                 command_executor: 'CommandExecutor',
                 connector: Optional[Connector] = None):
        """
        Initialize the connection session.

        :param config: The configuration manager instance
        :type config: ConfigManager
        :param backoff: Reconnection policy driven by this session
        :type backoff: BackoffPolicy
        :param command_executor: Receives command deliveries; cancelled on stop()
        :type command_executor: CommandExecutor
        :param connector: Coroutine function opening the transport; websockets' connect if None
        :type connector: Optional[Connector]
        :raises ValueError: If broker_url or agent_token is not configured
        """
        self.config = config
        self.broker_url: str = config.get('broker_url')
        self.agent_token: str = config.get('agent_token')
        if not self.broker_url or not self.agent_token:
            raise ValueError("broker_url and agent_token are required for WSClient.")

        self.actuator_id: str = config.get('actuator_id')
        self.capabilities = list(config.get('capabilities', [SHELL_CAPABILITY]))
        self.handshake: str = config.get('websocket.handshake', HANDSHAKE_QUERY)
        self.open_timeout: float = config.get('websocket.open_timeout_sec', 10)
        self.ping_interval: Optional[float] = config.get('websocket.ping_interval_sec', 20)

        self.backoff = backoff
        self.command_executor = command_executor
        self._connector = connector or connect

        self._state = ConnectionState.DISCONNECTED
        self._ws: Optional[Any] = None
        self._connection_task: Optional['asyncio.Task[None]'] = None
        self._close_task: Optional['asyncio.Task[None]'] = None
        self._send_tasks: Set['asyncio.Task[None]'] = set()
        self._reconnect_exhausted = False

        logger.info(f"WebSocket session configured: broker={self.broker_url}, actuator={self.actuator_id}, "
                    f"handshake={self.handshake}, capabilities={','.join(self.capabilities)}")

    # === STATE ===

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._ws is not None and _is_open(self._ws)

    @property
    def reconnect_exhausted(self) -> bool:
        """True once the reconnect ceiling was hit; the session will not reconnect by itself."""
        return self._reconnect_exhausted

    def _set_state(self, new_state: ConnectionState):
        if self._state is not new_state:
            logger.debug(f"State transition: {self._state.name} -> {new_state.name}")
            self._state = new_state

    # === LIFECYCLE ===

    def start(self):
        """
        Starts connecting. Does nothing while connecting/connected or after stop().
        """
        if self._state is ConnectionState.SHUTTING_DOWN:
            logger.warning("Start requested but the session has been stopped.")
            return
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("Start requested but the session is already connecting or connected.")
            return
        self._connect()

    def stop(self):
        """
        Shuts the session down for good: no more reconnects, every running
        command is force-killed and an open transport is closed with a
        normal-closure code. Idempotent and never raises, so it can be
        called from a signal handler.
        """
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        try:
            logger.info("Stopping broker session...")
            self._set_state(ConnectionState.SHUTTING_DOWN)
            self.backoff.destroy()
            self.command_executor.cancel_all()

            ws, self._ws = self._ws, None
            task = self._connection_task
            if ws is not None:
                self._close_task = asyncio.get_running_loop().create_task(self._close_transport(ws))
            elif task is not None and not task.done():
                task.cancel()
        except Exception as e:
            logger.error(f"Error while stopping broker session: {e}", exc_info=True)

    async def wait_closed(self):
        """Waits until the transport close and the connection task have finished."""
        pending = [t for t in (self._close_task, self._connection_task) if t is not None and not t.done()]
        if pending:
            await asyncio.wait(pending)

    # === CONNECTION ===

    def build_connection_url(self) -> str:
        """
        Builds the WebSocket URL for the configured handshake variant.

        ``query`` carries identity and token as query parameters;
        ``register`` connects to the bare endpoint and sends a registration
        message after open.

        :return: ws:// or wss:// URL
        :rtype: str
        """
        base = re.sub(r'^http', 'ws', self.broker_url.rstrip('/'))
        if self.handshake == HANDSHAKE_REGISTER:
            return f"{base}/ws/actuator"
        query = urlencode(
            {'token': self.agent_token, 'role': 'actuator', 'actuator_id': self.actuator_id},
            quote_via=quote
        )
        return f"{base}/ws?{query}"

    def _registration_message(self) -> Register:
        return Register(
            token=self.agent_token,
            actuator_id=self.actuator_id,
            capabilities=self.capabilities,
            metadata=host_metadata()
        )

    def _connect(self):
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        if self._connection_task is not None and not self._connection_task.done():
            logger.debug("Connection attempt skipped: one is already in progress.")
            return
        self._set_state(ConnectionState.CONNECTING)
        self._connection_task = asyncio.get_running_loop().create_task(
            self._run_connection(), name="broker-connection"
        )

    async def _run_connection(self):
        url = self.build_connection_url()
        logger.info(f"Connecting to {url.split('?', 1)[0]} as {self.actuator_id}")
        try:
            ws = await self._connector(
                url,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
                max_size=MAX_FRAME_BYTES
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"WebSocket connection failed: {e}")
            self._on_transport_closed()
            return
        except Exception as e:
            logger.critical(f"Unexpected error opening WebSocket connection: {e}", exc_info=True)
            self._on_transport_closed()
            return

        try:
            if self.handshake == HANDSHAKE_REGISTER:
                await ws.send(encode(self._registration_message()))
            if self._state is ConnectionState.SHUTTING_DOWN:
                await self._close_transport(ws)
                return

            self._ws = ws
            self._set_state(ConnectionState.CONNECTED)
            self.backoff.reset()
            logger.info(f"Connected and authenticated as {self.actuator_id}")

            async for raw in ws:
                await self._dispatch(raw)
            logger.info(f"Disconnected: {getattr(ws, 'close_code', None)} {getattr(ws, 'close_reason', '')}")
        except ConnectionClosed as e:
            logger.warning(f"WebSocket connection lost: {e}")
        except asyncio.CancelledError:
            await self._close_transport(ws)
            raise
        except Exception as e:
            logger.error(f"Error on WebSocket connection, dropping it: {e}", exc_info=True)
            await self._close_transport(ws, code=INTERNAL_ERROR, reason="actuator connection error")
        finally:
            if self._ws is ws:
                self._ws = None

        self._on_transport_closed()

    def _on_transport_closed(self):
        if self._state is ConnectionState.SHUTTING_DOWN:
            return
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)
        if not self.backoff.schedule(self._connect):
            self._reconnect_exhausted = True
            logger.critical("Max reconnection attempts reached. The actuator will not reconnect automatically.")

    async def _close_transport(self, ws: Any, code: int = NORMAL_CLOSURE, reason: str = SHUTDOWN_REASON):
        try:
            await ws.close(code=code, reason=reason)
            logger.info("WebSocket closed.")
        except Exception as e:
            logger.error(f"Error closing WebSocket: {e}", exc_info=True)

    # === INBOUND ===

    async def _dispatch(self, raw: Union[str, bytes]):
        """Parses and routes one inbound frame. Never raises."""
        try:
            message = parse_inbound(raw)
        except ProtocolError as e:
            logger.error(f"Invalid message discarded: {e}")
            return

        try:
            if isinstance(message, CommandDelivery):
                await self.command_executor.handle_incoming_command(message)
            elif isinstance(message, Ping):
                self.send(Pong(ts=message.ts))
            elif isinstance(message, ServerError):
                ref = f" (ref {message.ref_id})" if message.ref_id else ""
                logger.error(f"Broker error [{message.code}]: {message.message}{ref}")
            elif isinstance(message, RegistrationAck):
                logger.info(f"Registration acknowledged by broker for {message.actuator_id or self.actuator_id}")
            else:
                logger.warning(f"Unknown message type: {message.kind}")
        except Exception as e:
            logger.error(f"Error handling {type(message).__name__} message: {e}", exc_info=True)

    # === OUTBOUND ===

    def send(self, message: OutboundMessage) -> bool:
        """
        Sends a message if the transport is open. Otherwise the message is
        dropped; nothing is queued or retried across reconnects.

        :param message: Outbound message
        :type message: OutboundMessage
        :return: True if the message was handed to the transport
        :rtype: bool
        """
        ws = self._ws
        if ws is None or self._state is not ConnectionState.CONNECTED or not _is_open(ws):
            logger.debug(f"Dropping outbound {type(message).__name__}: transport not open.")
            return False

        task = asyncio.get_running_loop().create_task(self._transmit(ws, encode(message)))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)
        return True

    async def _transmit(self, ws: Any, payload: str):
        try:
            await ws.send(payload)
        except ConnectionClosed as e:
            logger.warning(f"Outbound message dropped, connection closed: {e}")
        except Exception as e:
            logger.error(f"Error sending outbound message: {e}", exc_info=True)

    async def flush(self):
        """Waits for outbound writes already handed to the transport."""
        if self._send_tasks:
            await asyncio.wait(list(self._send_tasks))
