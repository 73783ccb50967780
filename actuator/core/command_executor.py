"""
Command Executor module: validates delivered commands, routes them to the
capability handlers and reports exactly one result per command.
"""
from typing import Callable, Dict, Iterable, List, Optional, TYPE_CHECKING

from actuator.command_handlers import BaseCommandHandler, ShellCommandHandler
from actuator.communication.protocol import CommandDelivery, CommandResult
from actuator.core.command_registry import CommandRegistry
from actuator.exceptions import DuplicateCommandError, InvalidPayloadError, RegistryClosedError
from actuator.utils import get_logger

if TYPE_CHECKING:
    from actuator.config import ConfigManager

logger = get_logger("command.executor")

ResultSender = Callable[[CommandResult], bool]


class CommandExecutor:
    """
    Receives command deliveries from the connection session and executes them
    using the handler registered for their capability.

    Running commands are tracked in a :class:`CommandRegistry` so they can be
    force-cancelled together on shutdown. Results go out through the sender
    installed with :meth:`set_result_sender`; commands keep running across
    reconnects and a result produced while disconnected is dropped by the
    sender.
    """

    def __init__(self, config: 'ConfigManager',
                 registry: Optional[CommandRegistry] = None,
                 handlers: Optional[Iterable[BaseCommandHandler]] = None):
        """
        Initialize the command executor.

        :param config: Configuration manager instance
        :type config: ConfigManager
        :param registry: Registry of running commands; a new one if None
        :type registry: Optional[CommandRegistry]
        :param handlers: Capability handlers; a ShellCommandHandler if None
        :type handlers: Optional[Iterable[BaseCommandHandler]]
        :raises ValueError: If config is None
        """
        if not config:
            raise ValueError("ConfigManager instance is required for CommandExecutor.")

        self.config = config
        self.registry = registry if registry is not None else CommandRegistry()
        self._send: Optional[ResultSender] = None
        self._handlers: Dict[str, BaseCommandHandler] = {}

        for handler in (handlers if handlers is not None else [ShellCommandHandler(config)]):
            self.register_handler(handler)
        logger.info(f"CommandExecutor initialized with handlers for capabilities: {', '.join(self._handlers) or 'none'}")

    # === PUBLIC METHODS ===

    def register_handler(self, handler: BaseCommandHandler):
        """
        Routes every capability the handler declares to it.

        :param handler: Handler instance
        :type handler: BaseCommandHandler
        """
        for capability in handler.capabilities:
            if capability in self._handlers:
                logger.warning(f"Capability '{capability}' re-registered to {handler.__class__.__name__}")
            self._handlers[capability] = handler

    def set_result_sender(self, sender: ResultSender):
        """
        Installs the function used to transmit command results.

        :param sender: Callable returning True if the result was handed to the transport
        :type sender: ResultSender
        :raises TypeError: If sender is not callable
        """
        if not callable(sender):
            raise TypeError("Result sender must be a callable function.")
        self._send = sender

    @property
    def supported_capabilities(self) -> List[str]:
        return list(self._handlers)

    async def handle_incoming_command(self, delivery: CommandDelivery):
        """
        Validates a command delivery and starts it.

        Rejections (duplicate id, unsupported capability, bad payload) are
        answered with a failed result; they never raise.

        :param delivery: Parsed command delivery
        :type delivery: CommandDelivery
        """
        command_id = delivery.id
        capability = delivery.capability
        logger.info(f"Command {command_id}: {capability or '(no capability)'}")

        if command_id in self.registry:
            logger.error(f"Command {command_id} is already running; rejecting duplicate delivery")
            self._send_result(CommandResult.failure(command_id, f"Duplicate command id: {command_id}"))
            return
        if self.registry.closed:
            logger.warning(f"Rejecting command {command_id}: actuator is shutting down")
            self._send_result(CommandResult.failure(command_id, "Actuator is shutting down"))
            return

        handler = self._handlers.get(capability)
        if handler is None:
            logger.error(f"Unsupported capability '{capability}' for command {command_id}")
            self._send_result(CommandResult.failure(command_id, f"Unsupported capability: {capability}"))
            return

        finished = False

        def complete(result: CommandResult):
            nonlocal finished
            if finished:
                logger.warning(f"Ignoring extra result for command {command_id}")
                return
            finished = True
            self.registry.unregister(command_id)
            self._send_result(result)

        try:
            cancel = await handler.start(delivery, complete)
        except InvalidPayloadError as e:
            logger.error(f"Invalid payload for command {command_id}: {e}")
            self._send_result(CommandResult.failure(command_id, str(e)))
            return
        except Exception as e:
            logger.error(f"Handler '{capability}' raised starting command {command_id}: {e}", exc_info=True)
            if not finished:
                finished = True
                self._send_result(CommandResult.failure(command_id, f"Actuator internal error: {e}"))
            return

        if finished:
            # Reported before it could be registered (e.g. spawn failure).
            return

        try:
            self.registry.register(command_id, capability, cancel)
        except RegistryClosedError:
            logger.warning(f"Command {command_id} started during shutdown and was cancelled")
        except DuplicateCommandError as e:
            cancel()
            logger.error(f"Command {command_id} was registered concurrently; cancelled the second copy")
            self._send_result(CommandResult.failure(command_id, str(e)))

    def cancel_all(self) -> int:
        """
        Force-cancels every running command. No results are sent for them.

        :return: Number of commands cancelled
        :rtype: int
        """
        return self.registry.cancel_all()

    # === RESULT HANDLING ===

    def _send_result(self, result: CommandResult):
        """Hands a result to the transport; failures are logged, never raised."""
        if self._send is None:
            logger.error(f"Cannot send result for {result.id}: no result sender installed.")
            return
        try:
            if not self._send(result):
                logger.warning(f"Result for command {result.id} ({result.status}) dropped: broker not connected.")
        except Exception as e:
            logger.error(f"Exception sending result for command {result.id}: {e}", exc_info=True)
