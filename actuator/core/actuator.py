"""
Core Actuator module: wires configuration, reconnection policy, command
execution and the broker session together.
"""
import asyncio
import signal
from typing import List, Optional, TYPE_CHECKING

from actuator.communication.ws_client import WSClient, Connector
from actuator.core.backoff import BackoffPolicy
from actuator.core.command_executor import CommandExecutor
from actuator.core.command_registry import CommandRegistry
from actuator.core.connection_state import ConnectionState
from actuator.utils import get_logger

if TYPE_CHECKING:
    from actuator.config import ConfigManager

logger = get_logger("actuator")


class Actuator:
    """
    The main Actuator class, the entry point used by the CLI.

    It builds the components from configuration and exposes the two
    lifecycle calls of the core: :meth:`start` and :meth:`stop`.
    :meth:`run` drives a whole lifetime on the current event loop, with
    SIGINT/SIGTERM mapped to :meth:`stop`.
    """

    def __init__(self, config: 'ConfigManager', connector: Optional[Connector] = None):
        """
        Initialize the actuator and its components.

        :param config: Configuration manager instance
        :type config: ConfigManager
        :param connector: Transport opener passed to the session (tests use a fake)
        :type connector: Optional[Connector]
        """
        logger.info("Initializing Actuator...")
        self.config = config

        self.backoff = BackoffPolicy(
            base_ms=config.get('reconnect.base_ms', 1000),
            max_ms=config.get('reconnect.max_ms', 30000),
            jitter_ms=config.get('reconnect.jitter_ms', 1000),
            max_attempts=config.get('reconnect.max_attempts')
        )
        self.registry = CommandRegistry()
        self.command_executor = CommandExecutor(config, registry=self.registry)
        self.ws_client = WSClient(config, self.backoff, self.command_executor, connector=connector)
        self.command_executor.set_result_sender(self.ws_client.send)

        self._stopped = asyncio.Event()
        logger.info(f"Actuator initialized. ID: {config.get('actuator_id')}, "
                    f"Max reconnect attempts: {'Infinite' if self.backoff.max_attempts is None else self.backoff.max_attempts}")

    @property
    def state(self) -> ConnectionState:
        return self.ws_client.state

    def start(self):
        """Starts connecting to the broker. Must be called on the event loop."""
        logger.info("================ Starting Actuator ================")
        self.ws_client.start()

    def stop(self):
        """
        Stops the actuator: kills running commands and closes the connection.
        Safe to call repeatedly and from a signal handler.
        """
        if self._stopped.is_set():
            logger.debug("Stop called but actuator already stopping/stopped.")
            return
        logger.info("================ Initiating Shutdown ================")
        self.ws_client.stop()
        self._stopped.set()

    async def run(self):
        """
        Runs the actuator until :meth:`stop` is called (directly or by a signal).
        """
        loop = asyncio.get_running_loop()
        installed = self._install_signal_handlers(loop)
        try:
            self.start()
            await self._stopped.wait()
            await self.ws_client.wait_closed()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
        logger.info("================ Actuator Shutdown Complete ================")

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> List[signal.Signals]:
        installed: List[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
                installed.append(sig)
            except (NotImplementedError, RuntimeError) as e:
                logger.warning(f"Cannot install handler for {sig.name}: {e}")
        return installed

    def _on_signal(self, sig: signal.Signals):
        logger.info(f"Received {sig.name}, shutting down...")
        self.stop()
