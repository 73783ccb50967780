"""
Base command handler class providing common functionality for all command handlers.
"""
from abc import ABC, abstractmethod
from typing import Callable, Tuple, TYPE_CHECKING

from actuator.utils import get_logger

if TYPE_CHECKING:
    from actuator.communication.protocol import CommandDelivery, CommandResult
    from actuator.config import ConfigManager

logger = get_logger(__name__)

CancelFn = Callable[[], None]
CompleteFn = Callable[['CommandResult'], None]


class BaseCommandHandler(ABC):
    """
    Abstract base class for capability handlers.

    A handler serves one or more capability names and turns a command
    delivery into a running action that reports back through ``complete``.
    """

    #: Capability names routed to this handler.
    capabilities: Tuple[str, ...] = ()

    def __init__(self, config: 'ConfigManager'):
        """
        Initialize the base command handler.

        :param config: The configuration manager instance
        :type config: ConfigManager
        :raises ValueError: If the config parameter is None
        """
        if not config:
            raise ValueError("ConfigManager instance is required for BaseCommandHandler.")
        self.config = config
        logger.debug(f"{self.__class__.__name__} initialized for {', '.join(self.capabilities)}.")

    @abstractmethod
    async def start(self, delivery: 'CommandDelivery', complete: CompleteFn) -> CancelFn:
        """
        Start executing a command delivery.

        Implementations MUST call ``complete`` exactly once with the final
        result, unless the returned cancel function is called first, in
        which case they MUST NOT call it at all. ``complete`` may be called
        before this coroutine returns (e.g. the action could not start).

        :param delivery: The accepted command delivery
        :type delivery: CommandDelivery
        :param complete: Receiver of the single result for this command
        :type complete: CompleteFn
        :return: Idempotent function that force-cancels the command
        :rtype: CancelFn
        :raises InvalidPayloadError: If the payload is unusable; nothing was started
        """
