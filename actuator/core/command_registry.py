"""
Registry of running commands, keyed by broker command id.
"""
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from actuator.exceptions import DuplicateCommandError, RegistryClosedError
from actuator.utils import get_logger

logger = get_logger("command.registry")

CancelFn = Callable[[], None]


@dataclass
class CommandEntry:
    """A running command and the function that force-cancels it."""
    id: str
    capability: str
    cancel: CancelFn
    started_at: float = field(default_factory=time.time)


class CommandRegistry:
    """
    Sole owner of the id -> CommandEntry mapping.

    Only accessed from the event loop, so no locking is done here.
    """

    def __init__(self):
        self._entries: Dict[str, CommandEntry] = {}
        self._closed = False

    def __contains__(self, command_id: object) -> bool:
        return command_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, command_id: str) -> Optional[CommandEntry]:
        return self._entries.get(command_id)

    def active_ids(self) -> List[str]:
        return list(self._entries)

    def register(self, command_id: str, capability: str, cancel: CancelFn) -> CommandEntry:
        """
        Records a running command.

        :param command_id: Broker-issued command id
        :type command_id: str
        :param capability: Capability the command runs under
        :type capability: str
        :param cancel: Idempotent function that force-cancels the command
        :type cancel: CancelFn
        :return: The new entry
        :rtype: CommandEntry
        :raises DuplicateCommandError: If an entry for the id is still live
        :raises RegistryClosedError: If cancel_all() already ran; the command is cancelled first
        """
        if self._closed:
            logger.warning(f"Registry closed, cancelling late command {command_id}")
            cancel()
            raise RegistryClosedError(f"Command registry is closed, command {command_id} was cancelled.")
        if command_id in self._entries:
            raise DuplicateCommandError(command_id)

        entry = CommandEntry(id=command_id, capability=capability, cancel=cancel)
        self._entries[command_id] = entry
        logger.debug(f"Registered command {command_id} ({capability}); {len(self._entries)} active")
        return entry

    def unregister(self, command_id: str) -> Optional[CommandEntry]:
        """Removes and returns the entry for ``command_id``, or None if absent."""
        entry = self._entries.pop(command_id, None)
        if entry is not None:
            logger.debug(f"Unregistered command {command_id}; {len(self._entries)} active")
        return entry

    def cancel_all(self) -> int:
        """
        Cancels every registered command and clears the mapping. Used only
        during shutdown; the registry refuses new commands afterwards.

        :return: Number of commands cancelled
        :rtype: int
        """
        self._closed = True
        entries = list(self._entries.values())
        self._entries.clear()

        for entry in entries:
            try:
                entry.cancel()
            except Exception as e:
                logger.error(f"Error cancelling command {entry.id}: {e}", exc_info=True)

        if entries:
            logger.info(f"Cancelled {len(entries)} running command(s).")
        return len(entries)
