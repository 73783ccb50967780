"""
Shell capability handler: runs delivered commands through the process executor
and batches their output into a single result.
"""
from typing import List, Optional, TYPE_CHECKING

from actuator.command_handlers.base_handler import BaseCommandHandler, CancelFn, CompleteFn
from actuator.communication.protocol import CommandDelivery, CommandResult, STATUS_COMPLETED, STATUS_FAILED
from actuator.config import SHELL_CAPABILITY
from actuator.executors import ProcessExecutor, ShellExecRequest, ExecCallbacks, DEFAULT_TIMEOUT_MS, MAX_TIMEOUT_MS
from actuator.utils import get_logger

if TYPE_CHECKING:
    from actuator.config import ConfigManager

logger = get_logger(__name__)


class ShellCommandHandler(BaseCommandHandler):
    """
    Handler for the ``actuator/shell`` capability (alias ``shell``).
    """

    capabilities = (SHELL_CAPABILITY, 'shell')

    def __init__(self, config: 'ConfigManager', executor: Optional[ProcessExecutor] = None):
        """
        :param config: The configuration manager instance
        :type config: ConfigManager
        :param executor: Process executor to use; built from config if None
        :type executor: Optional[ProcessExecutor]
        """
        super().__init__(config)
        self.default_cwd: Optional[str] = self.config.get('cwd')
        self.default_timeout_ms: int = self.config.get('command_executor.default_timeout_ms', DEFAULT_TIMEOUT_MS)
        self.max_timeout_ms: int = self.config.get('command_executor.max_timeout_ms', MAX_TIMEOUT_MS)
        self.executor = executor or ProcessExecutor(
            encoding=self.config.get('command_executor.console_encoding', 'utf-8'),
            max_timeout_ms=self.max_timeout_ms
        )
        logger.info(f"ShellCommandHandler initialized with cwd={self.default_cwd}, "
                    f"default timeout={self.default_timeout_ms}ms, cap={self.max_timeout_ms}ms")

    async def start(self, delivery: CommandDelivery, complete: CompleteFn) -> CancelFn:
        request = ShellExecRequest.from_payload(
            delivery.payload,
            default_cwd=self.default_cwd,
            default_timeout_ms=self.default_timeout_ms,
            max_timeout_ms=self.max_timeout_ms
        )
        command_id = delivery.id
        stdout: List[str] = []
        stderr: List[str] = []

        def on_done(exit_code: int, duration_ms: int):
            status = STATUS_COMPLETED if exit_code == 0 else STATUS_FAILED
            logger.info(f"Command {command_id} exited with code {exit_code} in {duration_ms}ms")
            complete(CommandResult(id=command_id, status=status, result={
                'stdout': ''.join(stdout),
                'stderr': ''.join(stderr),
                'exitCode': exit_code,
                'durationMs': duration_ms
            }))

        def on_error(error: str):
            logger.warning(f"Command {command_id} failed: {error}")
            complete(CommandResult.failure(command_id, error, stdout=''.join(stdout), stderr=''.join(stderr)))

        logger.info(f"Executing command {command_id} in {request.working_directory} (timeout {request.timeout_ms}ms)")
        logger.debug(f"Command {command_id}: {request.command}")
        return await self.executor.execute(request, ExecCallbacks(
            on_stdout=stdout.append,
            on_stderr=stderr.append,
            on_done=on_done,
            on_error=on_error
        ))
