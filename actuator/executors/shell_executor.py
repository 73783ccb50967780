"""
Shell command executor: runs one command as a subprocess, streams its output
through callbacks, enforces a timeout and supports forced cancellation.
"""
import asyncio
import codecs
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Set

import psutil

from actuator.exceptions import InvalidPayloadError
from actuator.utils import get_logger

logger = get_logger("executor.shell")

DEFAULT_TIMEOUT_MS = 30_000
MAX_TIMEOUT_MS = 300_000  # hard cap, 5 minutes
READ_CHUNK_SIZE = 4096
EXIT_POLL_INTERVAL_SEC = 0.1

CancelFn = Callable[[], None]


def _noop_cancel():
    pass


@dataclass(frozen=True)
class ShellExecRequest:
    """A validated request to run one shell command."""
    command: str
    working_directory: Optional[str] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls,
                     payload: Any,
                     default_cwd: Optional[str] = None,
                     default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
                     max_timeout_ms: int = MAX_TIMEOUT_MS) -> 'ShellExecRequest':
        """
        Builds a request from a command delivery payload
        (``{command, cwd?, timeout?, env?}``, timeout in milliseconds).

        :param payload: The ``payload`` object of a command delivery
        :type payload: Any
        :param default_cwd: Working directory used when the payload has none
        :type default_cwd: Optional[str]
        :param default_timeout_ms: Timeout used when the payload has none
        :type default_timeout_ms: int
        :param max_timeout_ms: Hard cap applied to any timeout
        :type max_timeout_ms: int
        :return: The request
        :rtype: ShellExecRequest
        :raises InvalidPayloadError: If a field is missing or has the wrong type
        """
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Command payload must be an object.")

        command = payload.get('command')
        if not isinstance(command, str) or not command.strip():
            raise InvalidPayloadError("No command specified")

        cwd = payload.get('cwd')
        if cwd is not None and not isinstance(cwd, str):
            raise InvalidPayloadError("'cwd' must be a string.")

        timeout = payload.get('timeout')
        if timeout is None:
            timeout = default_timeout_ms
        elif isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise InvalidPayloadError("'timeout' must be a positive number of milliseconds.")

        env = payload.get('env')
        if env is None:
            env = {}
        elif not isinstance(env, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in env.items()):
            raise InvalidPayloadError("'env' must map strings to strings.")

        return cls(
            command=command,
            working_directory=cwd or default_cwd,
            timeout_ms=int(min(timeout, max_timeout_ms)),
            env=dict(env)
        )


@dataclass
class ExecCallbacks:
    """
    Receivers for one execution. Output callbacks get decoded text chunks in
    arrival order; exactly one of ``on_done`` / ``on_error`` is called last.
    """
    on_stdout: Callable[[str], None]
    on_stderr: Callable[[str], None]
    on_done: Callable[[int, int], None]
    on_error: Callable[[str], None]


def kill_process_group(pgid: int) -> bool:
    """
    Sends SIGKILL to every process of a process group.

    Commands are spawned in their own session, so the group also holds
    background children the shell has already left behind.

    :param pgid: Process group id (the pid of the spawned shell)
    :type pgid: int
    :return: False if the group could not be signalled and a tree kill is needed
    :rtype: bool
    """
    if not hasattr(os, 'killpg'):
        return False
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        # Every member is already gone.
        return True
    except OSError as e:
        logger.warning(f"Cannot kill process group {pgid}: {e}")
        return False
    return True


def kill_process_tree(pid: int):
    """
    Sends SIGKILL to a process and all of its descendants.

    :param pid: Process id of the tree root
    :type pid: int
    """
    try:
        root = psutil.Process(pid)
        procs = root.children(recursive=True)
    except psutil.NoSuchProcess:
        return
    procs.append(root)

    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as e:
            logger.warning(f"Permission denied killing process {proc.pid}: {e}")


def _normalize_exit_code(returncode: int) -> int:
    # asyncio reports death by signal N as -N; report it the way a shell does.
    return returncode if returncode >= 0 else 128 - returncode


class _RunningCommand:
    """Lifecycle of one spawned subprocess."""

    def __init__(self, process: asyncio.subprocess.Process, callbacks: ExecCallbacks,
                 timeout_ms: int, started: float, encoding: str):
        self._process = process
        self._callbacks = callbacks
        self._timeout_ms = timeout_ms
        self._started = started
        self._encoding = encoding
        # Set once the terminal callback fired or was suppressed by cancel().
        self._finished = False
        self._timer: Optional[asyncio.TimerHandle] = None

    def start(self, loop: asyncio.AbstractEventLoop) -> 'asyncio.Task[None]':
        self._timer = loop.call_later(self._timeout_ms / 1000.0, self._on_timeout)
        return loop.create_task(self._pump(), name=f"shell-{self._process.pid}")

    def cancel(self):
        if self._finished:
            return
        self._finished = True
        self._cancel_timer()
        self._kill()
        logger.info(f"Process {self._process.pid} cancelled")

    def _elapsed_ms(self) -> int:
        return max(0, int((time.monotonic() - self._started) * 1000))

    def _on_timeout(self):
        self._timer = None
        if self._finished:
            return
        self._finished = True
        logger.warning(f"Process {self._process.pid} timed out after {self._timeout_ms}ms, killing it")
        self._kill()
        self._callbacks.on_error(f"Command timed out after {self._timeout_ms}ms")

    async def _pump(self):
        readers = asyncio.gather(
            self._read_stream(self._process.stdout, self._callbacks.on_stdout),
            self._read_stream(self._process.stderr, self._callbacks.on_stderr)
        )
        leftovers_killed = False
        try:
            while True:
                done, _ = await asyncio.wait({readers}, timeout=EXIT_POLL_INTERVAL_SEC)
                if done:
                    break
                if self._process.returncode is not None and not leftovers_killed:
                    leftovers_killed = True
                    # The shell exited but something it started still holds the pipes open.
                    logger.debug(f"Process {self._process.pid} exited, killing leftover background processes")
                    self._kill()
            readers.result()
            returncode = await self._process.wait()
        except asyncio.CancelledError:
            readers.cancel()
            self._kill()
            raise
        except Exception as e:
            readers.cancel()
            self._cancel_timer()
            self._kill()
            if not self._finished:
                self._finished = True
                logger.error(f"Process {self._process.pid} failed: {e}", exc_info=True)
                self._callbacks.on_error(f"Process error: {e}")
            return

        self._cancel_timer()
        if self._finished:
            return
        self._finished = True
        exit_code = _normalize_exit_code(returncode)
        elapsed = self._elapsed_ms()
        logger.debug(f"Process {self._process.pid} exited with code {exit_code} after {elapsed}ms")
        self._callbacks.on_done(exit_code, elapsed)

    async def _read_stream(self, stream: Optional[asyncio.StreamReader], emit: Callable[[str], None]):
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder(self._encoding)(errors='replace')
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            if text and not self._finished:
                emit(text)
            if not chunk:
                return

    def _kill(self):
        # The shell leads its own session, so its pid is also the group id.
        if not kill_process_group(self._process.pid) and self._process.returncode is None:
            kill_process_tree(self._process.pid)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class ProcessExecutor:
    """
    Spawns shell commands on the running event loop.

    Each call to :meth:`execute` owns its own subprocess, pump task and
    timeout timer; executions are independent of each other.
    """

    def __init__(self, encoding: str = 'utf-8', max_timeout_ms: int = MAX_TIMEOUT_MS):
        """
        :param encoding: Encoding used to decode subprocess output
        :type encoding: str
        :param max_timeout_ms: Hard cap on any request's timeout
        :type max_timeout_ms: int
        :raises LookupError: If the encoding is unknown
        """
        codecs.lookup(encoding)
        self.encoding = encoding
        self.max_timeout_ms = max_timeout_ms
        self._tasks: Set['asyncio.Task[None]'] = set()

    async def execute(self, request: ShellExecRequest, callbacks: ExecCallbacks) -> CancelFn:
        """
        Starts ``request.command`` through the system shell.

        If the process cannot be spawned, ``callbacks.on_error`` is called
        before this coroutine returns and the returned cancel is a no-op.

        :param request: What to run
        :type request: ShellExecRequest
        :param callbacks: Receivers for output and completion
        :type callbacks: ExecCallbacks
        :return: Idempotent function that force-kills the command and suppresses further callbacks
        :rtype: CancelFn
        """
        started = time.monotonic()
        timeout_ms = min(request.timeout_ms, self.max_timeout_ms)
        env: Dict[str, str] = dict(os.environ)
        env.update(request.env)

        try:
            process = await asyncio.create_subprocess_shell(
                request.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=request.working_directory or None,
                env=env,
                start_new_session=True
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.error(f"Failed to spawn command in {request.working_directory or os.getcwd()}: {e}")
            callbacks.on_error(f"Failed to spawn: {e}")
            return _noop_cancel

        logger.debug(f"Spawned process {process.pid} (timeout {timeout_ms}ms)")
        running = _RunningCommand(process, callbacks, timeout_ms, started, self.encoding)
        task = running.start(asyncio.get_running_loop())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return running.cancel

    @property
    def active_count(self) -> int:
        """Number of subprocesses whose output is still being pumped."""
        return len(self._tasks)
