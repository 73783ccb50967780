"""
Reconnection backoff policy: exponential delay growth with jitter and an
optional attempt ceiling.
"""
import asyncio
import random
from typing import Callable, Optional

from actuator.utils import get_logger

logger = get_logger("reconnect")


class BackoffPolicy:
    """
    Computes reconnection delays and arms the one-shot timer that fires the
    next attempt.

    The delay for attempt ``n`` is ``min(base * 2**n + U(0, jitter), max)``
    milliseconds. State is only touched from the event loop thread.
    """

    def __init__(self,
                 base_ms: float = 1000,
                 max_ms: float = 30000,
                 jitter_ms: float = 1000,
                 max_attempts: Optional[int] = None,
                 rng: Optional[random.Random] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        :param base_ms: Delay of the first attempt before jitter
        :param max_ms: Upper bound of any delay
        :param jitter_ms: Ceiling of the uniform random jitter added to each delay
        :param max_attempts: Attempts allowed between two resets; None means unbounded
        :param rng: Random source, injectable for deterministic tests
        :param loop: Event loop for the timer; the running loop is used if None
        """
        if base_ms < 0 or max_ms < 0 or jitter_ms < 0:
            raise ValueError("Backoff delays must be non-negative.")
        if max_attempts is not None and max_attempts < 0:
            raise ValueError("max_attempts must be None or a non-negative integer.")

        self.base_ms = base_ms
        self.max_ms = max_ms
        self.jitter_ms = jitter_ms
        self.max_attempts = max_attempts
        self._rng = rng or random.Random()
        self._loop = loop
        self._attempt = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._destroyed = False

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def pending(self) -> bool:
        """True while a reconnect timer is armed and has not fired."""
        return self._timer is not None and not self._timer.cancelled()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def exhausted(self) -> bool:
        """True when the next schedule() call would be refused."""
        if self._destroyed:
            return True
        return self.max_attempts is not None and self._attempt >= self.max_attempts

    def compute_delay(self, attempt: int) -> float:
        """
        Returns the delay in milliseconds for the given attempt number.

        :param attempt: Zero-based attempt number
        :type attempt: int
        :return: Delay in milliseconds
        :rtype: float
        """
        # Cap the exponent so huge attempt counts cannot overflow the float.
        exponential = self.base_ms * (2 ** min(attempt, 64))
        jitter = self._rng.uniform(0, self.jitter_ms) if self.jitter_ms else 0.0
        return min(exponential + jitter, self.max_ms)

    def schedule(self, on_fire: Callable[[], None]) -> bool:
        """
        Arms a one-shot timer that calls ``on_fire`` after the next delay.

        :param on_fire: Callback invoked on the event loop when the timer fires
        :type on_fire: Callable[[], None]
        :return: False if the attempt ceiling is reached (nothing armed), True otherwise
        :rtype: bool
        """
        if self.exhausted:
            return False

        delay_ms = self.compute_delay(self._attempt)
        self._attempt += 1
        logger.info(f"Reconnect attempt {self._attempt} in {round(delay_ms)}ms")

        self._cancel_timer()
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(delay_ms / 1000.0, self._fire, on_fire)
        return True

    def _fire(self, on_fire: Callable[[], None]):
        self._timer = None
        on_fire()

    def reset(self):
        """Cancels any pending timer and sets the attempt counter back to 0."""
        self._cancel_timer()
        self._attempt = 0

    def destroy(self):
        """Cancels any pending timer permanently; further schedule() calls are refused."""
        self._cancel_timer()
        self._destroyed = True

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
