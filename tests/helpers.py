"""Fakes and polling helpers shared by the actuator tests."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosedOK
from websockets.protocol import State


_CLOSED = object()


class FakeConnection:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self):
        self.state = State.OPEN
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, message: Any):
        """Queue an inbound frame; dicts are JSON-encoded."""
        self._inbox.put_nowait(json.dumps(message) if isinstance(message, dict) else message)

    def drop(self, code: int = 1006):
        """Simulate the broker going away."""
        self.state = State.CLOSED
        self.close_code = code
        self._inbox.put_nowait(_CLOSED)

    def fail(self, error: BaseException):
        """Make the next read raise ``error``."""
        self._inbox.put_nowait(error)

    async def send(self, data: str):
        if self.state is not State.OPEN:
            raise ConnectionClosedOK(None, None)
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = ''):
        if self.state is State.CLOSED:
            return
        self.state = State.CLOSED
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    def messages(self, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        decoded = [json.loads(s) for s in self.sent]
        return [m for m in decoded if kind is None or m.get('type') == kind]


class FakeBroker:
    """Connector replacement recording every connection attempt."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.urls: List[str] = []
        self.kwargs: List[Dict[str, Any]] = []
        self.connections: List[FakeConnection] = []
        self.block: Optional[asyncio.Event] = None

    async def connect(self, url: str, **kwargs: Any) -> FakeConnection:
        self.urls.append(url)
        self.kwargs.append(kwargs)
        if self.block is not None:
            await self.block.wait()
        if self.failures > 0:
            self.failures -= 1
            raise OSError("Connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


async def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01):
    """Poll until ``predicate`` holds, failing the test after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(interval)


