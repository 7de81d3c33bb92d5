"""Shared fixtures: a fake DevTools peer and pages driven against it."""

import asyncio
import base64
import json
from typing import Any, Callable

import pytest
import pytest_asyncio
from websockets.exceptions import ConnectionClosedOK

from pagedriver.config import DriverConfig
from pagedriver.connection import Connection
from pagedriver.page import Page

MAIN_FRAME_ID = "MAIN"
MAIN_CONTEXT_ID = 1

# Returned by a handler that will answer later through ``respond``.
NO_REPLY = object()

_CLOSE = object()


class FakeError:
    """Returned by a handler to answer with a protocol error."""

    def __init__(self, message: str, code: int = -32000):
        self.message = message
        self.code = code


class FakeBrowserSocket:
    """Simulates the browser end of a DevTools websocket.

    Commands are answered by per-method handlers (default: empty result).
    Handlers may queue events with ``emit`` before returning, which puts
    those events ahead of the response, as a real browser would.
    """

    def __init__(self):
        self.sent: list[dict] = []
        self.handlers: dict[str, Callable[[dict], Any]] = {}
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def handle(self, method: str, handler: Callable[[dict], Any] | None = None, *, result=None):
        """Answer ``method`` with ``handler(params)`` or a fixed ``result``."""
        if handler is None:
            handler = lambda params: result if result is not None else {}  # noqa: E731
        self.handlers[method] = handler

    def emit(self, method: str, params: dict | None = None) -> None:
        self._inbox.put_nowait({"method": method, "params": params or {}})

    def emit_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def emit_later(self, delay: float, *events: tuple[str, dict]) -> None:
        """Queue ``events`` after ``delay`` seconds, in order."""

        def push():
            for method, params in events:
                self.emit(method, params)

        asyncio.get_running_loop().call_later(delay, push)

    def respond(self, msg_id: int, result: dict | None = None, error: FakeError | None = None):
        if error is not None:
            self._inbox.put_nowait(
                {"id": msg_id, "error": {"code": error.code, "message": error.message}}
            )
        else:
            self._inbox.put_nowait({"id": msg_id, "result": result or {}})

    def commands(self, method: str) -> list[dict]:
        return [msg for msg in self.sent if msg["method"] == method]

    def params(self, method: str) -> list[dict]:
        return [msg["params"] for msg in self.commands(method)]

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        msg = json.loads(data)
        self.sent.append(msg)
        handler = self.handlers.get(msg["method"])
        outcome = handler(msg.get("params", {})) if handler else {}
        if outcome is NO_REPLY:
            return
        if isinstance(outcome, FakeError):
            self.respond(msg["id"], error=outcome)
        else:
            self.respond(msg["id"], outcome)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSE:
            self._inbox.put_nowait(_CLOSE)
            raise ConnectionClosedOK(None, None)
        if isinstance(item, str):
            return item
        return json.dumps(item)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSE)


def page_socket() -> FakeBrowserSocket:
    """A fake page target with an about:blank main frame."""
    socket = FakeBrowserSocket()
    socket.handle(
        "Page.getFrameTree",
        result={"frameTree": {"frame": {"id": MAIN_FRAME_ID, "url": "about:blank", "loaderId": "L0"}}},
    )

    def runtime_enable(params):
        socket.emit(
            "Runtime.executionContextCreated",
            {
                "context": {
                    "id": MAIN_CONTEXT_ID,
                    "origin": "null",
                    "auxData": {"frameId": MAIN_FRAME_ID, "isDefault": True},
                }
            },
        )
        return {}

    socket.handle("Runtime.enable", runtime_enable)
    return socket


def screenshot_payload(params: dict) -> dict:
    """Encode the requested clip as the image bytes, so callers can check it."""
    body = json.dumps(params.get("clip")).encode()
    return {"data": base64.b64encode(body).decode()}


async def flush(delay: float = 0.02) -> None:
    """Let the reader and dispatcher tasks drain queued messages."""
    await asyncio.sleep(delay)


@pytest.fixture
def socket():
    return page_socket()


@pytest_asyncio.fixture
async def connection(socket):
    conn = Connection(socket, url="ws://fake/devtools/page/T1", command_timeout=5)
    conn.start()
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def page(socket, connection):
    config = DriverConfig(min_settle_time=0.01, navigation_timeout=2, command_timeout=5)
    page = await Page.create(connection, target_id="T1", config=config)
    await flush()
    yield page
