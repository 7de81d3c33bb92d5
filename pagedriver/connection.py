"""DevTools protocol connection.

One ``Connection`` talks to one target over a websocket. Responses are
matched to their command by integer id and resolved as soon as they are
read. Unsolicited events go through a single ordered queue, so subscribers
see them strictly in arrival order, one at a time.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from pagedriver.config import COMMAND_TIMEOUT, MAX_MESSAGE_SIZE
from pagedriver.errors import ProtocolDisconnect, ProtocolError, ProtocolTimeout

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], Any]


class Connection:
    """Command/response and event channel to a single DevTools target."""

    # Synthetic event queued after the last real event once the socket closes.
    DISCONNECTED = "pagedriver.disconnected"

    def __init__(self, ws, *, url: str = "", command_timeout: float | None = COMMAND_TIMEOUT):
        self.url = url
        self.command_timeout = command_timeout
        self._ws = ws
        self._last_id = 0
        self._callbacks: dict[int, tuple[asyncio.Future, str]] = {}
        self._listeners: dict[str, list[EventHandler]] = {}
        self._events: asyncio.Queue = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()
        self._reader_task: asyncio.Task | None = None
        self._dispatch_task: asyncio.Task | None = None
        self._closed = False
        self.close_reason: str | None = None

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        max_size: int = MAX_MESSAGE_SIZE,
        command_timeout: float | None = COMMAND_TIMEOUT,
    ) -> Connection:
        """Open a websocket to ``url`` and start reading from it."""
        ws = await websockets.connect(
            url,
            max_size=max_size,
            ping_interval=None,  # DevTools endpoints do not answer pings
        )
        connection = cls(ws, url=url, command_timeout=command_timeout)
        connection.start()
        return connection

    def start(self) -> None:
        if self._reader_task is not None:
            return
        self._reader_task = asyncio.ensure_future(self._read_loop())
        self._dispatch_task = asyncio.ensure_future(self._dispatch_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Commands ────────────────────────────────────────────────

    async def send(self, method: str, params: dict | None = None) -> dict:
        """Send a command and wait for its correlated response."""
        if self._closed:
            raise ProtocolDisconnect(
                f"Protocol error ({method}): connection closed", method=method
            )
        self._last_id += 1
        msg_id = self._last_id
        future = asyncio.get_running_loop().create_future()
        self._callbacks[msg_id] = (future, method)

        message = {"id": msg_id, "method": method, "params": params or {}}
        logger.debug("SEND %s #%d %s", method, msg_id, params or "")
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            self._callbacks.pop(msg_id, None)
            raise ProtocolDisconnect(
                f"Protocol error ({method}): connection closed", method=method
            ) from e

        try:
            if self.command_timeout:
                return await asyncio.wait_for(future, timeout=self.command_timeout)
            return await future
        except asyncio.TimeoutError as e:
            self._callbacks.pop(msg_id, None)
            raise ProtocolTimeout(
                f"Protocol command {method} timed out after {self.command_timeout}s",
                timeout=self.command_timeout,
                method=method,
            ) from e

    def spawn(self, coro: Awaitable) -> asyncio.Task:
        """Run ``coro`` as a task owned by this connection.

        Failures are logged; the task is kept referenced until it finishes.
        """
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc)

    # ── Events ──────────────────────────────────────────────────

    def on(self, method: str, handler: EventHandler) -> EventHandler:
        self._listeners.setdefault(method, []).append(handler)
        return handler

    def off(self, method: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(method)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def _emit(self, method: str, params: dict) -> None:
        for handler in list(self._listeners.get(method, ())):
            try:
                handler(params)
            except Exception:
                logger.exception("Handler for %s failed", method)

    # ── Reader / dispatcher ─────────────────────────────────────

    async def _read_loop(self) -> None:
        reason = "connection closed"
        try:
            while True:
                raw = await self._ws.recv()
                self._on_message(raw)
        except ConnectionClosed as e:
            reason = f"connection closed ({e})"
        except asyncio.CancelledError:
            reason = "connection closed by client"
            raise
        finally:
            self._teardown(reason)

    def _on_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.warning("Dropping malformed protocol message: %.200r", raw)
            return

        if "id" in data:
            entry = self._callbacks.pop(data["id"], None)
            if entry is None:
                logger.debug("RECV response for unknown id %s", data["id"])
                return
            future, method = entry
            if future.done():
                return
            if "error" in data:
                error = data["error"]
                future.set_exception(
                    ProtocolError(
                        f"Protocol error ({method}): {error.get('message', 'Unknown error')}",
                        code=error.get("code"),
                        data=error.get("data"),
                        method=method,
                    )
                )
            else:
                future.set_result(data.get("result", {}))
        elif "method" in data:
            logger.debug("RECV %s", data["method"])
            self._events.put_nowait((data["method"], data.get("params", {})))

    async def _dispatch_loop(self) -> None:
        while True:
            item = await self._events.get()
            if item is None:
                return
            method, params = item
            self._emit(method, params)

    def _teardown(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        logger.info("Connection %s: %s", self.url or "<unnamed>", reason)
        for future, method in self._callbacks.values():
            if not future.done():
                future.set_exception(
                    ProtocolDisconnect(f"Protocol error ({method}): {reason}", method=method)
                )
        self._callbacks.clear()
        self._events.put_nowait((self.DISCONNECTED, {"reason": reason}))
        self._events.put_nowait(None)

    async def close(self) -> None:
        """Close the socket; pending commands fail with ``ProtocolDisconnect``."""
        if self._closed:
            return
        try:
            await self._ws.close()
        finally:
            if self._reader_task is None:
                self._teardown("connection closed by client")
            else:
                await asyncio.wait([self._reader_task], timeout=5)
                if not self._reader_task.done():
                    self._reader_task.cancel()
            if self._dispatch_task is not None:
                await asyncio.wait([self._dispatch_task], timeout=5)
