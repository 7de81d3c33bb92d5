"""Page-level event fan-out."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class PageEvents:
    CONSOLE = "consolemessage"
    DIALOG = "dialog"
    ERROR = "error"
    FRAME_ATTACHED = "frameattached"
    FRAME_NAVIGATED = "framenavigated"
    FRAME_DETACHED = "framedetached"
    LOAD = "load"
    DOM_CONTENT_LOADED = "domcontentloaded"
    RESOURCE_LOADING_FAILED = "resourceloadingfailed"
    CLOSE = "close"


class EventEmitter:
    """Explicit subscriber registry with synchronous, in-order delivery.

    Handlers run in subscription order inside ``emit``. A handler that
    returns an awaitable has it scheduled as a task, so delivery never waits.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._handler_tasks: set[asyncio.Future] = set()

    def on(self, event: str, handler: Handler) -> Handler:
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def once(self, event: str, handler: Handler) -> Handler:
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return handler(*args)

        wrapper.__wrapped__ = handler
        return self.on(event, wrapper)

    def off(self, event: str, handler: Handler | None = None) -> None:
        """Remove ``handler``, or every handler for ``event`` when omitted."""
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event, [])
        for registered in list(handlers):
            if registered == handler or getattr(registered, "__wrapped__", None) == handler:
                handlers.remove(registered)
                return

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                result = handler(*args)
            except Exception:
                logger.exception("Error in %r event handler", event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)
        return bool(handlers)

    def _handler_done(self, task: asyncio.Future) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event handler failed", exc_info=task.exception())

    async def wait_for_event(self, event: str, timeout: float | None = None) -> Any:
        """Wait for the next ``event`` and return its first argument."""
        future = asyncio.get_running_loop().create_future()

        def resolve(*args: Any) -> None:
            if not future.done():
                future.set_result(args[0] if args else None)

        self.once(event, resolve)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self.off(event, resolve)
