"""Page driver: the public façade over one DevTools page target."""

from __future__ import annotations

import asyncio
import base64
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping

from pagedriver.bridge import ExecutionBridge, exception_message, remote_value
from pagedriver.config import DriverConfig
from pagedriver.connection import Connection
from pagedriver.dialog import Dialog
from pagedriver.errors import PageDriverError, PageError
from pagedriver.events import EventEmitter, PageEvents
from pagedriver.frames import Frame, FrameRegistry
from pagedriver.input import Keyboard, Mouse
from pagedriver.interception import InterceptionGate, Interceptor
from pagedriver.navigation import NavigationController

if TYPE_CHECKING:
    from pagedriver.browser import Browser

logger = logging.getLogger(__name__)

SCREENSHOT_FORMATS = ("png", "jpeg", "webp")
CONSOLE_HISTORY = 1000


@dataclass(frozen=True)
class Clip:
    """Screenshot rectangle in page (CSS pixel) coordinates."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Clip must have a positive size, got {self.width}x{self.height}")

    @classmethod
    def coerce(cls, value: Clip | Mapping[str, float]) -> Clip:
        if isinstance(value, Clip):
            return value
        return cls(value["x"], value["y"], value["width"], value["height"])

    def to_protocol(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "scale": 1,
        }


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int
    device_scale_factor: float = 1
    is_mobile: bool = False


@dataclass
class ConsoleMessage:
    type: str
    text: str
    args: list[Any] = field(default_factory=list)


@dataclass
class ResourceLoadingFailed:
    request_id: str
    url: str
    error_text: str
    canceled: bool = False
    resource_type: str = ""
    intercepted: bool = False


def _format_console_arg(remote_object: dict) -> str:
    if "value" in remote_object:
        value = remote_object["value"]
        if isinstance(value, bool):
            return "true" if value else "false"
        if value is None:
            return "null"
        return str(value)
    if "unserializableValue" in remote_object:
        return remote_object["unserializableValue"]
    if remote_object.get("type") == "undefined":
        return "undefined"
    return remote_object.get("description", remote_object.get("type", ""))


class Page(EventEmitter):
    """A browser tab: frames, script, navigation, input, network, screenshots.

    Create with ``Page.create`` (or ``Browser.new_page``). Events are
    listed in ``PageEvents`` and delivered in protocol order.
    """

    def __init__(
        self,
        connection: Connection,
        main_frame_id: str,
        *,
        target_id: str = "",
        config: DriverConfig | None = None,
        browser: Browser | None = None,
    ):
        super().__init__()
        self.config = config or DriverConfig()
        self.target_id = target_id
        self._connection = connection
        self._browser = browser
        self._closed = False
        self._viewport: Viewport | None = None
        self._screenshot_lock = asyncio.Lock()
        # requestId -> (loaderId, url)
        self._requests: dict[str, tuple[str, str]] = {}
        self._contexts: dict[int, Frame] = {}
        self.console_messages: deque[ConsoleMessage] = deque(maxlen=CONSOLE_HISTORY)

        self._frames = FrameRegistry(main_frame_id, page=self)
        self._bridge = ExecutionBridge(connection, self._frames)
        self._navigation = NavigationController(
            connection,
            self._frames,
            min_settle_time=self.config.min_settle_time,
            timeout=self.config.navigation_timeout,
        )
        self._interception = InterceptionGate(connection)
        self.keyboard = Keyboard(connection)
        self.mouse = Mouse(connection, self.keyboard)

        # Registered first so page events precede navigation bookkeeping.
        for method, handler in (
            ("Page.frameAttached", self._on_frame_attached),
            ("Page.frameNavigated", self._on_frame_navigated),
            ("Page.navigatedWithinDocument", self._on_navigated_within_document),
            ("Page.frameDetached", self._on_frame_detached),
            ("Page.loadEventFired", self._on_load_event_fired),
            ("Page.domContentEventFired", self._on_dom_content_event_fired),
            ("Page.javascriptDialogOpening", self._on_dialog),
            ("Runtime.executionContextCreated", self._on_context_created),
            ("Runtime.executionContextDestroyed", self._on_context_destroyed),
            ("Runtime.executionContextsCleared", self._on_contexts_cleared),
            ("Runtime.consoleAPICalled", self._on_console_api),
            ("Runtime.exceptionThrown", self._on_exception_thrown),
            ("Network.requestWillBeSent", self._on_request_will_be_sent),
            ("Network.loadingFinished", self._on_loading_finished),
            ("Network.loadingFailed", self._on_loading_failed),
            ("Inspector.targetCrashed", self._on_target_crashed),
            (Connection.DISCONNECTED, self._on_disconnected),
        ):
            connection.on(method, handler)

    @classmethod
    async def create(
        cls,
        connection: Connection,
        *,
        target_id: str = "",
        config: DriverConfig | None = None,
        browser: Browser | None = None,
    ) -> Page:
        """Build a page on an open connection and enable the domains it needs."""
        tree = (await connection.send("Page.getFrameTree"))["frameTree"]
        page = cls(
            connection,
            tree["frame"]["id"],
            target_id=target_id,
            config=config,
            browser=browser,
        )
        page._seed_frame_tree(tree)
        await asyncio.gather(
            connection.send("Page.enable"),
            connection.send("Page.setLifecycleEventsEnabled", {"enabled": True}),
            connection.send("Runtime.enable"),
            connection.send("Network.enable"),
        )
        return page

    def _seed_frame_tree(self, tree: dict, parent_id: str | None = None) -> None:
        frame_info = tree["frame"]
        if parent_id is not None:
            self._frames.attach(parent_id, frame_info["id"])
        self._frames.navigate(
            frame_info["id"],
            frame_info.get("url", "") + frame_info.get("urlFragment", ""),
            parent_id=parent_id,
            name=frame_info.get("name", ""),
        )
        for child in tree.get("childFrames", []):
            self._seed_frame_tree(child, frame_info["id"])

    # ── Properties ──────────────────────────────────────────────

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def main_frame(self) -> Frame:
        return self._frames.main_frame()

    @property
    def url(self) -> str:
        return self.main_frame.url

    @property
    def viewport(self) -> Viewport | None:
        return self._viewport

    def frames(self) -> list[Frame]:
        return self._frames.frames()

    def is_closed(self) -> bool:
        return self._closed

    # ── Frame events ────────────────────────────────────────────

    def _on_frame_attached(self, params: dict) -> None:
        frame = self._frames.attach(params.get("parentFrameId", ""), params["frameId"])
        if frame is not None:
            self.emit(PageEvents.FRAME_ATTACHED, frame)

    def _on_frame_navigated(self, params: dict) -> None:
        info = params["frame"]
        frame, detached = self._frames.navigate(
            info["id"],
            info.get("url", "") + info.get("urlFragment", ""),
            parent_id=info.get("parentId"),
            name=info.get("name", ""),
        )
        for child in detached:
            self._frame_removed(child)
        if frame is not None and frame.is_main_frame():
            self._forget_requests(info.get("loaderId", ""))
        if frame is not None:
            self.emit(PageEvents.FRAME_NAVIGATED, frame)

    def _forget_requests(self, loader_id: str) -> None:
        # Keep only requests of the committed document.
        self._requests = {
            request_id: entry
            for request_id, entry in self._requests.items()
            if entry[0] == loader_id
        }
        self._interception.retain_aborts(self._requests)

    def _on_navigated_within_document(self, params: dict) -> None:
        frame = self._frames.navigate_within_document(params["frameId"], params["url"])
        if frame is not None:
            self.emit(PageEvents.FRAME_NAVIGATED, frame)

    def _on_frame_detached(self, params: dict) -> None:
        for frame in self._frames.detach(params["frameId"]):
            self._frame_removed(frame)

    def _frame_removed(self, frame: Frame) -> None:
        frame._fail_context_waiters(PageDriverError(f"Frame {frame.id} was detached"))
        self._navigation.frame_detached(frame)
        self.emit(PageEvents.FRAME_DETACHED, frame)

    # ── Execution contexts ──────────────────────────────────────

    def _on_context_created(self, params: dict) -> None:
        context = params["context"]
        aux = context.get("auxData") or {}
        if not aux.get("isDefault"):
            return
        frame = self._frames.get(aux.get("frameId", ""))
        if frame is None:
            return
        self._contexts[context["id"]] = frame
        frame._set_context(context["id"])

    def _on_context_destroyed(self, params: dict) -> None:
        context_id = params["executionContextId"]
        frame = self._contexts.pop(context_id, None)
        if frame is not None and frame.execution_context_id == context_id:
            frame._clear_context()

    def _on_contexts_cleared(self, params: dict) -> None:
        for frame in self._contexts.values():
            frame._clear_context()
        self._contexts.clear()

    # ── Page events ─────────────────────────────────────────────

    def _on_load_event_fired(self, params: dict) -> None:
        self.emit(PageEvents.LOAD)

    def _on_dom_content_event_fired(self, params: dict) -> None:
        self.emit(PageEvents.DOM_CONTENT_LOADED)

    def _on_dialog(self, params: dict) -> None:
        dialog = Dialog(
            self._connection,
            params.get("type", Dialog.ALERT),
            params.get("message", ""),
            params.get("defaultPrompt", ""),
        )
        self.emit(PageEvents.DIALOG, dialog)

    def _on_console_api(self, params: dict) -> None:
        args = params.get("args", [])
        message = ConsoleMessage(
            type=params.get("type", "log"),
            text=" ".join(_format_console_arg(arg) for arg in args),
            args=[remote_value(arg) for arg in args],
        )
        self.console_messages.append(message)
        self.emit(PageEvents.CONSOLE, message.text)

    def _on_exception_thrown(self, params: dict) -> None:
        message, stack = exception_message(params.get("exceptionDetails", {}))
        self.emit(PageEvents.ERROR, PageError(message, stack=stack))

    def _on_target_crashed(self, params: dict) -> None:
        self.emit(PageEvents.ERROR, PageError("Page crashed!"))

    def _on_request_will_be_sent(self, params: dict) -> None:
        self._requests[params["requestId"]] = (
            params.get("loaderId", ""),
            params.get("request", {}).get("url", ""),
        )

    def _on_loading_finished(self, params: dict) -> None:
        self._requests.pop(params["requestId"], None)

    def _on_loading_failed(self, params: dict) -> None:
        request_id = params["requestId"]
        event = ResourceLoadingFailed(
            request_id=request_id,
            url=self._requests.pop(request_id, ("", ""))[1],
            error_text=params.get("errorText", ""),
            canceled=params.get("canceled", False),
            resource_type=params.get("type", ""),
            intercepted=self._interception.consume_abort(request_id),
        )
        self.emit(PageEvents.RESOURCE_LOADING_FAILED, event)

    def _on_disconnected(self, params: dict) -> None:
        reason = params.get("reason", "connection closed")
        self._frames.disconnect(reason)
        self._requests.clear()
        self._interception.retain_aborts(())
        self._closed = True
        self.emit(PageEvents.CLOSE)

    # ── Script ──────────────────────────────────────────────────

    async def evaluate(self, page_function: str, *args: Any, force_expr: bool = False) -> Any:
        """Evaluate ``page_function`` in the main frame.

        ``page_function`` is JavaScript source: either an expression
        (``"7 * 3"``) or a function called with ``args``
        (``"(a, b) => a * b"``). Promise results are awaited. Script
        exceptions raise ``EvaluationError``.
        """
        return await self.main_frame.evaluate(page_function, *args, force_expr=force_expr)

    async def expose_function(self, name: str, host_fn: Callable[..., Any]) -> None:
        """Make ``host_fn`` callable from page script as ``window[name]``.

        The page-side function returns a promise of ``host_fn``'s result;
        ``host_fn`` may be sync or async. Survives navigation.
        """
        await self._bridge.expose_function(name, host_fn)

    async def title(self) -> str:
        return await self.main_frame.title()

    async def content(self) -> str:
        return await self.main_frame.content()

    async def set_content(self, html: str) -> None:
        await self.evaluate(
            """html => {
                document.open();
                document.write(html);
                document.close();
            }""",
            html,
        )

    # ── Navigation ──────────────────────────────────────────────

    async def goto(
        self,
        url: str,
        *,
        min_settle_time: float | None = None,
        timeout: float | None = None,
        referrer: str | None = None,
    ) -> bool:
        """Navigate and wait for network idle; ``False`` if it cannot."""
        return await self._navigation.goto(
            url, min_settle_time=min_settle_time, timeout=timeout, referrer=referrer
        )

    async def reload(
        self,
        *,
        ignore_cache: bool = False,
        min_settle_time: float | None = None,
        timeout: float | None = None,
    ) -> bool:
        return await self._navigation.reload(
            ignore_cache=ignore_cache, min_settle_time=min_settle_time, timeout=timeout
        )

    # ── Network ─────────────────────────────────────────────────

    async def set_request_interceptor(self, interceptor: Interceptor | None) -> None:
        """Pause every request and hand it to ``interceptor``; ``None`` clears."""
        await self._interception.set_interceptor(interceptor)

    async def set_extra_http_headers(self, headers: Mapping[str, str]) -> None:
        for name, value in headers.items():
            if not isinstance(value, str):
                raise TypeError(f"Header {name!r} must be a string, got {type(value).__name__}")
        await self._connection.send("Network.setExtraHTTPHeaders", {"headers": dict(headers)})

    async def set_user_agent(self, user_agent: str) -> None:
        await self._connection.send("Network.setUserAgentOverride", {"userAgent": user_agent})

    # ── Input ───────────────────────────────────────────────────

    async def click(
        self, selector: str, *, button: str = "left", click_count: int = 1, delay: float = 0
    ) -> None:
        point = await self.evaluate(
            """selector => {
                const element = document.querySelector(selector);
                if (!element)
                    return null;
                element.scrollIntoView({block: 'center', inline: 'center'});
                const rect = element.getBoundingClientRect();
                return {x: rect.left + rect.width / 2, y: rect.top + rect.height / 2};
            }""",
            selector,
        )
        if point is None:
            raise PageDriverError(f"No node found for selector: {selector}")
        await self.mouse.click(point["x"], point["y"], button, click_count, delay)

    async def focus(self, selector: str) -> None:
        found = await self.evaluate(
            """selector => {
                const element = document.querySelector(selector);
                if (!element)
                    return false;
                element.focus();
                return true;
            }""",
            selector,
        )
        if not found:
            raise PageDriverError(f"No node found for selector: {selector}")

    async def type(self, text: str, *, delay: float = 0) -> None:
        """Type into the currently focused element."""
        await self.keyboard.type(text, delay=delay)

    async def press(self, key: str, *, delay: float = 0) -> None:
        await self.keyboard.press(key, delay=delay)

    # ── Viewport & screenshots ──────────────────────────────────

    async def set_viewport(
        self,
        width: int,
        height: int,
        *,
        device_scale_factor: float = 1,
        is_mobile: bool = False,
    ) -> None:
        viewport = Viewport(width, height, device_scale_factor, is_mobile)
        await self._connection.send(
            "Emulation.setDeviceMetricsOverride",
            {
                "width": width,
                "height": height,
                "deviceScaleFactor": device_scale_factor,
                "mobile": is_mobile,
            },
        )
        self._viewport = viewport

    async def screenshot(
        self,
        *,
        clip: Clip | Mapping[str, float] | None = None,
        full_page: bool = False,
        format: str = "png",
        quality: int | None = None,
        path: str | Path | None = None,
    ) -> bytes:
        """Capture the viewport, a clip rectangle, or the full page.

        Clips are in page coordinates and may lie outside the viewport; the
        image always has the clip's size. ``clip`` and ``full_page`` are
        mutually exclusive.
        """
        if clip is not None and full_page:
            raise ValueError("clip and full_page are mutually exclusive")
        if format not in SCREENSHOT_FORMATS:
            raise ValueError(f"Unsupported screenshot format: {format}")
        if quality is not None and format == "png":
            raise ValueError("quality is not supported for png screenshots")
        region = Clip.coerce(clip) if clip is not None else None

        async with self._screenshot_lock:
            if full_page:
                metrics = await self._connection.send("Page.getLayoutMetrics")
                size = metrics.get("cssContentSize") or metrics["contentSize"]
                region = Clip(0, 0, math.ceil(size["width"]), math.ceil(size["height"]))
            params: dict = {"format": format}
            if quality is not None:
                params["quality"] = quality
            if region is not None:
                params["clip"] = region.to_protocol()
                params["captureBeyondViewport"] = True
            response = await self._connection.send("Page.captureScreenshot", params)

        data = base64.b64decode(response["data"])
        if path is not None:
            Path(path).write_bytes(data)
        return data

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        if self._closed:
            return
        if self._browser is not None:
            await self._browser._close_page(self)
        await self._connection.close()
        self._closed = True
