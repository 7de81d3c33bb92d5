"""Navigation to a network-idle completion signal.

A navigation succeeds once the target frame fired its load milestone, no
request is in flight, and no new request started during the settle time.
Failures to start a navigation are a normal ``False`` outcome.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING

from pagedriver.config import MIN_SETTLE_TIME, NAVIGATION_TIMEOUT
from pagedriver.connection import Connection
from pagedriver.errors import NavigationFailure, ProtocolDisconnect, ProtocolError

if TYPE_CHECKING:
    from pagedriver.frames import Frame, FrameRegistry

logger = logging.getLogger(__name__)


class NavigationState(enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PendingNavigation:
    """Tracks one navigation of one frame until it settles exactly once."""

    def __init__(
        self,
        connection: Connection,
        frame: Frame,
        *,
        is_main: bool,
        min_settle_time: float,
    ):
        self.frame = frame
        self.state = NavigationState.PENDING
        self.min_settle_time = min_settle_time
        self._connection = connection
        self._is_main = is_main
        self._loop = asyncio.get_running_loop()
        self.future: asyncio.Future = self._loop.create_future()
        self._inflight: set[str] = set()
        self._load_fired = False
        self._committed = False
        self._settle_handle: asyncio.TimerHandle | None = None
        self._subscriptions = [
            ("Network.requestWillBeSent", self._on_request_started),
            ("Network.loadingFinished", self._on_request_done),
            ("Network.loadingFailed", self._on_request_done),
            ("Page.frameNavigated", self._on_frame_navigated),
            ("Page.loadEventFired", self._on_load_event),
            ("Page.lifecycleEvent", self._on_lifecycle_event),
            (Connection.DISCONNECTED, self._on_disconnected),
        ]
        for method, handler in self._subscriptions:
            connection.on(method, handler)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    @property
    def load_fired(self) -> bool:
        return self._load_fired

    # ── Protocol events ─────────────────────────────────────────

    def _on_request_started(self, params: dict) -> None:
        self._inflight.add(params["requestId"])
        self._cancel_settle_timer()

    def _on_request_done(self, params: dict) -> None:
        self._inflight.discard(params["requestId"])
        self._check()

    def _on_frame_navigated(self, params: dict) -> None:
        frame = params.get("frame", {})
        if self._is_main:
            is_target = not frame.get("parentId")
        else:
            is_target = frame.get("id") == self.frame.id
        if is_target:
            # A fresh document commit; any earlier load belonged to the old one.
            self._load_fired = False
            self._cancel_settle_timer()

    def _on_load_event(self, params: dict) -> None:
        if self._is_main:
            self._load_fired = True
            self._check()

    def _on_lifecycle_event(self, params: dict) -> None:
        if (
            not self._is_main
            and params.get("name") == "load"
            and params.get("frameId") == self.frame.id
        ):
            self._load_fired = True
            self._check()

    def _on_disconnected(self, params: dict) -> None:
        self.settle(
            False,
            ProtocolDisconnect(
                f"Navigation interrupted: {params.get('reason', 'connection closed')}",
                method="Page.navigate",
            ),
        )

    # ── State machine ───────────────────────────────────────────

    def commit(self, response: dict) -> None:
        """Record the response to the navigation command."""
        if not response.get("loaderId"):
            # Same-document navigation: no new document, no load milestone.
            self._load_fired = True
        self._committed = True
        self._check()

    def _check(self) -> None:
        if self.state is not NavigationState.PENDING:
            return
        if self._committed and self._load_fired and not self._inflight:
            if self._settle_handle is None:
                self._settle_handle = self._loop.call_later(
                    self.min_settle_time, self._on_settle_timer
                )
        else:
            self._cancel_settle_timer()

    def _cancel_settle_timer(self) -> None:
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None

    def _on_settle_timer(self) -> None:
        self._settle_handle = None
        self.settle(True)

    def settle(self, success: bool, error: Exception | None = None) -> None:
        """Resolve the navigation; later calls are ignored."""
        if self.state is not NavigationState.PENDING:
            return
        self.state = NavigationState.SUCCEEDED if success else NavigationState.FAILED
        self._cancel_settle_timer()
        for method, handler in self._subscriptions:
            self._connection.off(method, handler)
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(success)

    async def wait(self, timeout: float | None) -> bool:
        try:
            return await asyncio.wait_for(asyncio.shield(self.future), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Navigation of %r timed out after %ss (load=%s, inflight=%d)",
                self.frame,
                timeout,
                self._load_fired,
                len(self._inflight),
            )
            self.settle(False)
            return False

    def dispose(self) -> None:
        self.settle(False)
        if self.future.done() and not self.future.cancelled():
            self.future.exception()  # mark retrieved


class NavigationController:
    """Issues navigations and waits for network idle."""

    def __init__(
        self,
        connection: Connection,
        registry: FrameRegistry,
        *,
        min_settle_time: float = MIN_SETTLE_TIME,
        timeout: float = NAVIGATION_TIMEOUT,
    ):
        self._connection = connection
        self._registry = registry
        self.min_settle_time = min_settle_time
        self.timeout = timeout
        self._pending: dict[Frame, PendingNavigation] = {}

    def pending_for(self, frame: Frame) -> PendingNavigation | None:
        return self._pending.get(frame)

    async def goto(
        self,
        url: str,
        *,
        frame: Frame | None = None,
        min_settle_time: float | None = None,
        timeout: float | None = None,
        referrer: str | None = None,
    ) -> bool:
        """Navigate ``frame`` (the main frame by default) to ``url``.

        Returns ``True`` at network idle and ``False`` when the navigation
        could not start, timed out, was superseded, or its frame detached.
        Raises ``ProtocolDisconnect`` if the connection drops meanwhile.
        """
        frame = frame or self._registry.main_frame()
        params: dict = {"url": url}
        if frame is not self._registry.main_frame():
            params["frameId"] = frame.id
        if referrer:
            params["referrer"] = referrer
        return await self._navigate(
            frame, "Page.navigate", params, url, min_settle_time, timeout
        )

    async def reload(
        self,
        *,
        ignore_cache: bool = False,
        min_settle_time: float | None = None,
        timeout: float | None = None,
    ) -> bool:
        frame = self._registry.main_frame()
        return await self._navigate(
            frame,
            "Page.reload",
            {"ignoreCache": ignore_cache},
            frame.url,
            min_settle_time,
            timeout,
        )

    async def _navigate(
        self,
        frame: Frame,
        method: str,
        params: dict,
        url: str,
        min_settle_time: float | None,
        timeout: float | None,
    ) -> bool:
        if frame.is_detached():
            logger.info("Cannot navigate detached %r", frame)
            return False

        previous = self._pending.pop(frame, None)
        if previous is not None:
            logger.info("Navigation of %r superseded by %s", frame, url)
            previous.settle(False)

        pending = PendingNavigation(
            self._connection,
            frame,
            is_main=frame is self._registry.main_frame(),
            min_settle_time=self.min_settle_time if min_settle_time is None else min_settle_time,
        )
        self._pending[frame] = pending
        try:
            try:
                response = await self._connection.send(method, params)
            except ProtocolError as e:
                raise NavigationFailure(e.message, url=url) from e
            if response.get("errorText"):
                raise NavigationFailure(response["errorText"], url=url)
            if method == "Page.reload":
                response = {"loaderId": response.get("loaderId", "reload")}
            pending.commit(response)
            success = await pending.wait(self.timeout if timeout is None else timeout)
        except NavigationFailure as e:
            logger.info("Navigation to %s failed: %s", url, e.message)
            return False
        finally:
            if self._pending.get(frame) is pending:
                del self._pending[frame]
            pending.dispose()
        logger.info("Navigation to %s %s", url, "succeeded" if success else "did not complete")
        return success

    def frame_detached(self, frame: Frame) -> None:
        pending = self._pending.pop(frame, None)
        if pending is not None:
            logger.info("Navigation of %r abandoned: frame detached", frame)
            pending.settle(False)
