"""Frame tree bookkeeping.

Frames live in an id-indexed arena owned by ``FrameRegistry``. A frame
refers to its parent and children by id only, so removing a subtree is a
plain table deletion. The registry never talks to the browser; callers
apply protocol events to it and emit page events from what it returns.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Iterator

from pagedriver.errors import PageDriverError, ProtocolDisconnect

if TYPE_CHECKING:
    from pagedriver.page import Page


class Frame:
    """A navigable document context inside a page."""

    def __init__(self, registry: FrameRegistry, frame_id: str, parent_id: str | None = None):
        self._registry = registry
        self._id = frame_id
        self._parent_id = parent_id
        self._child_ids: list[str] = []
        self._url = ""
        self._name = ""
        self._detached = False
        self._context_id: int | None = None
        self._context_waiters: list[asyncio.Future] = []

    def __repr__(self) -> str:
        return f"<Frame id={self._id!r} url={self._url!r}>"

    @property
    def id(self) -> str:
        return self._id

    @property
    def url(self) -> str:
        return self._url

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent_frame(self) -> Frame | None:
        if self._parent_id is None:
            return None
        return self._registry.get(self._parent_id)

    @property
    def child_frames(self) -> list[Frame]:
        return [self._registry._frames[cid] for cid in self._child_ids]

    def is_main_frame(self) -> bool:
        return self._parent_id is None and not self._detached

    def is_detached(self) -> bool:
        return self._detached

    # ── Execution context ───────────────────────────────────────

    @property
    def execution_context_id(self) -> int | None:
        return self._context_id

    async def wait_for_execution_context(self) -> int:
        """Return the default context id, waiting for one to be created."""
        if self._registry.disconnect_reason is not None:
            raise ProtocolDisconnect(f"Page disconnected: {self._registry.disconnect_reason}")
        if self._detached:
            raise PageDriverError(f"Frame {self._id} was detached")
        if self._context_id is not None:
            return self._context_id
        future = asyncio.get_running_loop().create_future()
        self._context_waiters.append(future)
        return await future

    def _set_context(self, context_id: int) -> None:
        self._context_id = context_id
        waiters, self._context_waiters = self._context_waiters, []
        for future in waiters:
            if not future.done():
                future.set_result(context_id)

    def _clear_context(self) -> None:
        self._context_id = None

    def _fail_context_waiters(self, exc: Exception) -> None:
        waiters, self._context_waiters = self._context_waiters, []
        for future in waiters:
            if not future.done():
                future.set_exception(exc)

    # ── Page-backed operations ──────────────────────────────────

    def _page(self) -> Page:
        page = self._registry.page
        if page is None:
            raise PageDriverError("Frame is not bound to a page")
        return page

    async def evaluate(self, page_function: str, *args: Any, force_expr: bool = False) -> Any:
        """Evaluate script in this frame's document; see ``Page.evaluate``."""
        return await self._page()._bridge.evaluate(
            self, page_function, *args, force_expr=force_expr
        )

    async def goto(self, url: str, **options: Any) -> bool:
        return await self._page()._navigation.goto(url, frame=self, **options)

    async def title(self) -> str:
        return await self.evaluate("document.title")

    async def content(self) -> str:
        return await self.evaluate(
            """() => {
                let html = '';
                if (document.doctype)
                    html = new XMLSerializer().serializeToString(document.doctype);
                if (document.documentElement)
                    html += document.documentElement.outerHTML;
                return html;
            }"""
        )


class FrameRegistry:
    """Single writer of a page's frame tree."""

    def __init__(self, main_frame_id: str, page: Page | None = None):
        self.page = page
        self.disconnect_reason: str | None = None
        self._main = Frame(self, main_frame_id)
        self._frames: dict[str, Frame] = {main_frame_id: self._main}

    def __len__(self) -> int:
        return len(self._frames)

    def __contains__(self, frame_id: str) -> bool:
        return frame_id in self._frames

    def get(self, frame_id: str) -> Frame | None:
        return self._frames.get(frame_id)

    def main_frame(self) -> Frame:
        return self._main

    def disconnect(self, reason: str) -> None:
        """Fail every context waiter; later waits raise ``ProtocolDisconnect``."""
        self.disconnect_reason = reason
        for frame in self.frames():
            frame._fail_context_waiters(ProtocolDisconnect(f"Page disconnected: {reason}"))

    def frames(self) -> list[Frame]:
        """All frames in tree pre-order, main frame first."""
        return list(self._walk(self._main))

    def _walk(self, frame: Frame) -> Iterator[Frame]:
        yield frame
        for child_id in frame._child_ids:
            yield from self._walk(self._frames[child_id])

    def attach(self, parent_id: str, frame_id: str) -> Frame | None:
        """Add a child frame; returns ``None`` when the event is not applicable.

        The main frame is never attached, and neither is an id already in the
        tree or a frame whose parent is unknown.
        """
        if frame_id in self._frames:
            return None
        parent = self._frames.get(parent_id)
        if parent is None:
            return None
        frame = Frame(self, frame_id, parent_id)
        self._frames[frame_id] = frame
        parent._child_ids.append(frame_id)
        return frame

    def navigate(
        self,
        frame_id: str,
        url: str,
        *,
        parent_id: str | None = None,
        name: str = "",
    ) -> tuple[Frame | None, list[Frame]]:
        """Commit a new document in a frame.

        Returns the navigated frame and the descendants detached from it, in
        detach order. A navigation without ``parent_id`` is a main-frame
        navigation; if the browser assigned a new id to the main frame (a
        cross-process navigation) the existing main frame is re-keyed so its
        identity survives.
        """
        if parent_id is None:
            frame = self._main
        else:
            frame = self._frames.get(frame_id)
            if frame is None:
                return None, []

        detached: list[Frame] = []
        for child_id in list(frame._child_ids):
            detached.extend(self.detach(child_id))

        if frame is self._main and frame._id != frame_id:
            del self._frames[frame._id]
            frame._id = frame_id
            self._frames[frame_id] = frame

        frame._url = url
        frame._name = name
        return frame, detached

    def navigate_within_document(self, frame_id: str, url: str) -> Frame | None:
        frame = self._frames.get(frame_id)
        if frame is not None:
            frame._url = url
        return frame

    def detach(self, frame_id: str) -> list[Frame]:
        """Remove the subtree rooted at ``frame_id``, children first.

        Unknown ids and the main frame are ignored. Every removed frame is
        marked detached and returned exactly once.
        """
        frame = self._frames.get(frame_id)
        if frame is None or frame is self._main:
            return []

        removed: list[Frame] = []
        self._remove_subtree(frame, removed)
        parent = self._frames.get(frame._parent_id) if frame._parent_id else None
        if parent is not None and frame_id in parent._child_ids:
            parent._child_ids.remove(frame_id)
        return removed

    def _remove_subtree(self, frame: Frame, removed: list[Frame]) -> None:
        for child_id in list(frame._child_ids):
            child = self._frames.get(child_id)
            if child is not None:
                self._remove_subtree(child, removed)
        frame._child_ids.clear()
        del self._frames[frame._id]
        frame._detached = True
        frame._clear_context()
        removed.append(frame)


def dump_frame_tree(frame: Frame, indent: str = "") -> str:
    """Render a frame and its descendants as an indented list of URLs."""
    lines = [indent + frame.url]
    for child in frame.child_frames:
        lines.append(dump_frame_tree(child, indent + "    "))
    return "\n".join(lines)
