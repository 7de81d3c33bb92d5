"""Tests for the frame registry and frame tree bookkeeping."""

import asyncio

import pytest

from pagedriver.errors import PageDriverError
from pagedriver.frames import FrameRegistry, dump_frame_tree


@pytest.fixture
def registry():
    registry = FrameRegistry("main")
    registry.navigate("main", "http://localhost/frames/nested-frames.html")
    return registry


def _nested(registry):
    """main -> (f1 -> (f2, f3), f4)"""
    for parent, child in (("main", "f1"), ("f1", "f2"), ("f1", "f3"), ("main", "f4")):
        registry.attach(parent, child)
        registry.navigate(child, f"http://localhost/{child}.html", parent_id=parent)


# ── attach ──────────────────────────────────────────────────────


class TestAttach:
    def test_child(self, registry):
        frame = registry.attach("main", "f1")
        main = registry.main_frame()
        assert frame.parent_frame is main
        assert main.child_frames == [frame]
        assert len(registry) == 2
        assert "f1" in registry
        assert not frame.is_main_frame()
        assert main.is_main_frame()

    def test_known_id_is_ignored(self, registry):
        registry.attach("main", "f1")
        assert registry.attach("main", "f1") is None
        assert registry.attach("f1", "main") is None
        assert len(registry) == 2

    def test_unknown_parent_is_ignored(self, registry):
        assert registry.attach("nope", "f1") is None
        assert "f1" not in registry

    def test_frames_in_preorder(self, registry):
        _nested(registry)
        assert [f.id for f in registry.frames()] == ["main", "f1", "f2", "f3", "f4"]


# ── detach ──────────────────────────────────────────────────────


class TestDetach:
    def test_subtree_children_first(self, registry):
        _nested(registry)
        f1 = registry.get("f1")
        removed = registry.detach("f1")
        assert [f.id for f in removed] == ["f2", "f3", "f1"]
        assert all(f.is_detached() for f in removed)
        assert f1.child_frames == []
        assert [f.id for f in registry.main_frame().child_frames] == ["f4"]
        assert len(registry) == 2

    def test_each_frame_once(self, registry):
        _nested(registry)
        registry.detach("f1")
        assert registry.detach("f1") == []
        assert registry.detach("f2") == []

    def test_main_frame_is_never_detached(self, registry):
        _nested(registry)
        assert registry.detach("main") == []
        assert not registry.main_frame().is_detached()
        assert len(registry) == 5

    def test_unknown_frame(self, registry):
        assert registry.detach("ghost") == []

    def test_detached_frame_loses_context(self, registry):
        frame = registry.attach("main", "f1")
        frame._set_context(7)
        registry.detach("f1")
        assert frame.execution_context_id is None
        assert not frame.is_main_frame()


# ── navigate ────────────────────────────────────────────────────


class TestNavigate:
    def test_main_frame_detaches_children(self, registry):
        _nested(registry)
        frame, detached = registry.navigate("main", "http://localhost/empty.html")
        assert frame is registry.main_frame()
        assert [f.id for f in detached] == ["f2", "f3", "f1", "f4"]
        assert frame.url == "http://localhost/empty.html"
        assert len(registry) == 1

    def test_new_main_id_keeps_identity(self, registry):
        main = registry.main_frame()
        frame, detached = registry.navigate("main-2", "http://other-origin/")
        assert frame is main
        assert detached == []
        assert main.id == "main-2"
        assert registry.get("main-2") is main
        assert "main" not in registry

    def test_child_frame(self, registry):
        registry.attach("main", "f1")
        frame, detached = registry.navigate(
            "f1", "http://localhost/frame.html", parent_id="main", name="inner"
        )
        assert frame is registry.get("f1")
        assert frame.url == "http://localhost/frame.html"
        assert frame.name == "inner"
        assert detached == []

    def test_unknown_child_frame(self, registry):
        assert registry.navigate("f9", "http://x/", parent_id="main") == (None, [])

    def test_within_document(self, registry):
        frame = registry.navigate_within_document("main", "http://localhost/page#section")
        assert frame.url == "http://localhost/page#section"
        assert registry.navigate_within_document("ghost", "http://x/") is None


# ── dump_frame_tree ─────────────────────────────────────────────


class TestDumpFrameTree:
    def test_indents_children(self, registry):
        _nested(registry)
        assert dump_frame_tree(registry.main_frame()) == "\n".join(
            [
                "http://localhost/frames/nested-frames.html",
                "    http://localhost/f1.html",
                "        http://localhost/f2.html",
                "        http://localhost/f3.html",
                "    http://localhost/f4.html",
            ]
        )


# ── Execution context ───────────────────────────────────────────


class TestExecutionContext:
    @pytest.mark.asyncio
    async def test_waits_for_context(self, registry):
        frame = registry.main_frame()
        task = asyncio.ensure_future(frame.wait_for_execution_context())
        await asyncio.sleep(0)
        assert not task.done()
        frame._set_context(3)
        assert await task == 3
        assert await frame.wait_for_execution_context() == 3

    @pytest.mark.asyncio
    async def test_detached_frame_raises(self, registry):
        frame = registry.attach("main", "f1")
        registry.detach("f1")
        with pytest.raises(PageDriverError, match="detached"):
            await frame.wait_for_execution_context()

    @pytest.mark.asyncio
    async def test_waiters_fail(self, registry):
        frame = registry.main_frame()
        task = asyncio.ensure_future(frame.wait_for_execution_context())
        await asyncio.sleep(0)
        frame._fail_context_waiters(PageDriverError("gone"))
        with pytest.raises(PageDriverError, match="gone"):
            await task

    @pytest.mark.asyncio
    async def test_evaluate_needs_a_page(self, registry):
        with pytest.raises(PageDriverError, match="not bound"):
            await registry.main_frame().evaluate("1 + 1")
