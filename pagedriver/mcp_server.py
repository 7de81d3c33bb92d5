"""
pagedriver MCP server
Exposes a single driven browser page to agents via Model Context Protocol.
Connects to a running browser's DevTools endpoint (PAGEDRIVER_BROWSER_URL).
"""

import asyncio
import json

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.utilities.types import Image

from pagedriver.browser import Browser
from pagedriver.config import DriverConfig
from pagedriver.dialog import Dialog
from pagedriver.errors import EvaluationError
from pagedriver.events import PageEvents
from pagedriver.frames import dump_frame_tree
from pagedriver.page import Clip, Page

mcp = FastMCP(
    "pagedriver",
    instructions=(
        "Browser page control over the DevTools protocol. Navigation waits for "
        "network idle; evaluate takes JavaScript expressions or functions."
    ),
)

_browser: Browser | None = None
_page: Page | None = None
_page_lock = asyncio.Lock()
_pending_dialogs: list[Dialog] = []


async def get_page() -> Page:
    """Get or create the page driven by this server.

    A closed page (tab closed, browser restarted) is replaced by a fresh one
    on the next call.
    """
    global _browser, _page
    async with _page_lock:
        if _page is not None and not _page.is_closed():
            return _page
        if _browser is None or not _browser.is_connected():
            _browser = await Browser.connect(config=DriverConfig.from_env())
        _page = await _browser.new_page()
        _pending_dialogs.clear()
        _page.on(PageEvents.DIALOG, _pending_dialogs.append)
        return _page


def text_result(data) -> str:
    """Format result as string for MCP tool return."""
    if isinstance(data, (dict, list)):
        return json.dumps(data, indent=2)
    return str(data)


# ── Navigation ──────────────────────────────────────────────────


@mcp.tool()
async def page_navigate(url: str, min_settle_time: float = -1) -> str:
    """Navigate the page to a URL and wait until the network is idle.
    min_settle_time: seconds without new requests before navigation counts as
    done (negative = server default). Returns success and the final URL."""
    page = await get_page()
    success = await page.goto(
        url, min_settle_time=None if min_settle_time < 0 else min_settle_time
    )
    return text_result({"success": success, "url": page.url})


@mcp.tool()
async def page_reload() -> str:
    """Reload the page and wait until the network is idle."""
    page = await get_page()
    return text_result({"success": await page.reload(), "url": page.url})


@mcp.tool()
async def page_get_info() -> str:
    """Get the page URL, title and frame count."""
    page = await get_page()
    return text_result(
        {"url": page.url, "title": await page.title(), "frames": len(page.frames())}
    )


@mcp.tool()
async def page_list_frames() -> str:
    """List the frame tree of the page as indented URLs."""
    page = await get_page()
    return dump_frame_tree(page.main_frame)


# ── Script ──────────────────────────────────────────────────────


@mcp.tool()
async def page_evaluate(script: str) -> str:
    """Evaluate JavaScript in the page. Accepts an expression ("document.title")
    or a function ("() => [...document.links].length"); promises are awaited."""
    page = await get_page()
    try:
        result = await page.evaluate(script)
    except EvaluationError as e:
        return text_result({"error": e.message, "stack": e.stack})
    return text_result({"result": result})


@mcp.tool()
async def page_console_messages(clear: bool = True) -> str:
    """Get console messages logged by the page since the last call."""
    page = await get_page()
    messages = [{"type": m.type, "text": m.text} for m in page.console_messages]
    if clear:
        page.console_messages.clear()
    return text_result(messages)


# ── Input ───────────────────────────────────────────────────────


@mcp.tool()
async def page_click(selector: str) -> str:
    """Click the element matching a CSS selector."""
    page = await get_page()
    await page.click(selector)
    return text_result({"success": True})


@mcp.tool()
async def page_focus(selector: str) -> str:
    """Focus the element matching a CSS selector."""
    page = await get_page()
    await page.focus(selector)
    return text_result({"success": True})


@mcp.tool()
async def page_type(text: str, selector: str = "") -> str:
    """Type text into the focused element, or into selector after focusing it."""
    page = await get_page()
    if selector:
        await page.focus(selector)
    await page.type(text)
    return text_result({"success": True})


@mcp.tool()
async def page_press_key(key: str) -> str:
    """Press a key (Enter, Tab, Escape, ArrowDown, a, 1, ...)."""
    page = await get_page()
    await page.press(key)
    return text_result({"success": True})


# ── Dialogs ─────────────────────────────────────────────────────


@mcp.tool()
async def page_get_dialogs() -> str:
    """Get alert/confirm/prompt dialogs that are open and waiting for an answer."""
    await get_page()
    return text_result(
        [
            {"type": d.type, "message": d.message, "default_value": d.default_value}
            for d in _pending_dialogs
        ]
    )


@mcp.tool()
async def page_handle_dialog(action: str, text: str = "") -> str:
    """Handle (accept or dismiss) the oldest pending dialog.
    action: 'accept' to click OK/Yes, 'dismiss' to click Cancel/No.
    text: optional text to enter for prompt dialogs before accepting."""
    await get_page()
    if action not in ("accept", "dismiss"):
        return text_result({"error": f"Unknown action: {action}"})
    if not _pending_dialogs:
        return text_result({"error": "No pending dialog"})
    dialog = _pending_dialogs.pop(0)
    if action == "accept":
        await dialog.accept(text or None)
    else:
        await dialog.dismiss()
    return text_result({"success": True, "type": dialog.type})


# ── Viewport & Screenshots ──────────────────────────────────────


@mcp.tool()
async def page_set_viewport(width: int, height: int, device_scale_factor: float = 1) -> str:
    """Resize the page viewport."""
    page = await get_page()
    await page.set_viewport(width, height, device_scale_factor=device_scale_factor)
    return text_result({"success": True, "width": width, "height": height})


def _clip(x: float, y: float, width: float, height: float) -> Clip | None:
    if width <= 0 or height <= 0:
        return None
    return Clip(x, y, width, height)


@mcp.tool()
async def page_screenshot(
    full_page: bool = False,
    x: float = 0,
    y: float = 0,
    width: float = 0,
    height: float = 0,
) -> Image:
    """Take a PNG screenshot of the page. Returns the image so you can see it.
    Pass width/height (with x/y) to capture a rectangle in page coordinates,
    or full_page to capture the whole scrollable document."""
    page = await get_page()
    data = await page.screenshot(clip=_clip(x, y, width, height), full_page=full_page)
    return Image(data=data, format="png")


@mcp.tool()
async def page_save_screenshot(
    path: str,
    full_page: bool = False,
    x: float = 0,
    y: float = 0,
    width: float = 0,
    height: float = 0,
) -> str:
    """Save a PNG screenshot of the page to a file path."""
    page = await get_page()
    data = await page.screenshot(
        clip=_clip(x, y, width, height), full_page=full_page, path=path
    )
    return text_result({"success": True, "path": path, "bytes": len(data)})


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
