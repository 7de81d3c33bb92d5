"""Keyboard and mouse input via ``Input.dispatch*Event``."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from pagedriver.errors import PageDriverError

if TYPE_CHECKING:
    from pagedriver.connection import Connection

# key -> (windowsVirtualKeyCode, code, text)
KEY_DEFINITIONS: dict[str, tuple[int, str, str]] = {
    "Backspace": (8, "Backspace", ""),
    "Tab": (9, "Tab", ""),
    "Enter": (13, "Enter", "\r"),
    "Shift": (16, "ShiftLeft", ""),
    "Control": (17, "ControlLeft", ""),
    "Alt": (18, "AltLeft", ""),
    "Escape": (27, "Escape", ""),
    " ": (32, "Space", " "),
    "PageUp": (33, "PageUp", ""),
    "PageDown": (34, "PageDown", ""),
    "End": (35, "End", ""),
    "Home": (36, "Home", ""),
    "ArrowLeft": (37, "ArrowLeft", ""),
    "ArrowUp": (38, "ArrowUp", ""),
    "ArrowRight": (39, "ArrowRight", ""),
    "ArrowDown": (40, "ArrowDown", ""),
    "Delete": (46, "Delete", ""),
    "Meta": (91, "MetaLeft", ""),
}

MODIFIER_BITS = {"Alt": 1, "Control": 2, "Meta": 4, "Shift": 8}


def key_description(key: str) -> tuple[int, str, str]:
    if key in KEY_DEFINITIONS:
        return KEY_DEFINITIONS[key]
    if len(key) == 1 and key.isascii() and key.isalnum():
        upper = key.upper()
        code = f"Digit{key}" if key.isdigit() else f"Key{upper}"
        return ord(upper), code, key
    if key in ("\n", "\r"):
        return KEY_DEFINITIONS["Enter"]
    raise PageDriverError(f"Unknown key: {key!r}")


class Keyboard:
    def __init__(self, connection: Connection):
        self._connection = connection
        self._modifiers = 0
        self._pressed: set[str] = set()

    @property
    def modifiers(self) -> int:
        return self._modifiers

    async def down(self, key: str, text: str | None = None) -> None:
        key_code, code, default_text = key_description(key)
        if text is None:
            text = default_text
        auto_repeat = key in self._pressed
        self._pressed.add(key)
        self._modifiers |= MODIFIER_BITS.get(key, 0)
        await self._connection.send(
            "Input.dispatchKeyEvent",
            {
                "type": "keyDown" if text else "rawKeyDown",
                "modifiers": self._modifiers,
                "windowsVirtualKeyCode": key_code,
                "code": code,
                "key": key,
                "text": text,
                "unmodifiedText": text,
                "autoRepeat": auto_repeat,
            },
        )

    async def up(self, key: str) -> None:
        key_code, code, _ = key_description(key)
        self._modifiers &= ~MODIFIER_BITS.get(key, 0)
        self._pressed.discard(key)
        await self._connection.send(
            "Input.dispatchKeyEvent",
            {
                "type": "keyUp",
                "modifiers": self._modifiers,
                "windowsVirtualKeyCode": key_code,
                "code": code,
                "key": key,
            },
        )

    async def send_character(self, char: str) -> None:
        """Insert text without key events (for characters with no key)."""
        await self._connection.send("Input.insertText", {"text": char})

    async def press(self, key: str, delay: float = 0) -> None:
        await self.down(key)
        if delay:
            await asyncio.sleep(delay)
        await self.up(key)

    async def type(self, text: str, delay: float = 0) -> None:
        """Type ``text`` into the focused element, one key per character."""
        for char in text:
            key = "Enter" if char in "\r\n" else char
            if key in KEY_DEFINITIONS or (len(key) == 1 and key.isascii() and key.isalnum()):
                await self.press(key)
            else:
                await self.send_character(char)
            if delay:
                await asyncio.sleep(delay)


class Mouse:
    def __init__(self, connection: Connection, keyboard: Keyboard):
        self._connection = connection
        self._keyboard = keyboard
        self._x = 0.0
        self._y = 0.0
        self._button = "none"

    async def move(self, x: float, y: float, steps: int = 1) -> None:
        from_x, from_y = self._x, self._y
        self._x, self._y = x, y
        for i in range(1, steps + 1):
            await self._connection.send(
                "Input.dispatchMouseEvent",
                {
                    "type": "mouseMoved",
                    "button": self._button,
                    "x": from_x + (x - from_x) * (i / steps),
                    "y": from_y + (y - from_y) * (i / steps),
                    "modifiers": self._keyboard.modifiers,
                },
            )

    async def down(self, button: str = "left", click_count: int = 1) -> None:
        self._button = button
        await self._dispatch("mousePressed", button, click_count)

    async def up(self, button: str = "left", click_count: int = 1) -> None:
        self._button = "none"
        await self._dispatch("mouseReleased", button, click_count)

    async def click(
        self, x: float, y: float, button: str = "left", click_count: int = 1, delay: float = 0
    ) -> None:
        await self.move(x, y)
        await self.down(button, click_count)
        if delay:
            await asyncio.sleep(delay)
        await self.up(button, click_count)

    async def _dispatch(self, type: str, button: str, click_count: int) -> None:
        await self._connection.send(
            "Input.dispatchMouseEvent",
            {
                "type": type,
                "button": button,
                "x": self._x,
                "y": self._y,
                "modifiers": self._keyboard.modifiers,
                "clickCount": click_count,
            },
        )
