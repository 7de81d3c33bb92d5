"""JavaScript dialogs (alert, confirm, prompt, beforeunload)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pagedriver.errors import PageDriverError

if TYPE_CHECKING:
    from pagedriver.connection import Connection


class Dialog:
    """An open dialog. Page script stays blocked until it is handled."""

    ALERT = "alert"
    BEFOREUNLOAD = "beforeunload"
    CONFIRM = "confirm"
    PROMPT = "prompt"

    def __init__(self, connection: Connection, type: str, message: str, default_value: str = ""):
        self._connection = connection
        self._type = type
        self._message = message
        self._default_value = default_value
        self._handled = False

    def __repr__(self) -> str:
        return f"<Dialog {self._type} {self._message!r}>"

    @property
    def type(self) -> str:
        return self._type

    @property
    def message(self) -> str:
        return self._message

    @property
    def default_value(self) -> str:
        return self._default_value

    @property
    def handled(self) -> bool:
        return self._handled

    async def accept(self, prompt_text: str | None = None) -> None:
        params: dict = {"accept": True}
        if prompt_text is not None:
            params["promptText"] = prompt_text
        await self._handle(params)

    async def dismiss(self) -> None:
        await self._handle({"accept": False})

    async def _handle(self, params: dict) -> None:
        if self._handled:
            raise PageDriverError("Dialog is already handled", method="Page.handleJavaScriptDialog")
        self._handled = True
        await self._connection.send("Page.handleJavaScriptDialog", params)
