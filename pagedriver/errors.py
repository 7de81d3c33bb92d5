"""Error hierarchy for pagedriver."""

from __future__ import annotations

from typing import Any


class PageDriverError(Exception):
    """Base class for every error raised by the driver."""

    def __init__(self, message: str, *, method: str | None = None):
        super().__init__(message)
        self.message = message
        self.method = method


class ProtocolError(PageDriverError):
    """The browser answered a command with an error response."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        data: Any = None,
        method: str | None = None,
    ):
        super().__init__(message, method=method)
        self.code = code
        self.data = data


class ProtocolDisconnect(PageDriverError):
    """The transport closed while operations were still pending."""


class ProtocolTimeout(PageDriverError):
    """A command got no response within the configured timeout."""

    def __init__(self, message: str, *, timeout: float, method: str | None = None):
        super().__init__(message, method=method)
        self.timeout = timeout


class EvaluationError(PageDriverError):
    """Script evaluated in the page threw or rejected."""

    def __init__(self, message: str, *, stack: str | None = None):
        super().__init__(message, method="Runtime.evaluate")
        self.stack = stack


class NavigationFailure(PageDriverError):
    """A navigation could not be started (bad or unreachable URL)."""

    def __init__(self, message: str, *, url: str):
        super().__init__(message, method="Page.navigate")
        self.url = url


class InterceptionError(PageDriverError):
    """An intercepted request was disposed of more than once."""


class PageError(PageDriverError):
    """Uncaught exception thrown by page script."""

    def __init__(self, message: str, *, stack: str | None = None):
        super().__init__(message)
        self.stack = stack
