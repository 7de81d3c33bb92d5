"""Asyncio driver for Chromium-family browsers over the DevTools protocol."""

from pagedriver.bridge import Deferred, Immediate
from pagedriver.browser import Browser, BrowserConnectionError
from pagedriver.config import DriverConfig
from pagedriver.connection import Connection
from pagedriver.dialog import Dialog
from pagedriver.errors import (
    EvaluationError,
    InterceptionError,
    NavigationFailure,
    PageDriverError,
    PageError,
    ProtocolDisconnect,
    ProtocolError,
    ProtocolTimeout,
)
from pagedriver.events import PageEvents
from pagedriver.frames import Frame, FrameRegistry
from pagedriver.interception import InterceptedRequest
from pagedriver.page import Clip, ConsoleMessage, Page, ResourceLoadingFailed, Viewport

__version__ = "0.1.0"

__all__ = [
    "Browser",
    "BrowserConnectionError",
    "Clip",
    "Connection",
    "ConsoleMessage",
    "Deferred",
    "Dialog",
    "DriverConfig",
    "EvaluationError",
    "Frame",
    "FrameRegistry",
    "Immediate",
    "InterceptedRequest",
    "InterceptionError",
    "NavigationFailure",
    "Page",
    "PageDriverError",
    "PageError",
    "PageEvents",
    "ProtocolDisconnect",
    "ProtocolError",
    "ProtocolTimeout",
    "ResourceLoadingFailed",
    "Viewport",
]
