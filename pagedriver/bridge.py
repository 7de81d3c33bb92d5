"""Host <-> page script bridge.

``evaluate`` runs script in a frame's default execution context and
returns the result by value, awaiting promises. ``expose_function`` makes a
Python callable reachable from page script under a global name; the stub is
registered for every future document and installed into the current ones.
"""

from __future__ import annotations

import inspect
import json
import logging
import math
import re
import traceback
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pagedriver.errors import (
    EvaluationError,
    PageDriverError,
    ProtocolDisconnect,
    ProtocolError,
)

if TYPE_CHECKING:
    from pagedriver.connection import Connection
    from pagedriver.frames import Frame, FrameRegistry

logger = logging.getLogger(__name__)

BINDING_NAME = "__pagedriver_binding__"

_FUNCTION_SOURCE = re.compile(
    r"^\s*(async\s+)?(function\b|(\([^)]*\)|[A-Za-z_$][\w$]*)\s*=>)", re.DOTALL
)

_INSTALL_FUNCTION = """function installExposedFunction(name, bindingName) {
  if (globalThis[name] && globalThis[name].__pagedriverExposed)
    return;
  const callbacks = new Map();
  let lastSeq = 0;
  const exposed = (...args) => {
    const seq = ++lastSeq;
    const promise = new Promise((resolve, reject) => callbacks.set(seq, {resolve, reject}));
    globalThis[bindingName](JSON.stringify({name, seq, args}));
    return promise;
  };
  exposed.__pagedriverExposed = true;
  exposed.__deliver = (seq, result, error) => {
    const callback = callbacks.get(seq);
    if (!callback)
      return;
    callbacks.delete(seq);
    if (error) {
      const err = new Error(error.message);
      err.stack = error.stack;
      callback.reject(err);
    } else {
      callback.resolve(result);
    }
  };
  globalThis[name] = exposed;
}"""

_DELIVER_FUNCTION = """function deliverExposedResult(name, seq, result, error) {
  globalThis[name].__deliver(seq, result, error);
}"""


# ── Result normalization ────────────────────────────────────────


@dataclass(frozen=True)
class Immediate:
    """A result that is already available."""

    value: Any

    async def resolve(self) -> Any:
        return self.value


@dataclass(frozen=True)
class Deferred:
    """A result that still has to be awaited."""

    awaitable: Awaitable

    async def resolve(self) -> Any:
        return await self.awaitable


def as_outcome(result: Any) -> Immediate | Deferred:
    if inspect.isawaitable(result):
        return Deferred(result)
    return Immediate(result)


# ── Value marshaling ────────────────────────────────────────────


def is_function_source(source: str) -> bool:
    return bool(_FUNCTION_SOURCE.match(source))


def serialize_argument(value: Any) -> dict:
    """Convert a Python value to a protocol ``CallArgument``."""
    if isinstance(value, float):
        if math.isnan(value):
            return {"unserializableValue": "NaN"}
        if math.isinf(value):
            return {"unserializableValue": "Infinity" if value > 0 else "-Infinity"}
        if value == 0 and math.copysign(1.0, value) < 0:
            return {"unserializableValue": "-0"}
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        raise TypeError(f"Argument {value!r} is not JSON serializable") from e
    return {"value": value}


def remote_value(remote_object: dict) -> Any:
    """Extract the Python value of a by-value ``RemoteObject``."""
    if "unserializableValue" in remote_object:
        raw = remote_object["unserializableValue"]
        if raw == "-0":
            return -0.0
        if raw == "NaN":
            return float("nan")
        if raw == "Infinity":
            return float("inf")
        if raw == "-Infinity":
            return float("-inf")
        if raw.endswith("n"):
            return int(raw[:-1])
        raise PageDriverError(f"Unsupported unserializable value: {raw}")
    if remote_object.get("type") == "undefined":
        return None
    return remote_object.get("value")


def exception_message(details: dict) -> tuple[str, str | None]:
    """Return ``(message, stack)`` for protocol ``ExceptionDetails``."""
    exception = details.get("exception") or {}
    description = exception.get("description")
    if description:
        return description.split("\n", 1)[0], description
    if "value" in exception:
        return str(exception["value"]), None
    text = details.get("text") or "Evaluation failed"
    return text, None


@dataclass
class ExposedCallable:
    name: str
    host_fn: Callable[..., Any]
    source: str = field(repr=False)
    script_id: str | None = None


class ExecutionBridge:
    """Evaluates script in frames and serves exposed host callables."""

    def __init__(self, connection: Connection, registry: FrameRegistry):
        self._connection = connection
        self._registry = registry
        self._callables: dict[str, ExposedCallable] = {}
        self._binding_added = False
        connection.on("Runtime.bindingCalled", self._on_binding_called)

    @property
    def exposed_names(self) -> list[str]:
        return list(self._callables)

    # ── evaluate ────────────────────────────────────────────────

    async def evaluate(
        self, frame: Frame, page_function: str, *args: Any, force_expr: bool = False
    ) -> Any:
        """Run ``page_function`` in ``frame`` and return its value.

        Function sources are called with ``args``; anything else is evaluated
        as an expression. Promises are awaited, and a script exception raises
        ``EvaluationError``.
        """
        context_id = await frame.wait_for_execution_context()
        if force_expr or (not args and not is_function_source(page_function)):
            response = await self._connection.send(
                "Runtime.evaluate",
                {
                    "expression": page_function,
                    "contextId": context_id,
                    "returnByValue": True,
                    "awaitPromise": True,
                    "userGesture": True,
                },
            )
        else:
            response = await self._connection.send(
                "Runtime.callFunctionOn",
                {
                    "functionDeclaration": page_function,
                    "executionContextId": context_id,
                    "arguments": [serialize_argument(arg) for arg in args],
                    "returnByValue": True,
                    "awaitPromise": True,
                    "userGesture": True,
                },
            )

        details = response.get("exceptionDetails")
        if details:
            message, stack = exception_message(details)
            raise EvaluationError(message, stack=stack)
        return remote_value(response.get("result", {}))

    # ── expose_function ─────────────────────────────────────────

    async def expose_function(self, name: str, host_fn: Callable[..., Any]) -> None:
        if name in self._callables:
            raise PageDriverError(
                f"Failed to expose function {name!r}: name already exists"
            )
        source = f"({_INSTALL_FUNCTION})({json.dumps(name)}, {json.dumps(BINDING_NAME)})"
        exposed = ExposedCallable(name=name, host_fn=host_fn, source=source)
        self._callables[name] = exposed

        try:
            if not self._binding_added:
                await self._connection.send("Runtime.addBinding", {"name": BINDING_NAME})
                self._binding_added = True
            response = await self._connection.send(
                "Page.addScriptToEvaluateOnNewDocument", {"source": source}
            )
        except BaseException:
            del self._callables[name]
            raise
        exposed.script_id = response.get("identifier")

        for frame in self._registry.frames():
            await self._install(frame, source)

    async def _install(self, frame: Frame, source: str) -> None:
        # Frames without a live context get the stub from the new-document script.
        if frame.execution_context_id is None:
            return
        try:
            await self.evaluate(frame, source, force_expr=True)
        except (EvaluationError, ProtocolError) as e:
            logger.debug("Could not install exposed function in %r: %s", frame, e)

    def _on_binding_called(self, params: dict) -> None:
        if params.get("name") != BINDING_NAME:
            return
        try:
            payload = json.loads(params.get("payload", ""))
            name, seq, args = payload["name"], payload["seq"], payload["args"]
        except (ValueError, KeyError, TypeError):
            logger.warning("Malformed exposed function payload: %.200r", params.get("payload"))
            return
        exposed = self._callables.get(name)
        if exposed is None:
            logger.debug("Binding call for unknown function %r", name)
            return
        self._connection.spawn(
            self._call(exposed, params["executionContextId"], seq, args)
        )

    async def _call(self, exposed: ExposedCallable, context_id: int, seq: int, args: list) -> None:
        try:
            result = await as_outcome(exposed.host_fn(*args)).resolve()
            result_arg = serialize_argument(result)
        except Exception as e:
            logger.debug("Exposed function %r raised %r", exposed.name, e)
            error = {
                "message": str(e) or type(e).__name__,
                "stack": "".join(traceback.format_exception(type(e), e, e.__traceback__)),
            }
            await self._deliver(context_id, exposed.name, seq, {"value": None}, error)
            return
        await self._deliver(context_id, exposed.name, seq, result_arg, None)

    async def _deliver(
        self, context_id: int, name: str, seq: int, result_arg: dict, error: dict | None
    ) -> None:
        try:
            await self._connection.send(
                "Runtime.callFunctionOn",
                {
                    "functionDeclaration": _DELIVER_FUNCTION,
                    "executionContextId": context_id,
                    "arguments": [
                        {"value": name},
                        {"value": seq},
                        result_arg,
                        {"value": error},
                    ],
                    "returnByValue": True,
                    "awaitPromise": False,
                },
            )
        except (ProtocolError, ProtocolDisconnect) as e:
            # The calling document is gone; nobody is left to receive the result.
            logger.debug("Dropped result of %s#%d: %s", name, seq, e)
