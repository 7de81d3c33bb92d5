"""Tests for script evaluation and exposed host functions."""

import asyncio
import json
import math

import pytest

from conftest import MAIN_CONTEXT_ID, MAIN_FRAME_ID, FakeError, flush
from pagedriver.bridge import (
    BINDING_NAME,
    Deferred,
    Immediate,
    _DELIVER_FUNCTION,
    as_outcome,
    exception_message,
    is_function_source,
    remote_value,
    serialize_argument,
)
from pagedriver.errors import EvaluationError, PageDriverError, ProtocolDisconnect, ProtocolError


def _value(value):
    return {"result": {"type": type(value).__name__, "value": value}}


def _deliveries(socket):
    return [
        params["arguments"]
        for params in socket.params("Runtime.callFunctionOn")
        if params["functionDeclaration"] == _DELIVER_FUNCTION
    ]


def _binding_call(socket, name, seq, args, context_id=MAIN_CONTEXT_ID):
    socket.emit(
        "Runtime.bindingCalled",
        {
            "name": BINDING_NAME,
            "payload": json.dumps({"name": name, "seq": seq, "args": args}),
            "executionContextId": context_id,
        },
    )


# ── Marshaling helpers ──────────────────────────────────────────


class TestFunctionSource:
    @pytest.mark.parametrize(
        "source",
        [
            "() => 1",
            "(a, b) => a * b",
            "x => x",
            "async () => 1",
            "function () { return 1; }",
            "async function f() {}",
        ],
    )
    def test_functions(self, source):
        assert is_function_source(source)

    @pytest.mark.parametrize("source", ["7 * 3", "document.title", "(1 + 2)", "window.x = 5"])
    def test_expressions(self, source):
        assert not is_function_source(source)


class TestSerializeArgument:
    def test_plain(self):
        assert serialize_argument({"a": [1, "b"]}) == {"value": {"a": [1, "b"]}}

    def test_special_numbers(self):
        assert serialize_argument(float("nan")) == {"unserializableValue": "NaN"}
        assert serialize_argument(float("inf")) == {"unserializableValue": "Infinity"}
        assert serialize_argument(float("-inf")) == {"unserializableValue": "-Infinity"}
        assert serialize_argument(-0.0) == {"unserializableValue": "-0"}
        assert serialize_argument(0.0) == {"value": 0.0}

    def test_unserializable(self):
        with pytest.raises(TypeError, match="not JSON serializable"):
            serialize_argument(object())


class TestRemoteValue:
    def test_value(self):
        assert remote_value({"type": "number", "value": 21}) == 21

    def test_undefined(self):
        assert remote_value({"type": "undefined"}) is None

    def test_unserializable(self):
        assert math.copysign(1.0, remote_value({"unserializableValue": "-0"})) < 0
        assert math.isnan(remote_value({"unserializableValue": "NaN"}))
        assert remote_value({"unserializableValue": "-Infinity"}) == float("-inf")
        assert remote_value({"unserializableValue": "12345678901234567890n"}) == 12345678901234567890


class TestExceptionMessage:
    def test_description(self):
        details = {
            "text": "Uncaught",
            "exception": {"description": "Error: boom\n    at <anonymous>:1:7"},
        }
        assert exception_message(details) == ("Error: boom", "Error: boom\n    at <anonymous>:1:7")

    def test_thrown_value(self):
        assert exception_message({"text": "Uncaught", "exception": {"value": 42}}) == ("42", None)

    def test_text_only(self):
        assert exception_message({"text": "Uncaught"}) == ("Uncaught", None)


class TestOutcome:
    @pytest.mark.asyncio
    async def test_immediate(self):
        outcome = as_outcome(5)
        assert isinstance(outcome, Immediate)
        assert await outcome.resolve() == 5

    @pytest.mark.asyncio
    async def test_coroutine(self):
        async def compute():
            return 6

        outcome = as_outcome(compute())
        assert isinstance(outcome, Deferred)
        assert await outcome.resolve() == 6

    @pytest.mark.asyncio
    async def test_future(self):
        future = asyncio.get_running_loop().create_future()
        outcome = as_outcome(future)
        assert isinstance(outcome, Deferred)
        future.set_result(7)
        assert await outcome.resolve() == 7


# ── evaluate ────────────────────────────────────────────────────


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_expression(self, page, socket):
        socket.handle("Runtime.evaluate", result=_value(21))
        assert await page.evaluate("7 * 3") == 21
        params = socket.params("Runtime.evaluate")[-1]
        assert params["expression"] == "7 * 3"
        assert params["contextId"] == MAIN_CONTEXT_ID
        assert params["returnByValue"] is True
        assert params["awaitPromise"] is True

    @pytest.mark.asyncio
    async def test_function_with_args(self, page, socket):
        socket.handle("Runtime.callFunctionOn", result=_value(21))
        assert await page.evaluate("(a, b) => a * b", 7, 3) == 21
        params = socket.params("Runtime.callFunctionOn")[-1]
        assert params["functionDeclaration"] == "(a, b) => a * b"
        assert params["arguments"] == [{"value": 7}, {"value": 3}]
        assert params["executionContextId"] == MAIN_CONTEXT_ID

    @pytest.mark.asyncio
    async def test_promise_result(self, page, socket):
        socket.handle("Runtime.evaluate", result=_value(56))
        assert await page.evaluate("Promise.resolve(8 * 7)") == 56

    @pytest.mark.asyncio
    async def test_undefined_is_none(self, page, socket):
        socket.handle("Runtime.evaluate", result={"result": {"type": "undefined"}})
        assert await page.evaluate("undefined") is None

    @pytest.mark.asyncio
    async def test_throw(self, page, socket):
        socket.handle(
            "Runtime.evaluate",
            result={
                "result": {"type": "object", "subtype": "error"},
                "exceptionDetails": {
                    "text": "Uncaught",
                    "exception": {
                        "description": "ReferenceError: notExistingObject is not defined\n"
                        "    at <anonymous>:1:1"
                    },
                },
            },
        )
        with pytest.raises(EvaluationError, match="notExistingObject is not defined") as info:
            await page.evaluate("notExistingObject.property")
        assert "at <anonymous>" in info.value.stack

    @pytest.mark.asyncio
    async def test_waits_for_new_context(self, page, socket):
        socket.handle("Runtime.evaluate", result=_value("ready"))
        socket.emit("Runtime.executionContextsCleared")
        await flush()
        task = asyncio.ensure_future(page.evaluate("document.readyState"))
        await flush()
        assert not task.done()
        socket.emit(
            "Runtime.executionContextCreated",
            {"context": {"id": 2, "auxData": {"frameId": MAIN_FRAME_ID, "isDefault": True}}},
        )
        assert await task == "ready"
        assert socket.params("Runtime.evaluate")[-1]["contextId"] == 2

    @pytest.mark.asyncio
    async def test_disconnect_fails_waiting_evaluate(self, page, socket):
        socket.emit("Runtime.executionContextsCleared")
        await flush()
        task = asyncio.ensure_future(page.evaluate("1 + 1"))
        await flush()
        await socket.close()
        with pytest.raises(ProtocolDisconnect):
            await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_evaluate_after_disconnect_without_context(self, page, socket):
        socket.emit("Runtime.executionContextsCleared")
        await flush()
        await socket.close()
        await flush()
        with pytest.raises(ProtocolDisconnect):
            await asyncio.wait_for(page.evaluate("1 + 1"), 1)
        with pytest.raises(ProtocolDisconnect):
            await asyncio.wait_for(page.title(), 1)

    @pytest.mark.asyncio
    async def test_force_expr(self, page, socket):
        socket.handle("Runtime.evaluate", result=_value(1))
        await page.evaluate("() => 1", force_expr=True)
        assert socket.params("Runtime.evaluate")[-1]["expression"] == "() => 1"
        assert socket.params("Runtime.callFunctionOn") == []


# ── expose_function ─────────────────────────────────────────────


class TestExposeFunction:
    @pytest.mark.asyncio
    async def test_registers_binding_and_script(self, page, socket):
        socket.handle("Page.addScriptToEvaluateOnNewDocument", result={"identifier": "S1"})
        await page.expose_function("compute", lambda a, b: a * b)
        assert socket.params("Runtime.addBinding") == [{"name": BINDING_NAME}]
        source = socket.params("Page.addScriptToEvaluateOnNewDocument")[0]["source"]
        assert '"compute"' in source
        # Installed into the current document as well.
        installs = socket.params("Runtime.evaluate")
        assert installs[-1]["expression"] == source
        assert installs[-1]["contextId"] == MAIN_CONTEXT_ID
        assert page._bridge._callables["compute"].script_id == "S1"

    @pytest.mark.asyncio
    async def test_call_delivers_result(self, page, socket):
        await page.expose_function("compute", lambda a, b: a * b)
        _binding_call(socket, "compute", 1, [9, 4])
        await flush()
        assert _deliveries(socket) == [
            [{"value": "compute"}, {"value": 1}, {"value": 36}, {"value": None}]
        ]

    @pytest.mark.asyncio
    async def test_async_host_function(self, page, socket):
        async def compute(a, b):
            await asyncio.sleep(0)
            return a + b

        await page.expose_function("add", compute)
        _binding_call(socket, "add", 3, [2, 5])
        await flush()
        assert _deliveries(socket)[0][1:3] == [{"value": 3}, {"value": 7}]

    @pytest.mark.asyncio
    async def test_future_result(self, page, socket):
        future = asyncio.get_running_loop().create_future()
        await page.expose_function("later", lambda: future)
        _binding_call(socket, "later", 1, [])
        await flush()
        assert _deliveries(socket) == []
        future.set_result("done")
        await flush()
        assert _deliveries(socket)[0][2] == {"value": "done"}

    @pytest.mark.asyncio
    async def test_host_exception_rejects(self, page, socket):
        def explode():
            raise ValueError("boom")

        await page.expose_function("explode", explode)
        _binding_call(socket, "explode", 1, [])
        await flush()
        (args,) = _deliveries(socket)
        assert args[2] == {"value": None}
        assert args[3]["value"]["message"] == "boom"
        assert "ValueError" in args[3]["value"]["stack"]

    @pytest.mark.asyncio
    async def test_evaluate_from_host_function(self, page, socket):
        socket.handle("Runtime.evaluate", result=_value(2))

        async def reenter():
            return await page.evaluate("1 + 1")

        await page.expose_function("reenter", reenter)
        _binding_call(socket, "reenter", 1, [])
        await flush()
        assert _deliveries(socket)[0][2] == {"value": 2}

    @pytest.mark.asyncio
    async def test_survives_navigation(self, page, socket):
        await page.expose_function("compute", lambda a: a * 2)
        socket.emit("Runtime.executionContextsCleared")
        socket.emit(
            "Runtime.executionContextCreated",
            {"context": {"id": 5, "auxData": {"frameId": MAIN_FRAME_ID, "isDefault": True}}},
        )
        _binding_call(socket, "compute", 1, [21], context_id=5)
        await flush()
        deliveries = [
            params
            for params in socket.params("Runtime.callFunctionOn")
            if params["functionDeclaration"] == _DELIVER_FUNCTION
        ]
        assert deliveries[0]["executionContextId"] == 5
        assert deliveries[0]["arguments"][2] == {"value": 42}

    @pytest.mark.asyncio
    async def test_duplicate_name(self, page, socket):
        await page.expose_function("compute", lambda: 1)
        await page.expose_function("other", lambda: 2)
        with pytest.raises(PageDriverError, match="already exists"):
            await page.expose_function("compute", lambda: 3)
        assert len(socket.params("Runtime.addBinding")) == 1
        assert page._bridge.exposed_names == ["compute", "other"]

    @pytest.mark.asyncio
    async def test_failed_registration_can_be_retried(self, page, socket):
        socket.handle("Runtime.addBinding", lambda params: FakeError("Target closed"))
        with pytest.raises(ProtocolError, match="Target closed"):
            await page.expose_function("mul", lambda a, b: a * b)
        assert page._bridge.exposed_names == []

        socket.handle("Runtime.addBinding")
        await page.expose_function("mul", lambda a, b: a * b)
        assert page._bridge.exposed_names == ["mul"]
        assert len(socket.params("Runtime.addBinding")) == 2

    @pytest.mark.asyncio
    async def test_unknown_and_foreign_bindings_are_ignored(self, page, socket):
        await page.expose_function("compute", lambda: 1)
        _binding_call(socket, "missing", 1, [])
        socket.emit("Runtime.bindingCalled", {"name": "other", "payload": "{}", "executionContextId": 1})
        await flush()
        assert _deliveries(socket) == []

    @pytest.mark.asyncio
    async def test_delivery_to_dead_context_is_dropped(self, page, socket, caplog):
        await page.expose_function("compute", lambda: 1)
        socket.handle(
            "Runtime.callFunctionOn",
            lambda params: FakeError("Cannot find context with specified id"),
        )
        _binding_call(socket, "compute", 1, [])
        await flush()
        assert len(_deliveries(socket)) == 1
        assert "Background task failed" not in caplog.text
