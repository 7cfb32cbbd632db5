"""Tests for request routing and tool invocation."""

import asyncio
import json
import threading

import pytest

from mcp_bridge.mcp.dispatcher import Dispatcher, descriptor_timeout, failure_to_error
from mcp_bridge.mcp.errors import (
    HANDSHAKE_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SESSION_NOT_READY,
    TOOL_EXECUTION_ERROR,
    TOOL_TIMEOUT,
    ErrorKind,
    HandlerFailure,
    InvalidArguments,
)
from mcp_bridge.mcp.models import (
    ErrorObject,
    ServerInfo,
    ToolDescriptor,
    ToolFailure,
    ToolParameter,
)
from mcp_bridge.mcp.registry import ToolRegistry
from mcp_bridge.mcp.session import Session


def make_dispatcher(*descriptors: ToolDescriptor, timeout: float | None = 5.0) -> Dispatcher:
    registry = ToolRegistry()
    for descriptor in descriptors:
        registry.register(descriptor)
    registry.freeze()
    return Dispatcher(registry, ServerInfo(name="test", version="0"), handler_timeout=timeout)


async def call(dispatcher, session, method, params=None, id=1):
    frame = json.dumps({"jsonrpc": "2.0", "id": id, "method": method, "params": params or {}})
    return await dispatcher.handle_frame(session, frame)


class TestHandshake:
    @pytest.mark.asyncio
    async def test_initialize(self, dispatcher, session):
        response = await call(
            dispatcher,
            session,
            "initialize",
            {"protocolVersion": "2024-11-05", "clientInfo": {"name": "test"}},
        )

        assert response.id == 1
        assert response.result["protocolVersion"] == "2024-11-05"
        assert response.result["serverInfo"]["name"] == "mcp-bridge-test"
        assert response.result["sessionId"] == session.session_id
        assert "tools" in response.result["capabilities"]

    @pytest.mark.asyncio
    async def test_tool_before_handshake_is_rejected(self, dispatcher, session):
        response = await call(dispatcher, session, "echo", {"text": "hi"})

        assert response.error.code == SESSION_NOT_READY
        assert response.error.kind == ErrorKind.SESSION_NOT_READY.value
        assert not session.is_ready

    @pytest.mark.asyncio
    async def test_repeated_initialize_is_rejected(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "initialize", {}, id=2)
        assert response.error.code == INVALID_REQUEST
        assert ready_session.is_ready

    @pytest.mark.asyncio
    async def test_unsupported_version(self, dispatcher, session):
        response = await call(dispatcher, session, "initialize", {"protocolVersion": "0.1"})
        assert response.error.code == HANDSHAKE_ERROR
        assert session.is_closed

    @pytest.mark.asyncio
    async def test_initialized_notification_has_no_response(self, dispatcher, ready_session):
        frame = '{"jsonrpc": "2.0", "method": "notifications/initialized"}'
        assert await dispatcher.handle_frame(ready_session, frame) is None

    @pytest.mark.asyncio
    async def test_ping_works_before_handshake(self, dispatcher, session):
        response = await call(dispatcher, session, "ping")
        assert response.result == {}

    @pytest.mark.asyncio
    async def test_shutdown_closes_session(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "shutdown", id=5)
        assert response.result == {}
        assert ready_session.is_closed

        response = await call(dispatcher, ready_session, "echo", {"text": "late"}, id=6)
        assert response.error.code == SESSION_NOT_READY


class TestInvocation:
    @pytest.mark.asyncio
    async def test_echo(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "echo", {"text": "hi"})

        assert response.id == 1
        assert response.result == "hi"
        assert response.error is None

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "vanish", {}, id=2)

        assert response.id == 2
        assert response.error.code == METHOD_NOT_FOUND
        assert response.error.kind == ErrorKind.TOOL_NOT_FOUND.value
        assert "vanish" in response.error.message

    @pytest.mark.asyncio
    async def test_missing_argument(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "echo", {}, id=3)

        assert response.error.code == INVALID_PARAMS
        violations = response.error.data["violations"]
        assert [v["parameter"] for v in violations] == ["text"]
        assert violations[0]["reason"] == "missing"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_handler_failure(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "sleep", {"seconds": 1000})

        assert response.error.code == TOOL_EXECUTION_ERROR
        assert response.error.data["kind"] == "HandlerFailure"
        assert response.error.data["tool"] == "sleep"
        assert response.error.data["exception"] == "ValueError"
        assert response.error.data["message"] == "seconds must be at most 60, got 1000"

    @pytest.mark.asyncio
    async def test_exception_message_survives_in_detail(self):
        async def broken(args):
            raise RuntimeError("database unreachable")

        dispatcher = make_dispatcher(ToolDescriptor(name="broken", handler=broken))
        response = await call(dispatcher, Session(implicit=True), "broken")

        assert response.error.code == TOOL_EXECUTION_ERROR
        assert response.error.data["exception"] == "RuntimeError"
        assert response.error.data["message"] == "database unreachable"

    @pytest.mark.asyncio
    async def test_reported_failure(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "sleep", {"seconds": -1})

        assert response.error.code == TOOL_EXECUTION_ERROR
        assert response.error.message == "seconds must not be negative"
        assert response.error.data["seconds"] == -1
        assert response.error.data["message"] == "seconds must not be negative"

    @pytest.mark.asyncio
    async def test_sync_handler(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "add", {"a": 2, "b": 0.5})
        assert response.result == 2.5

    @pytest.mark.asyncio
    async def test_sync_handler_runs_off_the_event_loop(self):
        seen = []

        def blocking(args):
            seen.append(threading.current_thread() is threading.main_thread())
            return "done"

        dispatcher = make_dispatcher(ToolDescriptor(name="blocking", handler=blocking))
        session = Session(implicit=True)
        response = await call(dispatcher, session, "blocking")

        assert response.result == "done"
        assert seen == [False]

    @pytest.mark.asyncio
    async def test_handler_bridge_error_passes_through(self):
        async def strict(args):
            raise InvalidArguments(
                [{"parameter": "x", "reason": "type", "message": "x must be even"}]
            )

        dispatcher = make_dispatcher(ToolDescriptor(name="strict", handler=strict))
        response = await call(dispatcher, Session(implicit=True), "strict")
        assert response.error.code == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_unserializable_result(self):
        async def leaky(args):
            return object()

        dispatcher = make_dispatcher(ToolDescriptor(name="leaky", handler=leaky))
        response = await call(dispatcher, Session(implicit=True), "leaky")

        assert response.error.code == TOOL_EXECUTION_ERROR
        assert "JSON-serializable" in response.error.message

    @pytest.mark.asyncio
    async def test_non_finite_result_is_a_handler_failure(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "add", {"a": 1e308, "b": 1e308})

        assert response.error.code == TOOL_EXECUTION_ERROR
        assert response.error.data["tool"] == "add"

    @pytest.mark.asyncio
    async def test_nan_argument_is_a_parse_error(self, dispatcher, ready_session):
        frame = '{"jsonrpc": "2.0", "id": 3, "method": "add", "params": {"a": NaN, "b": 1}}'
        response = await dispatcher.handle_frame(ready_session, frame)

        assert response.error.code == PARSE_ERROR
        assert response.result is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        finished = asyncio.Event()

        async def slow(args):
            await asyncio.sleep(10)
            finished.set()

        dispatcher = make_dispatcher(ToolDescriptor(name="slow", handler=slow), timeout=0.05)
        session = Session(implicit=True)
        response = await call(dispatcher, session, "slow")

        assert response.error.code == TOOL_TIMEOUT
        assert response.error.data["tool"] == "slow"
        assert session.in_flight == {}
        assert not finished.is_set()

    @pytest.mark.asyncio
    async def test_per_tool_timeout_overrides_default(self):
        async def slow(args):
            await asyncio.sleep(10)

        descriptor = ToolDescriptor(name="slow", handler=slow, timeout=0.05)
        dispatcher = make_dispatcher(descriptor, timeout=None)
        response = await call(dispatcher, Session(implicit=True), "slow")
        assert response.error.code == TOOL_TIMEOUT

    @pytest.mark.asyncio
    async def test_concurrent_invocations_do_not_interfere(self, dispatcher, ready_session):
        responses = await asyncio.gather(
            call(dispatcher, ready_session, "echo", {"text": "a"}, id=1),
            call(dispatcher, ready_session, "echo", {"text": "b"}, id=2),
        )
        assert [(r.id, r.result) for r in responses] == [(1, "a"), (2, "b")]


class TestToolsMethods:
    @pytest.mark.asyncio
    async def test_tools_list(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "tools/list")

        names = [tool["name"] for tool in response.result["tools"]]
        assert names == ["ping", "echo", "sleep", "add"]
        echo = response.result["tools"][1]
        assert echo["inputSchema"]["required"] == ["text"]

    @pytest.mark.asyncio
    async def test_tools_call_wraps_value(self, dispatcher, ready_session):
        response = await call(
            dispatcher, ready_session, "tools/call", {"name": "echo", "arguments": {"text": "hi"}}
        )

        assert response.result == {
            "content": [{"type": "text", "text": "hi"}],
            "isError": False,
            "structuredContent": "hi",
        }

    @pytest.mark.asyncio
    async def test_tools_call_structured_value(self, dispatcher, ready_session):
        response = await call(
            dispatcher, ready_session, "tools/call", {"name": "sleep", "arguments": {"seconds": 0}}
        )
        assert response.result["structuredContent"] == {"slept": 0}
        assert json.loads(response.result["content"][0]["text"]) == {"slept": 0}

    @pytest.mark.asyncio
    async def test_tools_call_without_name(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "tools/call", {"arguments": {}})
        assert response.error.code == INVALID_PARAMS
        assert response.error.data["violations"][0]["parameter"] == "name"

    @pytest.mark.asyncio
    async def test_tools_call_unknown_tool(self, dispatcher, ready_session):
        response = await call(dispatcher, ready_session, "tools/call", {"name": "vanish"})
        assert response.error.code == METHOD_NOT_FOUND


class TestMalformedFrames:
    @pytest.mark.asyncio
    async def test_unparseable_frame(self, dispatcher, ready_session):
        response = await dispatcher.handle_frame(ready_session, "{oops")
        assert response.id is None
        assert response.error.code == PARSE_ERROR
        assert ready_session.is_ready

    @pytest.mark.asyncio
    async def test_recovered_id_is_echoed(self, dispatcher, ready_session):
        response = await dispatcher.handle_frame(
            ready_session, '{"jsonrpc": "2.0", "id": 4, "method": "echo", "params": 3}'
        )
        assert response.id == 4
        assert response.error.kind == ErrorKind.MALFORMED_MESSAGE.value

    @pytest.mark.asyncio
    async def test_unknown_notification_is_ignored(self, dispatcher, ready_session):
        frame = '{"jsonrpc": "2.0", "method": "echo", "params": {"text": "x"}}'
        assert await dispatcher.handle_frame(ready_session, frame) is None


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_request_gets_no_response(self, dispatcher, ready_session):
        pending = asyncio.create_task(
            call(dispatcher, ready_session, "sleep", {"seconds": 5}, id=42)
        )
        while 42 not in ready_session.in_flight:
            await asyncio.sleep(0.01)

        await dispatcher.handle_frame(
            ready_session,
            json.dumps({
                "jsonrpc": "2.0",
                "method": "notifications/cancelled",
                "params": {"requestId": 42, "reason": "user"},
            }),
        )

        assert await asyncio.wait_for(pending, timeout=1.0) is None
        assert ready_session.in_flight == {}

    @pytest.mark.asyncio
    async def test_cancelling_unknown_request_is_harmless(self, dispatcher, ready_session):
        frame = '{"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": 99}}'
        assert await dispatcher.handle_frame(ready_session, frame) is None


class TestHelpers:
    def test_failure_to_error_defaults_to_handler_failure(self):
        error = failure_to_error(ErrorObject(message="nope"))
        assert isinstance(error, HandlerFailure)
        assert error.data == {"message": "nope"}

    def test_failure_to_error_keeps_non_mapping_detail(self):
        error = failure_to_error(ErrorObject(message="nope", detail=[1, 2]))
        assert error.data == {"message": "nope", "detail": [1, 2]}

    def test_failure_to_error_keeps_violations(self):
        failure = ToolFailure(
            error=ErrorObject(
                kind=ErrorKind.INVALID_ARGUMENTS,
                message="bad",
                detail=[{"parameter": "x", "reason": "type", "message": "x"}],
            )
        )
        error = failure_to_error(failure.error)
        assert isinstance(error, InvalidArguments)
        assert error.violations[0]["parameter"] == "x"

    @pytest.mark.parametrize(
        "tool_timeout, default, expected",
        [(None, 30.0, 30.0), (2.0, 30.0, 2.0), (0, 30.0, None), (None, None, None)],
    )
    def test_descriptor_timeout(self, tool_timeout, default, expected):
        descriptor = ToolDescriptor(
            name="t",
            handler=lambda args: None,
            parameters=(ToolParameter(name="x", required=False),),
            timeout=tool_timeout,
        )
        assert descriptor_timeout(descriptor, default) == expected
