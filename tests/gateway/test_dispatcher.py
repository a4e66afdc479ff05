# -*- coding: utf-8 -*-
"""
Dispatcher 契约测试

核心契约:
1. 未注册的工具/资源/提示词 → METHOD_NOT_FOUND，响应中没有 result
2. 守卫返回假值时，拦截器与 handler 均不执行，响应为授权错误
3. 拦截器 [A, B] 的执行顺序: A-before, B-before, H, B-after, A-after
4. 资源模板变量提取；段数不同不匹配
5. 批量请求响应数量与顺序一致，成员之间相互隔离
6. 通知不产生响应，但副作用照常发生
7. tools/list 幂等
8. 端到端: add(5, 3) → "8"
"""

import asyncio
import logging

import pytest
from pydantic import BaseModel, Field

from mcpkit.gateway.correlation_id import get_current_correlation_id
from mcpkit.gateway.dispatcher import MCP_PROTOCOL_VERSION, Dispatcher
from mcpkit.gateway.error_codes import McpErrorCode
from mcpkit.gateway.exceptions import McpError, UnauthorizedError
from mcpkit.gateway.guards import PermissionGuard
from mcpkit.gateway.interceptors import ErrorMappingInterceptor
from mcpkit.gateway.registry import CapabilityRegistry
from tests.gateway.fakes import (
    TEST_CORRELATION_ID,
    RecordingInterceptor,
    StaticGuard,
    call_tool,
    make_request,
)


def _assert_error(response, code):
    assert "result" not in response
    assert response["error"]["code"] == code
    return response["error"]


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_add_tool(self, dispatcher):
        response = await dispatcher.handle(call_tool("add", {"a": 5, "b": 3}))

        assert response == {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {"content": [{"type": "text", "text": "8"}]},
        }

    @pytest.mark.asyncio
    async def test_async_tool(self, dispatcher):
        response = await dispatcher.handle(call_tool("echo", {"text": "你好"}))
        assert response["result"]["content"][0]["text"] == "你好"

    @pytest.mark.asyncio
    async def test_raw_json_text_payload(self, dispatcher):
        response = await dispatcher.handle(
            '{"jsonrpc": "2.0", "id": "req-1", "method": "tools/call",'
            ' "params": {"name": "add", "arguments": {"a": 1, "b": 2}}}'
        )
        assert response["id"] == "req-1"
        assert response["result"]["content"][0]["text"] == "3"

    @pytest.mark.asyncio
    async def test_dispatcher_seals_registry(self, registry):
        Dispatcher(registry)
        assert registry.sealed


class TestResolutionErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_body,message",
        [
            (call_tool("nope"), "Tool not found: nope"),
            (make_request("resources/read", {"uri": "file:///a/b"}), "Resource not found: file:///a/b"),
            (make_request("prompts/get", {"name": "nope"}), "Prompt not found: nope"),
            (make_request("tools/unknown"), "Method not found: tools/unknown"),
        ],
    )
    async def test_unknown_target_is_method_not_found(self, dispatcher, request_body, message):
        response = await dispatcher.handle(request_body)

        error = _assert_error(response, McpErrorCode.METHOD_NOT_FOUND)
        assert error["message"] == message
        assert error["data"]["category"] == "protocol"
        assert error["data"]["reason"] == "METHOD_NOT_FOUND"
        assert response["id"] == 1

    @pytest.mark.asyncio
    async def test_not_found_details_list_known_targets(self, dispatcher):
        response = await dispatcher.handle(call_tool("nope"))
        details = response["error"]["data"]["details"]
        assert details["tool"] == "nope"
        assert details["available_tools"] == ["add", "echo"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_body,message",
        [
            (make_request("tools/call", {}), "Tool name is required"),
            (make_request("resources/read", {}), "Resource URI is required"),
            (make_request("prompts/get", {"name": ""}), "Prompt name is required"),
        ],
    )
    async def test_missing_target_is_invalid_params(self, dispatcher, request_body, message):
        response = await dispatcher.handle(request_body)

        error = _assert_error(response, McpErrorCode.INVALID_PARAMS)
        assert error["message"] == message
        assert error["data"]["reason"] == "MISSING_REQUIRED_PARAM"


class TestEnvelopeValidation:
    @pytest.mark.asyncio
    async def test_invalid_json_text(self, dispatcher):
        response = await dispatcher.handle("{not json")

        error = _assert_error(response, McpErrorCode.PARSE_ERROR)
        assert response["id"] is None
        assert error["data"]["reason"] == "PARSE_ERROR"

    @pytest.mark.asyncio
    async def test_missing_method_echoes_id(self, dispatcher):
        response = await dispatcher.handle({"jsonrpc": "2.0", "id": 3})

        error = _assert_error(response, McpErrorCode.INVALID_REQUEST)
        assert response["id"] == 3
        assert error["message"].startswith("Invalid Request:")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"jsonrpc": "2.0", "id": 5, "method": ""},
            {"jsonrpc": "1.0", "id": 5, "method": "ping"},
            {"jsonrpc": "2.0", "id": 5, "method": "ping", "params": [1, 2]},
            {"jsonrpc": "2.0", "id": 5, "method": 42},
        ],
    )
    async def test_malformed_envelope(self, dispatcher, body):
        response = await dispatcher.handle(body)
        _assert_error(response, McpErrorCode.INVALID_REQUEST)
        assert response["id"] == 5

    @pytest.mark.asyncio
    async def test_invalid_id_type_becomes_null(self, dispatcher):
        response = await dispatcher.handle({"jsonrpc": "2.0", "id": True, "method": "ping"})
        _assert_error(response, McpErrorCode.INVALID_REQUEST)
        assert response["id"] is None

    @pytest.mark.asyncio
    async def test_missing_jsonrpc_version_tolerated(self, dispatcher):
        response = await dispatcher.handle({"id": 9, "method": "ping"})
        assert response == {"jsonrpc": "2.0", "id": 9, "result": {}}

    @pytest.mark.asyncio
    async def test_empty_batch(self, dispatcher):
        response = await dispatcher.handle([])
        assert isinstance(response, dict)
        _assert_error(response, McpErrorCode.INVALID_REQUEST)
        assert response["error"]["message"] == "Invalid Request: empty batch"


class TestGuards:
    @pytest.mark.asyncio
    async def test_denied_guard_skips_interceptors_and_handler(self):
        events = []
        handler_calls = []
        guard = StaticGuard(False)
        interceptor = RecordingInterceptor("A", events)

        def secret():
            handler_calls.append(1)
            return "secret"

        registry = CapabilityRegistry()
        registry.register_tool("secret", secret, guards=[guard], interceptors=[interceptor])
        response = await Dispatcher(registry).handle(call_tool("secret"))

        error = _assert_error(response, McpErrorCode.FORBIDDEN)
        assert error["message"] == "Guard StaticGuard denied access"
        assert error["data"]["category"] == "business"
        assert error["data"]["reason"] == "FORBIDDEN"
        assert guard.calls == 1
        assert interceptor.calls == 0
        assert events == []
        assert handler_calls == []

    @pytest.mark.asyncio
    async def test_guard_exception_rendered_as_is(self):
        def require_login(context):
            raise UnauthorizedError("API key required")

        registry = CapabilityRegistry()
        registry.register_tool("t", lambda: "ok", guards=[require_login])
        response = await Dispatcher(registry).handle(call_tool("t"))

        error = _assert_error(response, McpErrorCode.UNAUTHORIZED)
        assert error["message"] == "API key required"

    @pytest.mark.asyncio
    async def test_protocol_error_data_rendered_as_is(self):
        registry = CapabilityRegistry()
        registry.register_tool(
            "admin_only",
            lambda: "ok",
            guards=[PermissionGuard()],
            metadata={"permission": "admin"},
        )
        response = await Dispatcher(registry).handle(
            make_request("tools/call", {"name": "admin_only", "permissions": ["read"]})
        )

        error = _assert_error(response, McpErrorCode.FORBIDDEN)
        assert error["data"] == {"required": "admin", "provided": ["read"]}

    @pytest.mark.asyncio
    async def test_guard_sees_execution_context(self):
        seen = {}

        async def inspect_guard(context):
            seen["kind"] = context.kind.value
            seen["name"] = context.name
            seen["method"] = context.method
            seen["arguments"] = dict(context.arguments)
            seen["permission"] = context.get_metadata("permission")
            return True

        registry = CapabilityRegistry()
        registry.register_tool(
            "t", lambda x: x, guards=[inspect_guard], metadata={"permission": "p"}
        )
        await Dispatcher(registry).handle(call_tool("t", {"x": 1}))

        assert seen == {
            "kind": "tool",
            "name": "t",
            "method": "tools/call",
            "arguments": {"x": 1},
            "permission": "p",
        }

    @pytest.mark.asyncio
    async def test_guard_runs_before_argument_validation(self):
        registry = CapabilityRegistry()
        registry.register_tool("t", lambda a: a, guards=[StaticGuard(False)])
        response = await Dispatcher(registry).handle(call_tool("t", {"unexpected": 1}))
        _assert_error(response, McpErrorCode.FORBIDDEN)


class TestInterceptors:
    @pytest.mark.asyncio
    async def test_onion_order(self):
        events = []

        def handler():
            events.append("H")
            return "done"

        registry = CapabilityRegistry()
        registry.register_tool(
            "t",
            handler,
            interceptors=[RecordingInterceptor("A", events), RecordingInterceptor("B", events)],
        )
        response = await Dispatcher(registry).handle(call_tool("t"))

        assert response["result"]["content"][0]["text"] == "done"
        assert events == ["A:before", "B:before", "H", "B:after", "A:after"]

    @pytest.mark.asyncio
    async def test_outer_interceptor_observes_inner_failure(self):
        events = []

        async def outer(context, call_next):
            events.append("A:before")
            try:
                return await call_next()
            except RuntimeError as e:
                events.append(f"A:saw {e}")
                raise

        async def inner(context, call_next):
            events.append("B:before")
            try:
                return await call_next()
            except RuntimeError:
                events.append("B:rethrow")
                raise

        def handler():
            events.append("H")
            raise RuntimeError("boom")

        registry = CapabilityRegistry()
        registry.register_tool("t", handler, interceptors=[outer, inner])
        response = await Dispatcher(registry).handle(call_tool("t"))

        error = _assert_error(response, McpErrorCode.INTERNAL_ERROR)
        assert error["message"] == "boom"
        assert events == ["A:before", "B:before", "H", "B:rethrow", "A:saw boom"]

    @pytest.mark.asyncio
    async def test_error_mapping_interceptor(self):
        def handler():
            raise PermissionError("permission denied for report")

        registry = CapabilityRegistry()
        registry.register_tool("t", handler, interceptors=[ErrorMappingInterceptor()])
        response = await Dispatcher(registry).handle(call_tool("t"))

        error = _assert_error(response, McpErrorCode.FORBIDDEN)
        assert error["message"] == "permission denied for report"


class TestErrorRendering:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exc,code",
        [
            (ValueError("invalid input"), McpErrorCode.INVALID_PARAMS),
            (LookupError("user not found"), McpErrorCode.METHOD_NOT_FOUND),
            (RuntimeError("boom"), McpErrorCode.INTERNAL_ERROR),
        ],
    )
    async def test_fallback_mapper_classifies_handler_failure(self, exc, code):
        def handler():
            raise exc

        registry = CapabilityRegistry()
        registry.register_tool("t", handler)
        response = await Dispatcher(registry).handle(call_tool("t"))
        _assert_error(response, code)

    @pytest.mark.asyncio
    async def test_custom_error_mapper(self):
        def mapper(error):
            return McpError(-32050, f"custom: {type(error).__name__}")

        def handler():
            raise KeyError("x")

        registry = CapabilityRegistry()
        registry.register_tool("t", handler)
        response = await Dispatcher(registry, error_mapper=mapper).handle(call_tool("t"))

        error = _assert_error(response, -32050)
        assert error["message"] == "custom: KeyError"
        assert error["data"]["reason"] == "APPLICATION_ERROR"

    @pytest.mark.asyncio
    async def test_failing_mapper_degrades_to_internal_error(self):
        def mapper(error):
            raise RuntimeError("mapper broke")

        def handler():
            raise ValueError("invalid")

        registry = CapabilityRegistry()
        registry.register_tool("t", handler)
        response = await Dispatcher(registry, error_mapper=mapper).handle(call_tool("t"))

        error = _assert_error(response, McpErrorCode.INTERNAL_ERROR)
        assert error["message"] == "Internal error"

    @pytest.mark.asyncio
    async def test_secrets_redacted_from_error_message(self):
        def handler():
            raise RuntimeError("connect failed: postgresql://admin:hunter2@db:5432/app")

        registry = CapabilityRegistry()
        registry.register_tool("t", handler)
        response = await Dispatcher(registry).handle(call_tool("t"))

        assert "hunter2" not in response["error"]["message"]
        assert "[REDACTED]" in response["error"]["message"]

    @pytest.mark.asyncio
    async def test_correlation_id_in_error_data(self, dispatcher):
        response = await dispatcher.handle(call_tool("nope"), TEST_CORRELATION_ID)
        assert response["error"]["data"]["correlation_id"] == TEST_CORRELATION_ID

    @pytest.mark.asyncio
    async def test_correlation_id_visible_to_handler(self):
        seen = []

        def handler():
            seen.append(get_current_correlation_id())
            return "ok"

        registry = CapabilityRegistry()
        registry.register_tool("t", handler)
        await Dispatcher(registry).handle(call_tool("t"), TEST_CORRELATION_ID)

        assert seen == [TEST_CORRELATION_ID]
        assert get_current_correlation_id() is None


class TestArguments:
    @pytest.mark.asyncio
    async def test_signature_mismatch(self, dispatcher):
        response = await dispatcher.handle(call_tool("add", {"a": 1}))

        error = _assert_error(response, McpErrorCode.INVALID_PARAMS)
        assert error["message"].startswith("Invalid tool arguments:")

    @pytest.mark.asyncio
    async def test_arguments_must_be_object(self, dispatcher):
        response = await dispatcher.handle(
            make_request("tools/call", {"name": "add", "arguments": [5, 3]})
        )
        error = _assert_error(response, McpErrorCode.INVALID_PARAMS)
        assert error["message"] == "Invalid tool arguments: arguments must be an object"

    @pytest.mark.asyncio
    async def test_args_model_validation(self):
        class SearchArgs(BaseModel):
            query: str
            limit: int = 5

        def search(query: str, limit: int):
            return {"query": query, "limit": limit}

        registry = CapabilityRegistry()
        registry.register_tool("search", search, args_model=SearchArgs)
        dispatcher = Dispatcher(registry)

        ok = await dispatcher.handle(call_tool("search", {"query": "mcp", "limit": "7"}))
        assert ok["result"]["content"][0]["text"] == '{"query": "mcp", "limit": 7}'

        bad = await dispatcher.handle(call_tool("search", {"limit": "many"}))
        error = _assert_error(bad, McpErrorCode.INVALID_PARAMS)
        assert error["message"].startswith("Invalid tool arguments:")
        locations = [item["loc"] for item in error["data"]["details"]["errors"]]
        assert ["query"] in locations
        assert ["limit"] in locations

    @pytest.mark.asyncio
    async def test_content_dict_passes_through(self):
        registry = CapabilityRegistry()
        registry.register_tool(
            "rich", lambda: {"content": [{"type": "text", "text": "x"}], "isError": False}
        )
        response = await Dispatcher(registry).handle(call_tool("rich"))
        assert response["result"] == {"content": [{"type": "text", "text": "x"}], "isError": False}


class TestResources:
    @pytest.mark.asyncio
    async def test_template_read_extracts_variables(self, registry):
        captured = {}

        @registry.resource_template("notes:///{filename}")
        def notes(uri, variables):
            captured.update(uri=uri, variables=variables)
            return "# notes"

        response = await Dispatcher(registry).handle(
            make_request("resources/read", {"uri": "notes:///notes.md"})
        )

        assert captured == {"uri": "notes:///notes.md", "variables": {"filename": "notes.md"}}
        assert response["result"] == {
            "contents": [{"uri": "notes:///notes.md", "mimeType": "text/plain", "text": "# notes"}]
        }

    @pytest.mark.asyncio
    async def test_segment_count_mismatch_not_found(self, dispatcher):
        response = await dispatcher.handle(
            make_request("resources/read", {"uri": "file:///a/b"})
        )
        _assert_error(response, McpErrorCode.METHOD_NOT_FOUND)

    @pytest.mark.asyncio
    async def test_static_resource_json_content(self, dispatcher):
        response = await dispatcher.handle(make_request("resources/read", {"uri": "config://app"}))
        assert response["result"] == {
            "contents": [
                {"uri": "config://app", "mimeType": "application/json", "text": '{"debug": false}'}
            ]
        }

    @pytest.mark.asyncio
    async def test_template_with_literal_suffix(self, dispatcher):
        response = await dispatcher.handle(
            make_request("resources/read", {"uri": "user:///u-7/profile"})
        )
        assert response["result"]["contents"][0]["text"] == '{"id": "u-7"}'

    @pytest.mark.asyncio
    async def test_template_variables_model(self):
        class OrderVariables(BaseModel):
            orderId: int = Field(..., gt=0)

        calls = []

        def order(uri, variables):
            calls.append(variables)
            return {"order": variables["orderId"]}

        registry = CapabilityRegistry()
        registry.register_resource_template(
            "orders:///{orderId}", order, variables_model=OrderVariables
        )
        dispatcher = Dispatcher(registry)

        ok = await dispatcher.handle(make_request("resources/read", {"uri": "orders:///42"}))
        assert ok["result"]["contents"][0]["text"] == '{"order": 42}'
        assert calls == [{"orderId": 42}]

        bad = await dispatcher.handle(make_request("resources/read", {"uri": "orders:///abc"}))
        error = _assert_error(bad, McpErrorCode.INVALID_PARAMS)
        assert error["message"].startswith("Invalid resource variables: orderId:")
        assert error["data"]["details"]["errors"][0]["loc"] == ["orderId"]
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_variables_validated_after_guards(self):
        class OrderVariables(BaseModel):
            orderId: int

        guard = StaticGuard(False)
        registry = CapabilityRegistry()
        registry.register_resource_template(
            "orders:///{orderId}",
            lambda uri, variables: "",
            variables_model=OrderVariables,
            guards=[guard],
        )
        response = await Dispatcher(registry).handle(
            make_request("resources/read", {"uri": "orders:///abc"})
        )
        _assert_error(response, McpErrorCode.FORBIDDEN)

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, dispatcher):
        response = await dispatcher.handle(
            make_request("resources/subscribe", {"uri": "file:///watched.txt"})
        )
        assert response["result"] == {}
        assert "file:///watched.txt" in dispatcher.subscriptions

        await dispatcher.handle(make_request("resources/unsubscribe", {"uri": "file:///watched.txt"}))
        assert dispatcher.subscriptions == frozenset()

    @pytest.mark.asyncio
    async def test_subscribe_unknown_uri(self, dispatcher):
        response = await dispatcher.handle(
            make_request("resources/subscribe", {"uri": "nothing://here"})
        )
        _assert_error(response, McpErrorCode.METHOD_NOT_FOUND)
        assert dispatcher.subscriptions == frozenset()


class TestPrompts:
    @pytest.mark.asyncio
    async def test_get_prompt(self, dispatcher):
        response = await dispatcher.handle(
            make_request("prompts/get", {"name": "greeting", "arguments": {"name": "Ada"}})
        )
        assert response["result"] == {
            "messages": [
                {"role": "user", "content": {"type": "text", "text": "Hello, Ada (plain)"}}
            ],
            "description": "问候语",
        }

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, dispatcher):
        response = await dispatcher.handle(make_request("prompts/get", {"name": "greeting"}))

        error = _assert_error(response, McpErrorCode.INVALID_PARAMS)
        assert error["message"] == "Missing required prompt argument: name"
        assert error["data"]["reason"] == "MISSING_REQUIRED_PARAM"

    @pytest.mark.asyncio
    async def test_message_list_passes_through(self):
        messages = [{"role": "assistant", "content": {"type": "text", "text": "hi"}}]
        registry = CapabilityRegistry()
        registry.register_prompt("p", lambda: messages, description="")
        response = await Dispatcher(registry).handle(make_request("prompts/get", {"name": "p"}))
        assert response["result"] == {"messages": messages}

    @pytest.mark.asyncio
    async def test_args_model_validation(self):
        class SummaryArgs(BaseModel):
            topic: str = Field(..., description="主题")
            max_words: int = 50

        def summary(topic: str, max_words: int):
            return f"Summarize {topic} in {max_words} words"

        registry = CapabilityRegistry()
        registry.register_prompt("summary", summary, args_model=SummaryArgs)
        dispatcher = Dispatcher(registry)

        ok = await dispatcher.handle(
            make_request(
                "prompts/get",
                {"name": "summary", "arguments": {"topic": "mcp", "max_words": "20"}},
            )
        )
        assert ok["result"]["messages"][0]["content"]["text"] == "Summarize mcp in 20 words"

        bad = await dispatcher.handle(
            make_request(
                "prompts/get",
                {"name": "summary", "arguments": {"topic": "mcp", "max_words": "many"}},
            )
        )
        error = _assert_error(bad, McpErrorCode.INVALID_PARAMS)
        assert error["message"].startswith("Invalid prompt arguments: max_words:")
        assert error["data"]["reason"] == "INVALID_PARAM_VALUE"


class TestListing:
    @pytest.mark.asyncio
    async def test_tools_list(self, dispatcher):
        response = await dispatcher.handle(make_request("tools/list"))
        tools = response["result"]["tools"]

        assert [tool["name"] for tool in tools] == ["add", "echo"]
        assert tools[0]["description"] == "两数相加"
        assert tools[0]["inputSchema"] == {
            "type": "object",
            "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
            "required": ["a", "b"],
        }
        assert tools[1]["description"] == "原样返回文本"
        assert "deprecated" not in tools[0]

    @pytest.mark.asyncio
    async def test_tools_list_is_idempotent(self, dispatcher):
        first = await dispatcher.handle(make_request("tools/list"))
        second = await dispatcher.handle(make_request("tools/list"))
        assert first == second

    @pytest.mark.asyncio
    async def test_guarded_tools_still_listed(self):
        registry = CapabilityRegistry()
        registry.register_tool("hidden", lambda: None, guards=[StaticGuard(False)])
        response = await Dispatcher(registry).handle(make_request("tools/list"))
        assert [tool["name"] for tool in response["result"]["tools"]] == ["hidden"]

    @pytest.mark.asyncio
    async def test_deprecated_tool_listed_and_warns(self, caplog):
        registry = CapabilityRegistry()
        registry.register_tool(
            "legacy", lambda: "still works", deprecated=True, deprecation_message="use modern"
        )
        dispatcher = Dispatcher(registry)

        listing = await dispatcher.handle(make_request("tools/list"))
        tool = listing["result"]["tools"][0]
        assert tool["deprecated"] is True
        assert tool["deprecationMessage"] == "use modern"

        with caplog.at_level(logging.WARNING, logger="mcpkit.gateway.dispatcher"):
            response = await dispatcher.handle(call_tool("legacy"))
        assert response["result"]["content"][0]["text"] == "still works"
        assert any("legacy" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_resource_and_prompt_versions_listed(self):
        class PromptArgs(BaseModel):
            topic: str = Field(..., description="主题")
            tone: str = "neutral"

        registry = CapabilityRegistry()
        registry.register_resource(
            "config://app", lambda uri, variables: {}, version="2.0", deprecated=True
        )
        registry.register_resource_template(
            "docs:///{page}",
            lambda uri, variables: "",
            version="1.1",
            deprecated=True,
            deprecation_message="use docs-v2",
        )
        registry.register_resource("config://flags", lambda uri, variables: {}, version="3")
        registry.register_prompt(
            "brief", lambda topic, tone: topic, args_model=PromptArgs, version="0.9"
        )
        dispatcher = Dispatcher(registry)

        resources = (await dispatcher.handle(make_request("resources/list")))["result"]
        assert resources["resources"][0]["version"] == "2.0"
        assert resources["resources"][0]["deprecated"] is True
        assert "deprecationMessage" not in resources["resources"][0]
        assert resources["resources"][1]["version"] == "3"
        assert "deprecated" not in resources["resources"][1]
        template = resources["resourceTemplates"][0]
        assert (template["version"], template["deprecated"], template["deprecationMessage"]) == (
            "1.1",
            True,
            "use docs-v2",
        )

        prompts = (await dispatcher.handle(make_request("prompts/list")))["result"]["prompts"]
        assert prompts == [
            {
                "name": "brief",
                "description": "",
                "arguments": [
                    {"name": "topic", "description": "主题", "required": True},
                    {"name": "tone", "required": False},
                ],
                "version": "0.9",
            }
        ]

    @pytest.mark.asyncio
    async def test_resources_list(self, dispatcher):
        response = await dispatcher.handle(make_request("resources/list"))
        result = response["result"]

        assert result["resources"] == [
            {
                "uri": "config://app",
                "name": "app_config",
                "description": "",
                "mimeType": "application/json",
            }
        ]
        assert [t["uriTemplate"] for t in result["resourceTemplates"]] == [
            "file:///{filename}",
            "user:///{userId}/profile",
        ]

    @pytest.mark.asyncio
    async def test_prompts_list(self, dispatcher):
        response = await dispatcher.handle(make_request("prompts/list"))
        assert response["result"]["prompts"] == [
            {
                "name": "greeting",
                "description": "问候语",
                "arguments": [
                    {"name": "name", "required": True},
                    {"name": "style", "required": False},
                ],
            }
        ]


class TestBatch:
    @pytest.mark.asyncio
    async def test_batch_order_preserved(self, dispatcher):
        response = await dispatcher.handle(
            [make_request("tools/list", request_id=1), make_request("resources/list", request_id=2)]
        )

        assert isinstance(response, list)
        assert [item["id"] for item in response] == [1, 2]
        assert "tools" in response[0]["result"]
        assert "resources" in response[1]["result"]

    @pytest.mark.asyncio
    async def test_member_failure_is_isolated(self, dispatcher):
        response = await dispatcher.handle(
            [
                call_tool("add", {"a": 1, "b": 1}, request_id="a"),
                call_tool("missing", request_id="b"),
                "not an object",
                call_tool("add", {"a": 2, "b": 2}, request_id="c"),
            ]
        )

        assert [item["id"] for item in response] == ["a", "b", None, "c"]
        assert response[0]["result"]["content"][0]["text"] == "2"
        assert response[1]["error"]["code"] == McpErrorCode.METHOD_NOT_FOUND
        assert response[2]["error"]["code"] == McpErrorCode.INVALID_REQUEST
        assert response[3]["result"]["content"][0]["text"] == "4"

    @pytest.mark.asyncio
    async def test_members_scheduled_concurrently(self):
        """一个成员挂起等待时，兄弟成员仍能推进"""
        released = asyncio.Event()

        async def wait_for_release():
            await released.wait()
            return "released"

        def release():
            released.set()
            return "ok"

        registry = CapabilityRegistry()
        registry.register_tool("wait", wait_for_release)
        registry.register_tool("release", release)
        dispatcher = Dispatcher(registry)

        response = await asyncio.wait_for(
            dispatcher.handle([call_tool("wait", request_id=1), call_tool("release", request_id=2)]),
            timeout=2.0,
        )
        assert [item["result"]["content"][0]["text"] for item in response] == ["released", "ok"]

    @pytest.mark.asyncio
    async def test_notifications_omitted_from_batch(self, dispatcher):
        response = await dispatcher.handle(
            [make_request("ping", request_id=None), make_request("ping", request_id=7)]
        )
        assert response == [{"jsonrpc": "2.0", "id": 7, "result": {}}]

    @pytest.mark.asyncio
    async def test_all_notification_batch_returns_none(self, dispatcher):
        response = await dispatcher.handle(
            [make_request("ping", request_id=None), make_request("initialized", request_id=None)]
        )
        assert response is None


class TestNotifications:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("explicit_null", [True, False])
    async def test_notification_runs_side_effects_without_response(self, explicit_null):
        calls = []

        def record(value: int):
            calls.append(value)

        registry = CapabilityRegistry()
        registry.register_tool("record", record)
        body = make_request("tools/call", {"name": "record", "arguments": {"value": 1}}, None)
        if explicit_null:
            body["id"] = None

        response = await Dispatcher(registry).handle(body)

        assert response is None
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_failed_notification_has_no_response(self, dispatcher):
        assert await dispatcher.handle(call_tool("missing", request_id=None)) is None


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize(self, dispatcher):
        response = await dispatcher.handle(
            make_request(
                "initialize",
                {"protocolVersion": MCP_PROTOCOL_VERSION, "clientInfo": {"name": "cli"}},
            )
        )

        assert response["result"] == {
            "protocolVersion": "2024-11-05",
            "capabilities": {
                "tools": {},
                "resources": {"subscribe": True},
                "prompts": {},
                "logging": {},
            },
            "serverInfo": {"name": "test-server", "version": "9.9.9"},
        }
        assert dispatcher.client_info == {"name": "cli"}

    @pytest.mark.asyncio
    async def test_initialize_with_instructions(self, registry):
        dispatcher = Dispatcher(registry, instructions="先调用 tools/list")
        response = await dispatcher.handle(make_request("initialize", {}))
        assert response["result"]["instructions"] == "先调用 tools/list"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["initialized", "notifications/initialized"])
    async def test_initialized_notification(self, dispatcher, method):
        assert not dispatcher.initialized
        assert await dispatcher.handle(make_request(method, request_id=None)) is None
        assert dispatcher.initialized

    @pytest.mark.asyncio
    async def test_ping(self, dispatcher):
        assert await dispatcher.handle(make_request("ping")) == {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {},
        }

    @pytest.mark.asyncio
    async def test_set_log_level(self, dispatcher):
        response = await dispatcher.handle(make_request("logging/setLevel", {"level": "error"}))
        assert response["result"] == {}
        assert logging.getLogger("mcpkit").level == logging.ERROR

    @pytest.mark.asyncio
    async def test_set_invalid_log_level(self, dispatcher):
        response = await dispatcher.handle(make_request("logging/setLevel", {"level": "verbose"}))
        error = _assert_error(response, McpErrorCode.INVALID_PARAMS)
        assert error["message"] == "Invalid log level: verbose"

    def test_method_table(self, dispatcher):
        for method in (
            "initialize",
            "initialized",
            "ping",
            "tools/list",
            "tools/call",
            "resources/list",
            "resources/read",
            "resources/subscribe",
            "resources/unsubscribe",
            "prompts/list",
            "prompts/get",
            "logging/setLevel",
        ):
            assert dispatcher.has_method(method)
        assert not dispatcher.has_method("tools/delete")
