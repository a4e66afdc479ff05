"""
MCP JSON-RPC 2.0 分发器

提供：
1. 单个请求与批量请求的解析、分发与响应渲染
2. MCP 协议方法 -> 内部处理器映射
3. 调用类方法（tools/call、resources/read、prompts/get）的目标解析、
   执行上下文构建、守卫链 → 拦截器链 → handler 执行
4. 统一错误渲染（McpError 原样渲染，其余经错误映射器归一化）

================================================================================
                              请求生命周期
================================================================================

    原始请求 → 解析(PARSE_ERROR/INVALID_REQUEST) → 方法解析(METHOD_NOT_FOUND)
        → 目标解析（工具/提示词按名称；资源先精确 URI，再按注册顺序匹配模板）
        → ExecutionContext → 守卫链 → 拦截器链 → handler
        → 结果包装 / 错误渲染 → JSON-RPC 响应

批量请求:
- 成员之间相互独立、并发调度（asyncio.gather），响应顺序与请求顺序一致
- 单个成员失败只影响它自己的响应条目
- 通知（id 缺失或为 null）照常执行副作用，但不产生响应条目

================================================================================
                          correlation_id 传递
================================================================================

HTTP 入口层传入 correlation_id（或由本模块生成），通过 contextvars 传递给
守卫/拦截器/handler，并写入错误响应 error.data.correlation_id。
"""

import asyncio
import base64
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Set, Type, Union

from pydantic import BaseModel, ValidationError

from mcpkit import __version__ as MCPKIT_VERSION

from .context import ExecutionContext
from .correlation_id import (
    normalize_correlation_id,
    reset_current_correlation_id,
    set_current_correlation_id,
)
from .error_codes import McpErrorCategory, McpErrorCode, McpErrorReason, error_profile_for_code
from .error_redaction import DEFAULT_PUBLIC_ERROR_MESSAGE
from .exceptions import McpError
from .interceptors import ErrorMapper, map_error
from .models import (
    ErrorData,
    JsonRpcRequest,
    JsonRpcResponse,
    PromptArgument,
    PromptDefinition,
    ResourceDefinition,
    ResourceTemplateDefinition,
    ToolDefinition,
    make_jsonrpc_error,
    make_jsonrpc_result,
    parse_jsonrpc_request,
)
from .pipeline import run_pipeline
from .registry import CapabilityRegistry, HandlerDescriptor

logger = logging.getLogger("mcpkit.gateway.dispatcher")

# MCP 协议版本（initialize 响应使用）
MCP_PROTOCOL_VERSION = "2024-11-05"

# MCP 日志级别 -> logging 级别
MCP_LOG_LEVELS: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}

# 单个已解码请求体 / 批量请求体 / 原始 JSON 文本
Payload = Union[Dict[str, Any], List[Any], str, bytes, bytearray]
WireResponse = Union[Dict[str, Any], List[Dict[str, Any]], None]

MethodHandler = Callable[[JsonRpcRequest, str], Awaitable[Any]]


async def _call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


def _version_fields(descriptor: HandlerDescriptor) -> Dict[str, Any]:
    """list 条目中的版本与废弃字段（未废弃时不输出 deprecated/deprecationMessage）"""
    return {
        "version": descriptor.version,
        "deprecated": True if descriptor.deprecated else None,
        "deprecationMessage": descriptor.deprecation_message if descriptor.deprecated else None,
    }


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, ensure_ascii=False, default=str)


def _validation_summary(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "loc": [str(item) for item in err.get("loc", ())],
            "msg": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]


# ===================== 结果包装 =====================


def normalize_tool_result(raw: Any) -> Dict[str, Any]:
    """
    包装工具返回值为 {"content": [...]}

    - 已含 content 的 dict 原样返回
    - str 作为文本内容
    - 其他值序列化为 JSON 文本
    """
    if isinstance(raw, dict) and "content" in raw:
        return raw
    return {"content": [{"type": "text", "text": _to_text(raw)}]}


def normalize_resource_result(
    raw: Any, uri: str, mime_type: Optional[str] = None
) -> Dict[str, Any]:
    """
    包装资源返回值为 {"contents": [...]}

    - 已含 contents 的 dict 原样返回
    - list 视为内容条目列表
    - 含 uri 与 text/blob 的 dict 视为单个内容条目
    - str 作为文本内容，bytes 以 base64 blob 返回
    - 其他值序列化为 JSON 文本
    """
    if isinstance(raw, dict) and "contents" in raw:
        return raw
    if isinstance(raw, list):
        return {"contents": raw}
    if isinstance(raw, dict) and "uri" in raw and ("text" in raw or "blob" in raw):
        return {"contents": [raw]}
    if isinstance(raw, (bytes, bytearray)):
        return {
            "contents": [
                {
                    "uri": uri,
                    "mimeType": mime_type or "application/octet-stream",
                    "blob": base64.b64encode(bytes(raw)).decode("ascii"),
                }
            ]
        }
    if isinstance(raw, str):
        return {"contents": [{"uri": uri, "mimeType": mime_type or "text/plain", "text": raw}]}
    return {
        "contents": [
            {"uri": uri, "mimeType": mime_type or "application/json", "text": _to_text(raw)}
        ]
    }


def normalize_prompt_result(raw: Any, description: str = "") -> Dict[str, Any]:
    """
    包装提示词返回值为 {"messages": [...]}

    - 已含 messages 的 dict 原样返回
    - list 视为消息列表
    - 其他值作为单条 user 文本消息
    """
    if isinstance(raw, dict) and "messages" in raw:
        return raw
    if isinstance(raw, list):
        messages = raw
    else:
        messages = [{"role": "user", "content": {"type": "text", "text": _to_text(raw)}}]
    result: Dict[str, Any] = {"messages": messages}
    if description:
        result["description"] = description
    return result


# ===================== 分发器 =====================


class Dispatcher:
    """
    MCP 请求分发器

    使用示例:
        registry = CapabilityRegistry()
        registry.register_tool("add", lambda a, b: a + b)

        dispatcher = Dispatcher(registry)
        response = await dispatcher.handle(
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call",
             "params": {"name": "add", "arguments": {"a": 5, "b": 3}}}
        )
        # {"jsonrpc": "2.0", "id": 1, "result": {"content": [{"type": "text", "text": "8"}]}}

    Args:
        registry: 能力注册表（构造时封存，之后只读）
        server_name / server_version: initialize 响应中的 serverInfo
        instructions: initialize 响应中的可选使用说明
        error_mapper: 兜底错误映射函数（没有拦截器处理的非 McpError 异常使用它归一化）
        log_namespace: logging/setLevel 作用的 logger 名称
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        server_name: str = "mcpkit-server",
        server_version: str = MCPKIT_VERSION,
        instructions: Optional[str] = None,
        error_mapper: Optional[ErrorMapper] = None,
        log_namespace: str = "mcpkit",
    ) -> None:
        self._registry = registry.seal()
        self._server_name = server_name
        self._server_version = server_version
        self._instructions = instructions
        self._error_mapper: ErrorMapper = error_mapper or map_error
        self._log_namespace = log_namespace

        # 会话级状态（非单次请求状态）
        self._initialized = False
        self._client_info: Optional[Dict[str, Any]] = None
        self._subscriptions: Set[str] = set()

        self._methods: Dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "initialized": self._mark_initialized,
            "notifications/initialized": self._mark_initialized,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "resources/list": self._resources_list,
            "resources/read": self._resources_read,
            "resources/subscribe": self._resources_subscribe,
            "resources/unsubscribe": self._resources_unsubscribe,
            "prompts/list": self._prompts_list,
            "prompts/get": self._prompts_get,
            "logging/setLevel": self._logging_set_level,
        }

    # ---------- 属性 ----------

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def server_name(self) -> str:
        return self._server_name

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def client_info(self) -> Optional[Dict[str, Any]]:
        return self._client_info

    @property
    def subscriptions(self) -> FrozenSet[str]:
        return frozenset(self._subscriptions)

    def has_method(self, name: str) -> bool:
        return name in self._methods

    def list_methods(self) -> List[str]:
        return list(self._methods.keys())

    # ---------- 入口 ----------

    async def handle(self, payload: Payload, correlation_id: Optional[str] = None) -> WireResponse:
        """
        处理单个或批量请求

        Args:
            payload: 已解码的 dict / list，或原始 JSON 文本（str/bytes）
            correlation_id: 追踪 ID（批量请求的所有成员共用）

        Returns:
            - 单个请求：响应 dict；通知返回 None
            - 批量请求：响应 dict 列表（顺序与请求一致，通知不占位）；全为通知时返回 None
            - 空批量：单个 INVALID_REQUEST 响应 dict
        """
        if isinstance(payload, (str, bytes, bytearray)):
            try:
                payload = json.loads(payload)
            except ValueError as e:
                logger.info(f"JSON 解析失败: {e}", extra={"correlation_id": correlation_id})
                return self._error_response(
                    None,
                    McpErrorCode.PARSE_ERROR,
                    "Parse error: invalid JSON",
                    normalize_correlation_id(correlation_id),
                ).to_dict()

        if isinstance(payload, list):
            if not payload:
                return self._error_response(
                    None,
                    McpErrorCode.INVALID_REQUEST,
                    "Invalid Request: empty batch",
                    normalize_correlation_id(correlation_id),
                ).to_dict()
            responses = await asyncio.gather(
                *(self.dispatch(item, correlation_id) for item in payload)
            )
            batch = [response.to_dict() for response in responses if response is not None]
            return batch or None

        response = await self.dispatch(payload, correlation_id)
        return response.to_dict() if response is not None else None

    async def dispatch(
        self, body: Any, correlation_id: Optional[str] = None
    ) -> Optional[JsonRpcResponse]:
        """
        分发单个已解码请求

        Returns:
            JSON-RPC 响应；通知返回 None（副作用照常发生）
        """
        corr_id = normalize_correlation_id(correlation_id)
        request, error_response = parse_jsonrpc_request(body, corr_id)
        if error_response is not None:
            logger.info("无效的 JSON-RPC 请求", extra={"correlation_id": corr_id})
            return error_response
        assert request is not None  # parse_jsonrpc_request 保证二者其一非空

        token = set_current_correlation_id(corr_id)
        try:
            response = await self._execute(request, corr_id)
        finally:
            reset_current_correlation_id(token)

        if request.is_notification:
            if response.is_error and response.error is not None:
                logger.info(
                    f"通知处理失败: method={request.method}, code={response.error.code}",
                    extra={"correlation_id": corr_id},
                )
            return None
        return response

    async def _execute(self, request: JsonRpcRequest, corr_id: str) -> JsonRpcResponse:
        handler = self._methods.get(request.method)
        if handler is None:
            return self._error_response(
                request.id,
                McpErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}",
                corr_id,
                details={"method": request.method, "available_methods": self.list_methods()},
            )
        try:
            result = await handler(request, corr_id)
        except Exception as e:
            return self._render_failure(e, request, corr_id)
        return make_jsonrpc_result(request.id, result)

    def render_error(
        self,
        code: int,
        message: str,
        correlation_id: Optional[str] = None,
        request_id: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """构造线上格式的错误响应（供传输层在分发前拒绝请求时使用）"""
        return self._error_response(
            request_id, code, message, normalize_correlation_id(correlation_id), details
        ).to_dict()

    # ---------- 错误渲染 ----------

    def _error_data(
        self, code: int, corr_id: str, details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        profile = error_profile_for_code(code)
        return ErrorData(
            category=profile.category,
            reason=profile.reason,
            retryable=profile.retryable,
            correlation_id=corr_id,
            details=details,
        ).to_dict()

    def _error_response(
        self,
        req_id: Any,
        code: int,
        message: str,
        corr_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> JsonRpcResponse:
        return make_jsonrpc_error(req_id, code, message, self._error_data(code, corr_id, details))

    def _render_failure(
        self, error: Exception, request: JsonRpcRequest, corr_id: str
    ) -> JsonRpcResponse:
        """
        渲染失败

        - McpError: 原样渲染（自带 data 时使用其 data，否则附加 ErrorData）
        - 其他异常: 经兜底错误映射器归一化；映射器本身失败时降级为 INTERNAL_ERROR
        """
        if isinstance(error, McpError):
            mapped: BaseException = error
            logger.info(
                f"请求失败: method={request.method}, code={error.code}, message={error.message}",
                extra={"correlation_id": corr_id},
            )
        else:
            logger.exception(
                f"JSON-RPC 方法执行失败: method={request.method}, correlation_id={corr_id}"
            )
            try:
                mapped = self._error_mapper(error)
            except Exception:
                logger.exception(f"错误映射失败: method={request.method}")
                mapped = McpError(McpErrorCode.INTERNAL_ERROR, DEFAULT_PUBLIC_ERROR_MESSAGE)

        if not isinstance(mapped, McpError):
            mapped = McpError(
                McpErrorCode.INTERNAL_ERROR, str(mapped) or DEFAULT_PUBLIC_ERROR_MESSAGE
            )

        data = mapped.data if mapped.data is not None else self._error_data(mapped.code, corr_id)
        return make_jsonrpc_error(request.id, mapped.code, mapped.message, data)

    def _not_found(self, message: str, corr_id: str, details: Dict[str, Any]) -> McpError:
        return McpError(
            McpErrorCode.METHOD_NOT_FOUND,
            message,
            data=self._error_data(McpErrorCode.METHOD_NOT_FOUND, corr_id, details),
        )

    def _invalid_params(
        self,
        message: str,
        corr_id: str,
        details: Optional[Dict[str, Any]] = None,
        reason: str = McpErrorReason.INVALID_PARAM_VALUE,
    ) -> McpError:
        return McpError(
            McpErrorCode.INVALID_PARAMS,
            message,
            data=ErrorData(
                category=McpErrorCategory.VALIDATION,
                reason=reason,
                correlation_id=corr_id,
                details=details or None,
            ).to_dict(),
        )

    def _missing_param(self, message: str, corr_id: str) -> McpError:
        return self._invalid_params(message, corr_id, reason=McpErrorReason.MISSING_REQUIRED_PARAM)

    # ---------- 生命周期方法 ----------

    async def _initialize(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        params = request.params or {}
        client_info = params.get("clientInfo")
        self._client_info = client_info if isinstance(client_info, dict) else None
        logger.info(
            f"initialize: client={self._client_info}, protocol={params.get('protocolVersion')}",
            extra={"correlation_id": corr_id},
        )
        result: Dict[str, Any] = {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {
                "tools": {},
                "resources": {"subscribe": True},
                "prompts": {},
                "logging": {},
            },
            "serverInfo": {"name": self._server_name, "version": self._server_version},
        }
        if self._instructions:
            result["instructions"] = self._instructions
        return result

    async def _mark_initialized(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        self._initialized = True
        return {}

    async def _ping(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        return {}

    # ---------- 列表方法（不经过守卫/拦截器，始终列出全部条目） ----------

    async def _tools_list(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        tools = [
            ToolDefinition(
                name=descriptor.name,
                description=descriptor.description,
                inputSchema=descriptor.input_schema or {"type": "object", "properties": {}},
                **_version_fields(descriptor),
            ).model_dump(exclude_none=True)
            for descriptor in self._registry.list_tools()
        ]
        return {"tools": tools}

    async def _resources_list(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        resources = [
            ResourceDefinition(
                uri=descriptor.uri or descriptor.name,
                name=descriptor.name,
                description=descriptor.description,
                mimeType=descriptor.mime_type,
                **_version_fields(descriptor),
            ).model_dump(exclude_none=True)
            for descriptor in self._registry.list_resources()
        ]
        templates = [
            ResourceTemplateDefinition(
                uriTemplate=descriptor.identifier,
                name=descriptor.name,
                description=descriptor.description,
                mimeType=descriptor.mime_type,
                **_version_fields(descriptor),
            ).model_dump(exclude_none=True)
            for descriptor in self._registry.list_resource_templates()
        ]
        return {"resources": resources, "resourceTemplates": templates}

    async def _prompts_list(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        prompts = [
            PromptDefinition(
                name=descriptor.name,
                description=descriptor.description,
                arguments=[PromptArgument(**argument) for argument in descriptor.arguments],
                **_version_fields(descriptor),
            ).model_dump(exclude_none=True)
            for descriptor in self._registry.list_prompts()
        ]
        return {"prompts": prompts}

    # ---------- 调用方法 ----------

    def _warn_deprecated(self, descriptor: HandlerDescriptor, corr_id: str) -> None:
        if descriptor.deprecated:
            message = descriptor.deprecation_message or "no replacement given"
            logger.warning(
                f"调用已废弃的{descriptor.kind.value}: {descriptor.name} ({message})",
                extra={"correlation_id": corr_id},
            )

    def _validate_model(
        self, model_cls: Type[BaseModel], values: Dict[str, Any], corr_id: str, prefix: str
    ) -> Dict[str, Any]:
        """pydantic 校验，失败为 INVALID_PARAMS "<prefix>: <loc>: <msg>; ..." """
        try:
            model = model_cls.model_validate(values)
        except ValidationError as e:
            errors = _validation_summary(e)
            summary = "; ".join(
                f"{'.'.join(item['loc']) or 'arguments'}: {item['msg']}" for item in errors
            )
            raise self._invalid_params(f"{prefix}: {summary}", corr_id, {"errors": errors}) from e
        return dict(model)

    def _bind_arguments(
        self, descriptor: HandlerDescriptor, arguments: Dict[str, Any], corr_id: str, label: str
    ) -> Dict[str, Any]:
        """
        校验并绑定调用参数

        - 有 args_model：pydantic 校验，失败为 INVALID_PARAMS "Invalid tool arguments: ..."，
          成功后以模型字段值作为关键字参数
        - 无 args_model：按 handler 签名绑定，不匹配为 INVALID_PARAMS
        """
        if descriptor.args_model is not None:
            return self._validate_model(
                descriptor.args_model, arguments, corr_id, f"Invalid {label} arguments"
            )

        try:
            signature = inspect.signature(descriptor.handler)
        except (TypeError, ValueError):
            return dict(arguments)
        try:
            signature.bind(**arguments)
        except TypeError as e:
            raise self._invalid_params(f"Invalid {label} arguments: {e}", corr_id) from e
        return dict(arguments)

    async def _tools_call(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        params = request.params or {}
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise self._missing_param("Tool name is required", corr_id)

        descriptor = self._registry.get_tool(name)
        if descriptor is None:
            raise self._not_found(
                f"Tool not found: {name}",
                corr_id,
                {"tool": name, "available_tools": [d.name for d in self._registry.list_tools()]},
            )

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise self._invalid_params(
                "Invalid tool arguments: arguments must be an object", corr_id
            )

        self._warn_deprecated(descriptor, corr_id)
        context = ExecutionContext(
            request, descriptor, arguments=arguments, correlation_id=corr_id
        )

        async def invoke() -> Any:
            kwargs = self._bind_arguments(descriptor, arguments, corr_id, "tool")
            return await _call(descriptor.handler, **kwargs)

        raw = await run_pipeline(descriptor.guards, descriptor.interceptors, context, invoke)
        return normalize_tool_result(raw)

    async def _resources_read(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        params = request.params or {}
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise self._missing_param("Resource URI is required", corr_id)

        match = self._registry.resolve_resource(uri)
        if match is None:
            raise self._resource_not_found(uri, corr_id)

        descriptor: HandlerDescriptor = match.target
        variables = dict(match.variables)
        self._warn_deprecated(descriptor, corr_id)
        context = ExecutionContext(request, descriptor, variables=variables, correlation_id=corr_id)

        async def invoke() -> Any:
            bound = dict(variables)
            if descriptor.variables_model is not None:
                bound = self._validate_model(
                    descriptor.variables_model, bound, corr_id, "Invalid resource variables"
                )
            return await _call(descriptor.handler, uri, bound)

        raw = await run_pipeline(descriptor.guards, descriptor.interceptors, context, invoke)
        return normalize_resource_result(raw, uri, descriptor.mime_type)

    def _resource_not_found(self, uri: str, corr_id: str) -> McpError:
        return self._not_found(
            f"Resource not found: {uri}",
            corr_id,
            {
                "uri": uri,
                "available_resources": [d.identifier for d in self._registry.list_resources()],
                "available_templates": [
                    d.identifier for d in self._registry.list_resource_templates()
                ],
            },
        )

    async def _prompts_get(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        params = request.params or {}
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise self._missing_param("Prompt name is required", corr_id)

        descriptor = self._registry.get_prompt(name)
        if descriptor is None:
            raise self._not_found(
                f"Prompt not found: {name}",
                corr_id,
                {
                    "prompt": name,
                    "available_prompts": [d.name for d in self._registry.list_prompts()],
                },
            )

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise self._invalid_params(
                "Invalid prompt arguments: arguments must be an object", corr_id
            )

        self._warn_deprecated(descriptor, corr_id)
        context = ExecutionContext(
            request, descriptor, arguments=arguments, correlation_id=corr_id
        )

        async def invoke() -> Any:
            missing = [
                argument["name"]
                for argument in descriptor.arguments
                if argument.get("required") and argument["name"] not in arguments
            ]
            if missing:
                raise self._invalid_params(
                    f"Missing required prompt argument: {', '.join(missing)}",
                    corr_id,
                    {"missing": missing},
                    reason=McpErrorReason.MISSING_REQUIRED_PARAM,
                )
            kwargs = self._bind_arguments(descriptor, arguments, corr_id, "prompt")
            return await _call(descriptor.handler, **kwargs)

        raw = await run_pipeline(descriptor.guards, descriptor.interceptors, context, invoke)
        return normalize_prompt_result(raw, descriptor.description)

    # ---------- 订阅与日志 ----------

    async def _resources_subscribe(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        uri = (request.params or {}).get("uri")
        if not isinstance(uri, str) or not uri:
            raise self._missing_param("Resource URI is required", corr_id)
        if self._registry.resolve_resource(uri) is None:
            raise self._resource_not_found(uri, corr_id)
        self._subscriptions.add(uri)
        logger.debug(f"订阅资源: {uri}", extra={"correlation_id": corr_id})
        return {}

    async def _resources_unsubscribe(
        self, request: JsonRpcRequest, corr_id: str
    ) -> Dict[str, Any]:
        uri = (request.params or {}).get("uri")
        if not isinstance(uri, str) or not uri:
            raise self._missing_param("Resource URI is required", corr_id)
        self._subscriptions.discard(uri)
        logger.debug(f"取消订阅资源: {uri}", extra={"correlation_id": corr_id})
        return {}

    async def _logging_set_level(self, request: JsonRpcRequest, corr_id: str) -> Dict[str, Any]:
        level = (request.params or {}).get("level")
        if not isinstance(level, str) or level.lower() not in MCP_LOG_LEVELS:
            raise self._invalid_params(
                f"Invalid log level: {level}",
                corr_id,
                {"allowed": list(MCP_LOG_LEVELS.keys())},
            )
        logging.getLogger(self._log_namespace).setLevel(MCP_LOG_LEVELS[level.lower()])
        logger.info(f"日志级别已设置: {level.lower()}", extra={"correlation_id": corr_id})
        return {}


__all__ = [
    "MCP_PROTOCOL_VERSION",
    "MCP_LOG_LEVELS",
    "Dispatcher",
    "normalize_tool_result",
    "normalize_resource_result",
    "normalize_prompt_result",
]
