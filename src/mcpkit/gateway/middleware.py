"""
HTTP 中间件模块

提供:
- install_middleware(app, config): 安装中间件和异常处理器
- CorrelationIdMiddleware: 统一处理 correlation_id 的生成与传递
- 传输层 Bearer token 鉴权辅助函数（由端点在解析请求体后调用）
- MCP CORS 响应头构造

correlation_id 契约:
================
1. 请求携带合规的 X-Correlation-ID 时沿用，否则在入口处生成
2. correlation_id 格式: ^corr-[a-fA-F0-9]{16}$
3. 所有响应的 X-Correlation-ID header 包含此 correlation_id
4. 所有错误响应的 error.data.correlation_id 与 X-Correlation-ID 一致

传输层鉴权:
================
配置了 token 时，请求必须携带 Authorization: Bearer <token>，除非请求中
每个成员都满足以下之一:
- 方法无需目标（initialize / initialized / ping）
- 调用类方法的目标已注册为 public
鉴权需要看到请求体与注册表，因此在端点内完成，而不是在中间件中读取请求体。
"""

from __future__ import annotations

import contextvars
import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from .config import ServerConfig
from .correlation_id import generate_correlation_id, normalize_correlation_id
from .error_codes import McpErrorCategory, McpErrorCode, McpErrorReason
from .error_redaction import DEFAULT_PUBLIC_ERROR_MESSAGE
from .models import ErrorData, make_jsonrpc_error
from .registry import CapabilityRegistry

logger = logging.getLogger("mcpkit.gateway.middleware")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# 无需目标即可调用的方法（不受 public 标记影响）
NO_TARGET_METHODS = frozenset({"initialize", "initialized", "notifications/initialized", "ping"})

# ===================== CORS =====================

MCP_CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Correlation-ID",
    "Access-Control-Expose-Headers": "X-Correlation-ID",
    "Access-Control-Max-Age": "86400",
}


def build_mcp_allow_headers(requested_headers: Optional[str]) -> str:
    """
    合并默认 Allow-Headers 与预检请求中的 Access-Control-Request-Headers

    按小写去重，保留默认值的原始大小写与顺序。
    """
    base_headers = [
        h.strip() for h in MCP_CORS_HEADERS["Access-Control-Allow-Headers"].split(",") if h.strip()
    ]
    seen = {h.lower() for h in base_headers}
    merged = list(base_headers)
    for header in (requested_headers or "").split(","):
        header = header.strip()
        if header and header.lower() not in seen:
            merged.append(header)
            seen.add(header.lower())
    return ", ".join(merged)


def build_cors_headers(request: Request, allow_origin: str = "*") -> Dict[str, str]:
    """基于请求构造 CORS headers（可动态扩展 Allow-Headers）"""
    cors_headers = dict(MCP_CORS_HEADERS)
    cors_headers["Access-Control-Allow-Origin"] = allow_origin
    requested_headers = request.headers.get("Access-Control-Request-Headers")
    if requested_headers:
        cors_headers["Access-Control-Allow-Headers"] = build_mcp_allow_headers(requested_headers)
    return cors_headers


# ===================== Correlation ID 上下文管理 =====================

# 请求级别的 correlation_id 存储（HTTP 层）
_request_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "_request_correlation_id", default=None
)


def get_request_correlation_id() -> Optional[str]:
    """
    获取当前 HTTP 请求的 correlation_id

    由 CorrelationIdMiddleware 在请求入口处设置；不在请求上下文中则返回 None。
    """
    return _request_correlation_id.get()


def set_request_correlation_id(correlation_id: str) -> contextvars.Token:
    return _request_correlation_id.set(correlation_id)


def reset_request_correlation_id_for_testing() -> None:
    """
    重置 correlation_id 为默认值 (None)

    仅用于测试隔离；生产代码由 CorrelationIdMiddleware 的 token 机制恢复。
    """
    _request_correlation_id.set(None)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    统一处理 correlation_id 的中间件

    职责:
    1. 沿用请求头中合规的 X-Correlation-ID，否则生成新的
    2. 将 correlation_id 存储到 contextvars
    3. 在响应头中添加 X-Correlation-ID（端点已设置时不覆盖）
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = normalize_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        token = set_request_correlation_id(correlation_id)
        try:
            response = await call_next(request)
            if CORRELATION_ID_HEADER not in response.headers:
                response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            _request_correlation_id.reset(token)


# ===================== 传输层鉴权 =====================


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    """从 Authorization header 中提取 Bearer token"""
    if not auth_header:
        return None
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer ") :].strip()
    return token or None


def _is_public_member(registry: CapabilityRegistry, member: Any) -> bool:
    if not isinstance(member, dict):
        return False
    method = member.get("method")
    if method in NO_TARGET_METHODS:
        return True
    params = member.get("params")
    if not isinstance(params, dict):
        return False

    if method == "tools/call":
        name = params.get("name")
        descriptor = registry.get_tool(name) if isinstance(name, str) else None
    elif method == "prompts/get":
        name = params.get("name")
        descriptor = registry.get_prompt(name) if isinstance(name, str) else None
    elif method == "resources/read":
        uri = params.get("uri")
        match = registry.resolve_resource(uri) if isinstance(uri, str) else None
        descriptor = match.target if match is not None else None
    else:
        return False
    return descriptor is not None and descriptor.public


def requires_transport_auth(registry: CapabilityRegistry, payload: Any) -> bool:
    """
    判断请求是否需要传输层鉴权

    Args:
        registry: 能力注册表（用于查询目标的 public 标记）
        payload: 已解码的单个请求 dict 或批量请求 list

    Returns:
        True 表示需要 Bearer token；空批量与无法识别的请求体一律需要
    """
    members: Iterable[Any] = payload if isinstance(payload, list) else [payload]
    members = list(members)
    if not members:
        return True
    return not all(_is_public_member(registry, member) for member in members)


def is_authorized(request: Request, tokens: Iterable[str]) -> bool:
    """校验请求的 Bearer token 是否在允许列表中"""
    token = extract_bearer_token(request.headers.get("Authorization"))
    return token is not None and token in set(tokens)


def unauthorized_response(request: Request, config: ServerConfig) -> JSONResponse:
    """401 响应（补齐 CORS 头，避免浏览器端无法读取响应）"""
    response = JSONResponse(content={"detail": "Unauthorized"}, status_code=401)
    response.headers.update(build_cors_headers(request, config.cors_allow_origin))
    return response


# ===================== Exception Handlers =====================


def _create_unhandled_exception_handler(config: ServerConfig):
    """
    创建未处理异常的处理器

    契约保证:
    - 返回 HTTP 500 与 JSON-RPC INTERNAL_ERROR
    - error.data.correlation_id 与 X-Correlation-ID 一致
    """

    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = get_request_correlation_id() or generate_correlation_id()

        logger.exception(
            f"未处理的异常: correlation_id={correlation_id}, "
            f"path={request.url.path}, exception={type(exc).__name__}"
        )

        error_data = ErrorData(
            category=McpErrorCategory.INTERNAL,
            reason=McpErrorReason.INTERNAL_ERROR,
            retryable=False,
            correlation_id=correlation_id,
            details={"exception_type": type(exc).__name__},
        ).to_dict()
        error_response = make_jsonrpc_error(
            None,
            McpErrorCode.INTERNAL_ERROR,
            DEFAULT_PUBLIC_ERROR_MESSAGE,
            data=error_data,
        )

        headers = build_cors_headers(request, config.cors_allow_origin)
        headers[CORRELATION_ID_HEADER] = correlation_id
        return JSONResponse(content=error_response.to_dict(), status_code=500, headers=headers)

    return unhandled_exception_handler


# ===================== Install Function =====================


def install_middleware(app: FastAPI, config: ServerConfig) -> None:
    """
    安装中间件和异常处理器

    调用时机: 在 create_app() 中，注册路由之前调用

    安装内容:
    1. 全局异常处理器: 未处理异常返回 HTTP 500 + JSON-RPC INTERNAL_ERROR
    2. CorrelationIdMiddleware: 统一生成和传递 correlation_id
    """
    app.add_exception_handler(Exception, _create_unhandled_exception_handler(config))
    app.add_middleware(CorrelationIdMiddleware)
    logger.debug("HTTP 中间件已安装")


__all__ = [
    "CORRELATION_ID_HEADER",
    "NO_TARGET_METHODS",
    "MCP_CORS_HEADERS",
    "build_mcp_allow_headers",
    "build_cors_headers",
    "get_request_correlation_id",
    "set_request_correlation_id",
    "reset_request_correlation_id_for_testing",
    "CorrelationIdMiddleware",
    "extract_bearer_token",
    "requires_transport_auth",
    "is_authorized",
    "unauthorized_response",
    "install_middleware",
]
