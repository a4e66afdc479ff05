"""
HTTP 应用工厂 (Application Factory)

提供 create_app() 函数，负责：
1. 创建 FastAPI 应用实例
2. 组装 Dispatcher（由注册表构建，或直接使用传入的实例）
3. 安装中间件并注册路由
4. 返回可运行的 FastAPI app

路由:
    POST {root_path}          单个或批量 JSON-RPC 请求
    POST {root_path}/batch    批量 JSON-RPC 请求（请求体必须为数组）
    OPTIONS {root_path}       CORS 预检
    GET /health               健康检查

HTTP 状态码:
    200  普通响应（包括 JSON-RPC 错误响应）
    204  仅含通知，无响应体
    400  PARSE_ERROR / INVALID_REQUEST
    401  传输层鉴权失败
    500  未处理异常（JSON-RPC INTERNAL_ERROR）

用法:
    registry = CapabilityRegistry()
    registry.register_tool("add", lambda a, b: a + b)

    app = create_app(registry)

    # 测试场景：显式传入配置
    app = create_app(registry, config=ServerConfig(auth_tokens={"secret"}))
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .config import ServerConfig, get_config
from .correlation_id import generate_correlation_id
from .dispatcher import Dispatcher
from .error_codes import McpErrorCode
from .error_redaction import describe_cors_preflight
from .middleware import (
    CORRELATION_ID_HEADER,
    build_cors_headers,
    get_request_correlation_id,
    install_middleware,
    is_authorized,
    requires_transport_auth,
    unauthorized_response,
)
from .registry import CapabilityRegistry

logger = logging.getLogger("mcpkit.gateway.app")

# 单个响应以这些错误码失败时返回 HTTP 400
_BAD_REQUEST_CODES = frozenset({McpErrorCode.PARSE_ERROR, McpErrorCode.INVALID_REQUEST})


def _http_status(result: Any) -> int:
    if result is None:
        return 204
    if isinstance(result, dict):
        error = result.get("error")
        if isinstance(error, dict) and error.get("code") in _BAD_REQUEST_CODES:
            return 400
    return 200


def _describe_payload(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, list):
        return {"batch_size": len(payload), "method": None}
    if isinstance(payload, dict):
        method = payload.get("method")
        return {"batch_size": None, "method": method if isinstance(method, str) else None}
    return {"batch_size": None, "method": None}


def register_routes(app: FastAPI, dispatcher: Dispatcher, config: ServerConfig) -> None:
    """注册 MCP 路由与健康检查"""
    root_path = config.root_path
    batch_path = f"{root_path.rstrip('/')}/batch"

    async def _serve(request: Request, batch_only: bool) -> Response:
        correlation_id = get_request_correlation_id() or generate_correlation_id()
        response_headers = build_cors_headers(request, config.cors_allow_origin)
        response_headers[CORRELATION_ID_HEADER] = correlation_id

        raw_body = await request.body()
        try:
            payload: Any = json.loads(raw_body)
            parsed = True
        except ValueError:
            payload, parsed = raw_body, False

        if config.auth_enabled:
            needs_auth = not parsed or requires_transport_auth(dispatcher.registry, payload)
            if needs_auth and not is_authorized(request, config.auth_tokens):
                logger.info(
                    "传输层鉴权失败",
                    extra={"path": request.url.path, "correlation_id": correlation_id},
                )
                response = unauthorized_response(request, config)
                response.headers[CORRELATION_ID_HEADER] = correlation_id
                return response

        logger.info(
            "MCP request",
            extra={
                **_describe_payload(payload if parsed else None),
                "parsed": parsed,
                "correlation_id": correlation_id,
            },
        )

        if parsed and batch_only and not isinstance(payload, list):
            result: Any = dispatcher.render_error(
                McpErrorCode.INVALID_REQUEST,
                "Invalid Request: batch body must be an array",
                correlation_id,
            )
        else:
            result = await dispatcher.handle(payload, correlation_id)

        status_code = _http_status(result)
        if status_code == 204:
            return Response(status_code=204, headers=response_headers)
        return JSONResponse(content=result, status_code=status_code, headers=response_headers)

    @app.get("/health")
    async def health_check():
        """健康检查"""
        return {
            "ok": True,
            "status": "ok",
            "service": config.server_name,
            "version": config.server_version,
        }

    @app.options(root_path)
    async def mcp_options(request: Request):
        """MCP 端点的 CORS 预检请求处理"""
        response_headers = build_cors_headers(request, config.cors_allow_origin)
        logger.info(
            "MCP CORS preflight",
            extra=describe_cors_preflight(
                request.headers.get("Access-Control-Request-Headers"),
                response_headers["Access-Control-Allow-Headers"],
            ),
        )
        return Response(status_code=204, headers=response_headers)

    @app.post(root_path)
    async def mcp_endpoint(request: Request):
        """MCP 统一入口（单个或批量 JSON-RPC 请求）"""
        return await _serve(request, batch_only=False)

    @app.post(batch_path)
    async def mcp_batch_endpoint(request: Request):
        """MCP 批量入口（请求体必须为数组）"""
        return await _serve(request, batch_only=True)


def create_app(
    registry: Optional[CapabilityRegistry] = None,
    config: Optional[ServerConfig] = None,
    dispatcher: Optional[Dispatcher] = None,
    lifespan: Optional[Callable] = None,
) -> FastAPI:
    """
    创建并配置 FastAPI 应用实例

    Args:
        registry: 能力注册表（未传入 dispatcher 时必填，构建时封存）
        config: 服务配置；不传时使用 get_config()（从环境变量加载）
        dispatcher: 可选的 Dispatcher 实例；传入时忽略 registry
        lifespan: 可选的 lifespan 上下文管理器

    Returns:
        配置好的 FastAPI 应用实例

    Raises:
        ValueError: registry 与 dispatcher 均未提供
        ConfigError: 未传入 config 且环境变量配置无效
    """
    if config is None:
        config = get_config()

    if dispatcher is None:
        if registry is None:
            raise ValueError("create_app requires a registry or a dispatcher")
        dispatcher = Dispatcher(
            registry,
            server_name=config.server_name,
            server_version=config.server_version,
        )

    app = FastAPI(
        title=config.server_name,
        version=config.server_version,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.dispatcher = dispatcher

    install_middleware(app, config)
    register_routes(app, dispatcher, config)

    logger.debug(
        "应用已创建",
        extra={"root_path": config.root_path, "auth_enabled": config.auth_enabled},
    )
    return app


__all__ = ["create_app", "register_routes"]
