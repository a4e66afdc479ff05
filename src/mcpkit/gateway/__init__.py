"""
mcpkit.gateway - MCP 能力分发模块

负责把 JSON-RPC 2.0 / MCP 请求路由到已注册的能力（工具、资源、资源模板、提示词）：
- registry: 能力注册表与 HandlerDescriptor
- dispatcher: 请求解析、方法分发、错误渲染
- pipeline: 守卫链 → 拦截器链（洋葱模型）
- uri_template: 资源 URI 模板解析
- guards / interceptors: 内置守卫与拦截器
- app / middleware / config / main: HTTP 绑定与服务入口

懒加载策略：
- import mcpkit.gateway 不触发子模块加载（不引入 fastapi 等依赖）
- 访问 mcpkit.gateway.Dispatcher 等属性时才按需加载对应子模块
- 静态类型提示通过 TYPE_CHECKING 块支持
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mcpkit import __version__

# 导出名 -> 所在子模块
_LAZY_EXPORTS = {
    "CapabilityRegistry": "registry",
    "HandlerDescriptor": "registry",
    "OperationKind": "registry",
    "RegistryError": "registry",
    "Dispatcher": "dispatcher",
    "ExecutionContext": "context",
    "UriTemplate": "uri_template",
    "McpError": "exceptions",
    "ForbiddenError": "exceptions",
    "UnauthorizedError": "exceptions",
    "RateLimitError": "exceptions",
    "McpTimeoutError": "exceptions",
    "McpErrorCode": "error_codes",
    "AuthGuard": "guards",
    "PermissionGuard": "guards",
    "RateLimitGuard": "guards",
    "ErrorMappingInterceptor": "interceptors",
    "LoggingInterceptor": "interceptors",
    "TimeoutInterceptor": "interceptors",
    "map_error": "interceptors",
    "ServerConfig": "config",
    "create_app": "app",
}

__all__ = ["__version__", *_LAZY_EXPORTS]

# TYPE_CHECKING 块仅用于静态类型提示，不触发实际导入
if TYPE_CHECKING:
    from .app import create_app as create_app
    from .config import ServerConfig as ServerConfig
    from .context import ExecutionContext as ExecutionContext
    from .dispatcher import Dispatcher as Dispatcher
    from .error_codes import McpErrorCode as McpErrorCode
    from .exceptions import ForbiddenError as ForbiddenError
    from .exceptions import McpError as McpError
    from .exceptions import McpTimeoutError as McpTimeoutError
    from .exceptions import RateLimitError as RateLimitError
    from .exceptions import UnauthorizedError as UnauthorizedError
    from .guards import AuthGuard as AuthGuard
    from .guards import PermissionGuard as PermissionGuard
    from .guards import RateLimitGuard as RateLimitGuard
    from .interceptors import ErrorMappingInterceptor as ErrorMappingInterceptor
    from .interceptors import LoggingInterceptor as LoggingInterceptor
    from .interceptors import TimeoutInterceptor as TimeoutInterceptor
    from .interceptors import map_error as map_error
    from .registry import CapabilityRegistry as CapabilityRegistry
    from .registry import HandlerDescriptor as HandlerDescriptor
    from .registry import OperationKind as OperationKind
    from .registry import RegistryError as RegistryError
    from .uri_template import UriTemplate as UriTemplate


def __getattr__(name: str):
    """按需加载导出对象

    Raises:
        AttributeError: 属性不存在
    """
    submodule = _LAZY_EXPORTS.get(name)
    if submodule is not None:
        import importlib

        module = importlib.import_module(f".{submodule}", __name__)
        value = getattr(module, name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
