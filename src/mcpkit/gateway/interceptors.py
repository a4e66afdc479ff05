"""
内置拦截器

- ErrorMappingInterceptor: 把任意异常归一化为 McpError（映射函数可替换）
- LoggingInterceptor: 记录开始/完成/失败与耗时
- TimeoutInterceptor: 为内层调用设置时限

默认错误映射 map_error() 是普通函数，可直接包装或整体替换:

    def my_mapper(error):
        if isinstance(error, KeyError):
            return McpError(McpErrorCode.INVALID_PARAMS, f"Missing key: {error}")
        return map_error(error)

    ErrorMappingInterceptor(mapper=my_mapper)

Dispatcher 也接受同样签名的 error_mapper，用于没有任何拦截器处理的失败。
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from .context import ExecutionContext
from .error_codes import McpErrorCode
from .error_redaction import DEFAULT_PUBLIC_ERROR_MESSAGE, UNKNOWN_ERROR_MESSAGE
from .exceptions import McpError, McpTimeoutError
from .pipeline import CallNext

logger = logging.getLogger("mcpkit.gateway.interceptors")

# 错误映射函数：任意失败值 -> 协议异常
ErrorMapper = Callable[[Any], BaseException]


def map_error(error: Any) -> McpError:
    """
    默认错误映射

    已是 McpError 的原样返回；其余按异常消息中的子串分类
    （区分大小写，按以下优先级）:

    1. "not found"                  -> METHOD_NOT_FOUND (-32601)
    2. "invalid" / "validation"     -> INVALID_PARAMS (-32602)
    3. "permission" / "unauthorized" -> FORBIDDEN (-32001)
    4. 其他异常                      -> INTERNAL_ERROR (-32603)

    非异常值统一映射为 INTERNAL_ERROR "An unknown error occurred"。
    """
    if isinstance(error, McpError):
        return error
    if not isinstance(error, Exception):
        return McpError(McpErrorCode.INTERNAL_ERROR, UNKNOWN_ERROR_MESSAGE)

    message = str(error)
    if "not found" in message:
        return McpError(McpErrorCode.METHOD_NOT_FOUND, message)
    if "invalid" in message or "validation" in message:
        return McpError(McpErrorCode.INVALID_PARAMS, message)
    if "permission" in message or "unauthorized" in message:
        return McpError(McpErrorCode.FORBIDDEN, message)
    return McpError(McpErrorCode.INTERNAL_ERROR, message or DEFAULT_PUBLIC_ERROR_MESSAGE)


class ErrorMappingInterceptor:
    """错误映射拦截器"""

    def __init__(self, mapper: Optional[ErrorMapper] = None):
        self._mapper: ErrorMapper = mapper or map_error

    async def intercept(self, context: ExecutionContext, call_next: CallNext) -> Any:
        try:
            return await call_next()
        except Exception as e:
            mapped = self._mapper(e)
            if mapped is e:
                raise
            logger.debug(
                "异常已映射",
                extra={
                    "operation": context.name,
                    "error_type": type(e).__name__,
                    "mapped_code": getattr(mapped, "code", None),
                    "correlation_id": context.correlation_id,
                },
            )
            raise mapped from e


class LoggingInterceptor:
    """日志拦截器：记录调用开始、完成（含耗时）与失败，失败时原样重新抛出"""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self._logger = log or logging.getLogger("mcpkit.gateway.calls")
        self._level = level

    async def intercept(self, context: ExecutionContext, call_next: CallNext) -> Any:
        extra = {
            "kind": context.kind.value,
            "operation": context.name,
            "correlation_id": context.correlation_id,
        }
        self._logger.log(self._level, f"调用开始: {context.kind.value} {context.name}", extra=extra)
        started = time.perf_counter()
        try:
            result = await call_next()
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self._logger.warning(
                f"调用失败: {context.kind.value} {context.name} ({elapsed_ms:.1f}ms): "
                f"{type(e).__name__}: {e}",
                extra={**extra, "elapsed_ms": elapsed_ms},
            )
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000
        self._logger.log(
            self._level,
            f"调用完成: {context.kind.value} {context.name} ({elapsed_ms:.1f}ms)",
            extra={**extra, "elapsed_ms": elapsed_ms},
        )
        return result


class TimeoutInterceptor:
    """超时拦截器：内层调用超过 timeout 秒即取消并抛出 McpTimeoutError"""

    def __init__(self, timeout: float = 30.0):
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    async def intercept(self, context: ExecutionContext, call_next: CallNext) -> Any:
        try:
            return await asyncio.wait_for(call_next(), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise McpTimeoutError(f"Request timeout after {int(self._timeout * 1000)}ms")


__all__ = [
    "ErrorMapper",
    "map_error",
    "ErrorMappingInterceptor",
    "LoggingInterceptor",
    "TimeoutInterceptor",
]
