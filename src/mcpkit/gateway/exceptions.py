"""
协议层异常定义

McpError 是"已识别的协议异常"：Dispatcher 与错误映射器遇到它时按原样渲染，
不再重新分类。其余异常（业务异常、意外异常）交由错误映射器归一化。

异常层次:
    McpError(code, message, data)
    ├── ForbiddenError      (-32001) 守卫拒绝 / 权限不足
    ├── UnauthorizedError   (-32002) 缺少或无效的凭据
    ├── RateLimitError      (-32003) 超出速率限制
    └── McpTimeoutError     (-32004) 请求超时
"""

from typing import Any, Dict, Optional

from .error_codes import McpErrorCode
from .models import JsonRpcError


class McpError(Exception):
    """
    MCP 协议异常

    Attributes:
        code: JSON-RPC 错误码
        message: 错误消息（对外可见）
        data: 附加结构化数据（可选，原样渲染到 error.data）
    """

    default_code: int = McpErrorCode.SERVER_ERROR
    default_message: str = "Server error"

    def __init__(
        self,
        code: Optional[int] = None,
        message: Optional[str] = None,
        data: Optional[Any] = None,
    ):
        self.code = self.default_code if code is None else code
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)

    def to_error(self) -> JsonRpcError:
        """转换为 JSON-RPC 错误对象"""
        return JsonRpcError(code=self.code, message=self.message, data=self.data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code}, message={self.message!r})"


class ForbiddenError(McpError):
    """权限不足（守卫返回 False 时也转换为此异常）"""

    default_code = McpErrorCode.FORBIDDEN
    default_message = "Forbidden"

    def __init__(self, message: Optional[str] = None, data: Optional[Any] = None):
        super().__init__(None, message, data)


class UnauthorizedError(McpError):
    """未认证"""

    default_code = McpErrorCode.UNAUTHORIZED
    default_message = "Unauthorized"

    def __init__(self, message: Optional[str] = None, data: Optional[Any] = None):
        super().__init__(None, message, data)


class RateLimitError(McpError):
    """超出速率限制，data 通常包含 retryAfter 与 limit"""

    default_code = McpErrorCode.RATE_LIMITED
    default_message = "Rate limit exceeded"

    def __init__(self, message: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        super().__init__(None, message, data)


class McpTimeoutError(McpError):
    """请求超时"""

    default_code = McpErrorCode.TIMEOUT
    default_message = "Request timeout"

    def __init__(self, message: Optional[str] = None, data: Optional[Any] = None):
        super().__init__(None, message, data)


__all__ = [
    "McpError",
    "ForbiddenError",
    "UnauthorizedError",
    "RateLimitError",
    "McpTimeoutError",
]
