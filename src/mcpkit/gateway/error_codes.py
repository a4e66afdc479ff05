"""
JSON-RPC / MCP 错误码定义

本模块是错误码的单一事实来源（SSOT）:

1. `McpErrorCode`: JSON-RPC 2.0 标准错误码 + 服务端保留错误码
2. `McpErrorCategory`: error.data.category 分类常量
3. `McpErrorReason`: error.data.reason 原因码常量
4. `error_profile_for_code()`: 错误码 -> (category, reason, retryable) 默认画像

用法：
    from mcpkit.gateway.error_codes import (
        McpErrorCode,
        McpErrorCategory,
        McpErrorReason,
    )

注意：
- 错误码（code）是对外协议契约，取值集合是封闭的
- reason 仅用于 error.data.reason，便于调用方自动化处理
- 应用自定义错误码（不在下表中）统一归类为 business/APPLICATION_ERROR
"""

from typing import Dict, NamedTuple

# =============================================================================
# JSON-RPC 2.0 错误码定义
# =============================================================================


class McpErrorCode:
    """
    JSON-RPC 2.0 错误码

    标准错误码 (-32700 ~ -32600):
    - PARSE_ERROR (-32700): JSON 解析错误
    - INVALID_REQUEST (-32600): 无效请求
    - METHOD_NOT_FOUND (-32601): 方法/目标不存在
    - INVALID_PARAMS (-32602): 无效参数
    - INTERNAL_ERROR (-32603): 内部错误

    服务端保留错误码 (-32000 ~ -32099):
    - SERVER_ERROR (-32000): 通用服务端错误
    - FORBIDDEN (-32001): 守卫拒绝 / 权限不足
    - UNAUTHORIZED (-32002): 未认证（缺少或无效的凭据）
    - RATE_LIMITED (-32003): 超出速率限制
    - TIMEOUT (-32004): 请求超时
    """

    PARSE_ERROR = -32700  # 解析错误
    INVALID_REQUEST = -32600  # 无效请求
    METHOD_NOT_FOUND = -32601  # 方法不存在
    INVALID_PARAMS = -32602  # 无效参数
    INTERNAL_ERROR = -32603  # 内部错误
    # 服务端保留错误码 (-32000 to -32099)
    SERVER_ERROR = -32000  # 通用服务端错误
    FORBIDDEN = -32001  # 权限不足（默认错误映射器使用的授权错误码）
    UNAUTHORIZED = -32002  # 未认证
    RATE_LIMITED = -32003  # 速率限制
    TIMEOUT = -32004  # 超时


class McpErrorCategory:
    """
    错误分类常量

    用于 JSON-RPC error.data.category 字段。

    分类说明:
    - protocol: 协议层错误（JSON-RPC 格式、方法/目标不存在）
    - validation: 参数校验错误
    - business: 业务拒绝（守卫拒绝、鉴权失败、限流、应用自定义错误）
    - dependency: 依赖或时限错误（超时）
    - internal: 内部错误（未处理的异常）
    """

    PROTOCOL = "protocol"  # 协议层错误
    VALIDATION = "validation"  # 参数校验错误
    BUSINESS = "business"  # 业务拒绝
    DEPENDENCY = "dependency"  # 依赖/超时
    INTERNAL = "internal"  # 内部错误


class McpErrorReason:
    """
    错误原因码常量

    用于 JSON-RPC error.data.reason 字段。

    原因码按分类组织:
    - 协议层: PARSE_ERROR, INVALID_REQUEST, METHOD_NOT_FOUND
    - 参数校验: MISSING_REQUIRED_PARAM, INVALID_PARAM_VALUE
    - 业务拒绝: FORBIDDEN, UNAUTHORIZED, RATE_LIMITED, APPLICATION_ERROR
    - 依赖/超时: TIMEOUT
    - 内部错误: SERVER_ERROR, INTERNAL_ERROR
    """

    # 协议层
    PARSE_ERROR = "PARSE_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    METHOD_NOT_FOUND = "METHOD_NOT_FOUND"

    # 参数校验
    MISSING_REQUIRED_PARAM = "MISSING_REQUIRED_PARAM"
    INVALID_PARAM_VALUE = "INVALID_PARAM_VALUE"

    # 业务拒绝
    FORBIDDEN = "FORBIDDEN"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"
    APPLICATION_ERROR = "APPLICATION_ERROR"

    # 依赖/超时
    TIMEOUT = "TIMEOUT"

    # 内部错误
    SERVER_ERROR = "SERVER_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# PUBLIC_MCP_ERROR_REASONS: 对外契约列表
# =============================================================================
#
# error.data.reason 字段的所有有效值。
# 新增/删除 reason 码时需同步 McpErrorReason 类常量，
# 一致性由 verify_public_mcp_error_reasons() 校验。
# =============================================================================

PUBLIC_MCP_ERROR_REASONS: tuple[str, ...] = (
    # 协议层
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    # 参数校验
    "MISSING_REQUIRED_PARAM",
    "INVALID_PARAM_VALUE",
    # 业务拒绝
    "FORBIDDEN",
    "UNAUTHORIZED",
    "RATE_LIMITED",
    "APPLICATION_ERROR",
    # 依赖/超时
    "TIMEOUT",
    # 内部错误
    "SERVER_ERROR",
    "INTERNAL_ERROR",
)


def _extract_mcp_error_reason_public_constants() -> set[str]:
    """
    通过反射提取 McpErrorReason 类的公开字符串常量

    条件：非 _ 开头、值为 str 类型
    """
    public_reasons: set[str] = set()
    for name in dir(McpErrorReason):
        if name.startswith("_"):
            continue
        value = getattr(McpErrorReason, name)
        if isinstance(value, str):
            public_reasons.add(value)
    return public_reasons


def verify_public_mcp_error_reasons() -> tuple[bool, str]:
    """
    校验 PUBLIC_MCP_ERROR_REASONS 与 McpErrorReason 公开常量的一致性

    Returns:
        (is_valid, message) 元组：
        - is_valid: True 表示一致，False 表示不一致
        - message: 描述信息，不一致时包含差异详情

    Example:
        >>> is_valid, msg = verify_public_mcp_error_reasons()
        >>> assert is_valid, msg
    """
    public_set = set(PUBLIC_MCP_ERROR_REASONS)
    class_set = _extract_mcp_error_reason_public_constants()

    if public_set == class_set:
        return True, "PUBLIC_MCP_ERROR_REASONS 与 McpErrorReason 公开常量一致"

    only_in_tuple = public_set - class_set
    only_in_class = class_set - public_set

    message_parts = ["PUBLIC_MCP_ERROR_REASONS 与 McpErrorReason 公开常量不一致。"]
    if only_in_tuple:
        message_parts.append(f"仅在 PUBLIC_MCP_ERROR_REASONS 中: {sorted(only_in_tuple)}")
    if only_in_class:
        message_parts.append(f"仅在 McpErrorReason 中: {sorted(only_in_class)}")
    return False, "\n".join(message_parts)


# =============================================================================
# 错误码 -> error.data 默认画像
# =============================================================================


class ErrorProfile(NamedTuple):
    """错误码对应的 error.data 默认属性"""

    category: str
    reason: str
    retryable: bool


_CODE_PROFILES: Dict[int, ErrorProfile] = {
    McpErrorCode.PARSE_ERROR: ErrorProfile(
        McpErrorCategory.PROTOCOL, McpErrorReason.PARSE_ERROR, False
    ),
    McpErrorCode.INVALID_REQUEST: ErrorProfile(
        McpErrorCategory.PROTOCOL, McpErrorReason.INVALID_REQUEST, False
    ),
    McpErrorCode.METHOD_NOT_FOUND: ErrorProfile(
        McpErrorCategory.PROTOCOL, McpErrorReason.METHOD_NOT_FOUND, False
    ),
    McpErrorCode.INVALID_PARAMS: ErrorProfile(
        McpErrorCategory.VALIDATION, McpErrorReason.INVALID_PARAM_VALUE, False
    ),
    McpErrorCode.INTERNAL_ERROR: ErrorProfile(
        McpErrorCategory.INTERNAL, McpErrorReason.INTERNAL_ERROR, False
    ),
    McpErrorCode.SERVER_ERROR: ErrorProfile(
        McpErrorCategory.INTERNAL, McpErrorReason.SERVER_ERROR, False
    ),
    McpErrorCode.FORBIDDEN: ErrorProfile(
        McpErrorCategory.BUSINESS, McpErrorReason.FORBIDDEN, False
    ),
    McpErrorCode.UNAUTHORIZED: ErrorProfile(
        McpErrorCategory.BUSINESS, McpErrorReason.UNAUTHORIZED, False
    ),
    # 限流与超时可由调用方稍后重试
    McpErrorCode.RATE_LIMITED: ErrorProfile(
        McpErrorCategory.BUSINESS, McpErrorReason.RATE_LIMITED, True
    ),
    McpErrorCode.TIMEOUT: ErrorProfile(McpErrorCategory.DEPENDENCY, McpErrorReason.TIMEOUT, True),
}

_APPLICATION_PROFILE = ErrorProfile(
    McpErrorCategory.BUSINESS, McpErrorReason.APPLICATION_ERROR, False
)


def error_profile_for_code(code: int) -> ErrorProfile:
    """
    获取错误码对应的默认 error.data 画像

    Args:
        code: JSON-RPC 错误码

    Returns:
        ErrorProfile；未知（应用自定义）错误码返回 business/APPLICATION_ERROR
    """
    return _CODE_PROFILES.get(code, _APPLICATION_PROFILE)


__all__ = [
    "McpErrorCode",
    "McpErrorCategory",
    "McpErrorReason",
    "PUBLIC_MCP_ERROR_REASONS",
    "verify_public_mcp_error_reasons",
    "ErrorProfile",
    "error_profile_for_code",
]
