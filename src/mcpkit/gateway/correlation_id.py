"""
Correlation ID 生成与校验模块

提供 correlation_id 的单一来源实现，不依赖 pydantic/fastapi。

核心函数:
- generate_correlation_id(): 生成新的 correlation_id
- is_valid_correlation_id(): 校验格式是否合规
- normalize_correlation_id(): 归一化（不合规则重新生成）
- get_current_correlation_id(): 获取当前请求上下文中的 correlation_id

格式规范:
- 格式: ^corr-[a-fA-F0-9]{16}$
- 示例: corr-a1b2c3d4e5f67890

传递路径:
    HTTP 入口 (X-Correlation-ID) → Dispatcher.handle() → contextvars → 守卫/拦截器/handler

handler 通过 get_current_correlation_id() 或 ExecutionContext.correlation_id 获取，
不自行生成。
"""

from __future__ import annotations

import contextvars
import re
import uuid
from typing import Optional


def generate_correlation_id() -> str:
    """
    生成关联 ID

    Returns:
        格式为 corr-{16位十六进制} 的关联 ID

    Example:
        >>> generate_correlation_id()
        'corr-a1b2c3d4e5f67890'
    """
    return f"corr-{uuid.uuid4().hex[:16]}"


# 格式: corr-{16位十六进制}
CORRELATION_ID_PATTERN = re.compile(r"^corr-[a-fA-F0-9]{16}$")


def is_valid_correlation_id(correlation_id: Optional[str]) -> bool:
    """
    校验 correlation_id 是否合规

    Example:
        >>> is_valid_correlation_id("corr-a1b2c3d4e5f67890")
        True
        >>> is_valid_correlation_id("corr-test123")
        False
        >>> is_valid_correlation_id(None)
        False
    """
    if not correlation_id:
        return False
    return bool(CORRELATION_ID_PATTERN.match(correlation_id))


def normalize_correlation_id(correlation_id: Optional[str]) -> str:
    """
    归一化 correlation_id

    合规则原样返回，否则（含空值）重新生成一个。
    """
    if is_valid_correlation_id(correlation_id):
        return correlation_id  # type: ignore[return-value]
    return generate_correlation_id()


# ===================== 请求上下文 =====================

_current_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "_current_correlation_id", default=None
)


def get_current_correlation_id() -> Optional[str]:
    """
    获取当前请求的 correlation_id

    在 Dispatcher 处理单个请求期间有效；不在请求上下文中时返回 None。
    """
    return _current_correlation_id.get()


def set_current_correlation_id(correlation_id: Optional[str]) -> contextvars.Token:
    """
    设置当前请求的 correlation_id

    通常由 Dispatcher 调用。返回的 token 用于 reset_current_correlation_id() 恢复。
    """
    return _current_correlation_id.set(correlation_id)


def reset_current_correlation_id(token: contextvars.Token) -> None:
    """恢复之前的 correlation_id（支持嵌套调用）"""
    _current_correlation_id.reset(token)


__all__ = [
    "generate_correlation_id",
    "is_valid_correlation_id",
    "normalize_correlation_id",
    "get_current_correlation_id",
    "set_current_correlation_id",
    "reset_current_correlation_id",
    "CORRELATION_ID_PATTERN",
]
