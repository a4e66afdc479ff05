"""
出站内容脱敏

- redact_outbound_error: JSON-RPC 错误对象的 message 与 data（写入响应前调用）
- describe_cors_preflight: CORS 预检日志字段，仅用于日志
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from mcpkit.common.redaction import redact_sensitive_data, redact_sensitive_text

DEFAULT_PUBLIC_ERROR_MESSAGE = "Internal error"
UNKNOWN_ERROR_MESSAGE = "An unknown error occurred"

# 单条日志中头部列表的最大长度
_MAX_HEADER_LOG_LENGTH = 200


def redact_outbound_error(message: Optional[str], data: Any = None) -> Tuple[str, Any]:
    """
    脱敏即将写入响应的错误消息与 data

    消息脱敏后为空时回退为 DEFAULT_PUBLIC_ERROR_MESSAGE；data 按敏感键名递归替换。
    """
    redacted = redact_sensitive_text(message) if message else ""
    return redacted or DEFAULT_PUBLIC_ERROR_MESSAGE, redact_sensitive_data(data)


def _header_names(raw_headers: Optional[str]) -> List[str]:
    # 误把 "Name: value" 写进列表时只保留名称部分
    names: List[str] = []
    for item in (raw_headers or "").split(","):
        name = item.split(":", 1)[0].strip()
        if name:
            names.append(name.split()[0])
    return names


def _log_value(names: List[str]) -> str:
    text = redact_sensitive_text(", ".join(names))
    if len(text) > _MAX_HEADER_LOG_LENGTH:
        return f"{text[:_MAX_HEADER_LOG_LENGTH]}..."
    return text


def describe_cors_preflight(
    requested_headers: Optional[str], allow_headers: Optional[str]
) -> Dict[str, str]:
    """
    生成 CORS 预检日志的 extra 字段

    rejected_headers 为客户端请求了但不在允许列表中的头（大小写不敏感），
    用于排查浏览器端预检失败。
    """
    requested = _header_names(requested_headers)
    allowed = {name.lower() for name in _header_names(allow_headers)}
    return {
        "requested_headers": _log_value(requested),
        "allow_headers": _log_value(sorted(allowed)),
        "rejected_headers": _log_value([n for n in requested if n.lower() not in allowed]),
    }
