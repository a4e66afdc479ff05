"""
mcpkit - MCP 能力服务框架

提供：
- gateway: JSON-RPC 2.0 分发引擎、守卫/拦截器链、URI 模板解析与 HTTP 绑定
- common: 通用工具（敏感信息脱敏）
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
