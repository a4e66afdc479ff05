"""
服务配置管理模块

从环境变量读取配置，并进行格式校验。

线程安全与可测试性说明:
============================================================

1. 线程安全性:
   - ServerConfig 实例: 构造完成后不修改，可安全跨线程共享
   - _config 全局单例: 模块级变量，高并发下首次初始化可能重复，但结果一致（幂等）

2. 可测试替换:
   - 方式一: override_config(config) 临时替换全局单例，测试结束后 reset_config()
   - 方式二: monkeypatch 环境变量，然后 reset_config() + get_config()
   - 方式三: 直接构造 ServerConfig 传给 create_app(config=...)

环境变量（均为可选）:
   - MCP_SERVER_NAME: 服务名称（默认 mcpkit-server）
   - MCP_SERVER_VERSION: 服务版本（默认包版本）
   - MCP_HOST: 监听地址（默认 127.0.0.1）
   - MCP_PORT: 监听端口（默认 8787）
   - MCP_ROOT_PATH: MCP 端点路径（默认 /mcp）
   - MCP_LOG_LEVEL: 日志级别（默认 INFO）
   - MCP_AUTH_TOKEN: 传输层 Bearer token（单个）
   - MCP_AUTH_TOKENS_JSON: 传输层 Bearer token 列表（JSON 数组）
   - MCP_CORS_ALLOW_ORIGIN: CORS 允许的来源（默认 *）
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from mcpkit import __version__ as MCPKIT_VERSION


class ConfigError(Exception):
    """配置错误异常"""

    pass


@dataclass
class ServerConfig:
    """
    服务配置

    线程安全: 是（构造完成后不修改）
    """

    server_name: str = "mcpkit-server"
    server_version: str = MCPKIT_VERSION
    host: str = "127.0.0.1"
    port: int = 8787
    root_path: str = "/mcp"
    log_level: str = "INFO"
    auth_tokens: FrozenSet[str] = field(default_factory=frozenset)
    cors_allow_origin: str = "*"

    def __post_init__(self) -> None:
        # 归一化端点路径：保留前导斜杠，去除末尾斜杠
        if self.root_path != "/":
            self.root_path = self.root_path.rstrip("/")
        self.log_level = self.log_level.upper()
        self.auth_tokens = frozenset(self.auth_tokens)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.auth_tokens)


def _get_optional_env(name: str, default: str = "") -> str:
    """获取可选环境变量（去除首尾空白）"""
    return os.environ.get(name, default).strip()


def _parse_auth_tokens() -> FrozenSet[str]:
    """
    解析传输层鉴权 token

    支持:
    - MCP_AUTH_TOKEN: 单 token
    - MCP_AUTH_TOKENS_JSON: JSON 字符串列表

    Raises:
        ConfigError: MCP_AUTH_TOKENS_JSON 不是合法的 JSON 字符串列表
    """
    tokens = set()
    single_token = _get_optional_env("MCP_AUTH_TOKEN")
    if single_token:
        tokens.add(single_token)

    tokens_json = _get_optional_env("MCP_AUTH_TOKENS_JSON")
    if tokens_json:
        try:
            parsed = json.loads(tokens_json)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"MCP_AUTH_TOKENS_JSON 解析失败: {exc}")
        if not isinstance(parsed, list):
            raise ConfigError("MCP_AUTH_TOKENS_JSON 必须是 JSON 列表")
        for token in parsed:
            if isinstance(token, str) and token.strip():
                tokens.add(token.strip())
    return frozenset(tokens)


def load_config() -> ServerConfig:
    """
    从环境变量加载配置

    Returns:
        ServerConfig 配置对象

    Raises:
        ConfigError: 环境变量格式无效
    """
    port_str = _get_optional_env("MCP_PORT", "8787")
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(f"MCP_PORT 必须是整数，当前值: {port_str}")

    root_path = _get_optional_env("MCP_ROOT_PATH", "/mcp") or "/mcp"
    if not root_path.startswith("/"):
        raise ConfigError(f"MCP_ROOT_PATH 必须以 / 开头，当前值: {root_path}")

    log_level = (_get_optional_env("MCP_LOG_LEVEL", "INFO") or "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"MCP_LOG_LEVEL 值无效: {log_level}")

    return ServerConfig(
        server_name=_get_optional_env("MCP_SERVER_NAME") or "mcpkit-server",
        server_version=_get_optional_env("MCP_SERVER_VERSION") or MCPKIT_VERSION,
        host=_get_optional_env("MCP_HOST") or "127.0.0.1",
        port=port,
        root_path=root_path,
        log_level=log_level,
        auth_tokens=_parse_auth_tokens(),
        cors_allow_origin=_get_optional_env("MCP_CORS_ALLOW_ORIGIN") or "*",
    )


# 全局配置实例（延迟加载）
_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """
    获取全局配置实例（单例模式）

    首次调用时从环境变量加载配置，后续调用返回缓存的实例。

    Raises:
        ConfigError: 配置加载失败
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """
    重置全局配置实例（用于测试）

    调用后下次 get_config() 将重新从环境变量加载。
    """
    global _config
    _config = None


def override_config(config: ServerConfig) -> None:
    """
    覆盖全局配置实例（测试专用）

    测试完成后应调用 reset_config() 恢复默认行为。

    Usage:
        override_config(ServerConfig(server_name="test-server", port=9000))
        # 测试代码...
        reset_config()
    """
    global _config
    _config = config


def get_config_or_none() -> Optional[ServerConfig]:
    """获取全局配置实例（如果已初始化），不触发延迟加载"""
    return _config


def validate_config(config: Optional[ServerConfig] = None) -> bool:
    """
    验证配置是否有效

    Args:
        config: 待验证的配置；为 None 时验证全局配置

    Returns:
        True 如果配置有效

    Raises:
        ConfigError: 配置无效
    """
    config = config or get_config()

    if not (1 <= config.port <= 65535):
        raise ConfigError(f"MCP_PORT 端口范围无效: {config.port}，应在 1-65535 之间")

    if not config.root_path.startswith("/"):
        raise ConfigError(f"MCP_ROOT_PATH 必须以 / 开头，当前值: {config.root_path}")

    if not config.server_name:
        raise ConfigError("MCP_SERVER_NAME 不能为空")

    return True
