# -*- coding: utf-8 -*-
"""
pytest 共享 fixtures

提供:
- 环境变量与全局配置隔离（每个测试前后重置 MCP_* 与 get_config() 单例）
- 常用能力注册表（add/echo 工具、静态资源、资源模板、提示词）
- Dispatcher 与 ServerConfig fixture
"""

import logging

import pytest

from mcpkit.gateway.config import ServerConfig, reset_config
from mcpkit.gateway.dispatcher import Dispatcher
from mcpkit.gateway.middleware import reset_request_correlation_id_for_testing
from mcpkit.gateway.registry import CapabilityRegistry

_MCP_ENV_VARS = (
    "MCP_SERVER_NAME",
    "MCP_SERVER_VERSION",
    "MCP_HOST",
    "MCP_PORT",
    "MCP_ROOT_PATH",
    "MCP_LOG_LEVEL",
    "MCP_AUTH_TOKEN",
    "MCP_AUTH_TOKENS_JSON",
    "MCP_CORS_ALLOW_ORIGIN",
)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """清理 MCP_* 环境变量并重置全局状态"""
    for name in _MCP_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    reset_request_correlation_id_for_testing()
    root_level = logging.getLogger("mcpkit").level
    yield
    reset_config()
    reset_request_correlation_id_for_testing()
    logging.getLogger("mcpkit").setLevel(root_level)


@pytest.fixture
def registry() -> CapabilityRegistry:
    """包含各类能力的注册表（未封存）"""
    reg = CapabilityRegistry()

    @reg.tool(description="两数相加")
    def add(a: int, b: int) -> int:
        return a + b

    @reg.tool()
    async def echo(text: str = "") -> str:
        """原样返回文本"""
        return text

    @reg.resource("config://app", mime_type="application/json")
    def app_config(uri, variables):
        return {"debug": False}

    @reg.resource_template("file:///{filename}", mime_type="text/plain")
    def read_file(uri, variables):
        return f"content of {variables['filename']}"

    @reg.resource_template("user:///{userId}/profile")
    def user_profile(uri, variables):
        return {"id": variables["userId"]}

    @reg.prompt(description="问候语")
    def greeting(name: str, style: str = "plain"):
        return f"Hello, {name} ({style})"

    return reg


@pytest.fixture
def dispatcher(registry) -> Dispatcher:
    return Dispatcher(registry, server_name="test-server", server_version="9.9.9")


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(server_name="test-server", server_version="9.9.9")
