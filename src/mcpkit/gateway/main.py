"""
mcpkit-server - MCP 服务 CLI 入口

启动命令:
    mcpkit-server --app myproject.capabilities:build_registry --port 8787
    或
    python -m mcpkit.gateway.main --app myproject.capabilities:build_registry

--app 指向一个返回 CapabilityRegistry 的工厂函数（也可直接指向注册表实例）。
其余配置从环境变量读取（见 mcpkit.gateway.config）。
"""

import argparse
import dataclasses
import importlib
import logging
import sys
from typing import List, Optional

from .config import ConfigError, ServerConfig, get_config, validate_config
from .registry import CapabilityRegistry

logger = logging.getLogger("mcpkit.gateway.main")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AppLoadError(Exception):
    """--app 目标无法加载"""

    pass


def load_registry(target: str) -> CapabilityRegistry:
    """
    加载 "package.module:attribute" 指向的注册表

    attribute 为 CapabilityRegistry 实例时直接使用，为可调用对象时调用后使用其返回值。

    Raises:
        AppLoadError: 格式错误、模块导入失败、属性不存在、工厂调用失败或返回值不是 CapabilityRegistry
    """
    module_name, sep, attr_name = target.partition(":")
    if not sep or not module_name or not attr_name:
        raise AppLoadError(f"--app 格式应为 package.module:factory，当前值: {target}")

    try:
        module = importlib.import_module(module_name)
    except Exception as e:
        raise AppLoadError(f"无法导入模块 {module_name}: {e}") from e

    try:
        obj = getattr(module, attr_name)
    except AttributeError as e:
        raise AppLoadError(f"模块 {module_name} 中不存在 {attr_name}") from e

    registry = obj if isinstance(obj, CapabilityRegistry) else None
    if registry is None and callable(obj):
        try:
            registry = obj()
        except Exception as e:
            raise AppLoadError(f"{target} 调用失败: {e}") from e
    if not isinstance(registry, CapabilityRegistry):
        raise AppLoadError(f"{target} 没有返回 CapabilityRegistry（得到 {type(registry).__name__}）")
    return registry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcpkit-server",
        description="mcpkit MCP 服务入口",
    )
    parser.add_argument(
        "--app",
        required=True,
        help="注册表工厂，格式 package.module:factory",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="监听地址（默认取 MCP_HOST，即 127.0.0.1）",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="监听端口（默认取 MCP_PORT，即 8787）",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI 启动入口"""
    args = build_parser().parse_args(argv)

    # 启动时校验配置
    try:
        config: ServerConfig = get_config()
        # 命令行覆盖只作用于本次启动的副本，不改动全局单例
        overrides = {}
        if args.host:
            overrides["host"] = args.host
        if args.port is not None:
            overrides["port"] = args.port
        if overrides:
            config = dataclasses.replace(config, **overrides)
        validate_config(config)
    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)

    try:
        registry = load_registry(args.app)
    except AppLoadError as e:
        print(f"加载失败: {e}", file=sys.stderr)
        return 1

    import uvicorn

    from .app import create_app

    app = create_app(registry, config=config)
    logger.info(
        f"服务启动: name={config.server_name}, host={config.host}, port={config.port}, "
        f"root_path={config.root_path}, capabilities={len(registry)}"
    )
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
