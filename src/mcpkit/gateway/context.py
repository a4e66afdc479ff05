"""
执行上下文

每次调用（tools/call、resources/read、prompts/get）新建一个 ExecutionContext，
只在处理该调用的调用栈内使用，不跨并发请求共享。

守卫与拦截器通过它读取:
- 入站请求的只读视图（request）
- 操作类型与名称（kind / name）
- 注册时附加的元数据（如 permission）
- 本次调用的 correlation_id

set_data()/get_data() 提供调用内的暂存区，供守卫向后续拦截器传递信息
（例如认证守卫解析出的调用方身份）。
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from .models import JsonRpcRequest

if TYPE_CHECKING:
    from .registry import HandlerDescriptor, OperationKind


class ExecutionContext:
    """单次调用的执行上下文"""

    __slots__ = ("_request", "_descriptor", "_arguments", "_variables", "_correlation_id", "_data")

    def __init__(
        self,
        request: JsonRpcRequest,
        descriptor: "HandlerDescriptor",
        *,
        arguments: Optional[Mapping[str, Any]] = None,
        variables: Optional[Mapping[str, str]] = None,
        correlation_id: Optional[str] = None,
    ):
        self._request = request
        self._descriptor = descriptor
        self._arguments = MappingProxyType(dict(arguments or {}))
        self._variables = MappingProxyType(dict(variables or {}))
        self._correlation_id = correlation_id
        self._data: Dict[str, Any] = {}

    @property
    def request(self) -> JsonRpcRequest:
        """入站请求（JsonRpcRequest 为 frozen 模型）"""
        return self._request

    @property
    def params(self) -> Mapping[str, Any]:
        """请求 params 的只读视图"""
        return MappingProxyType(dict(self._request.params or {}))

    @property
    def method(self) -> str:
        return self._request.method

    @property
    def descriptor(self) -> "HandlerDescriptor":
        return self._descriptor

    @property
    def kind(self) -> "OperationKind":
        return self._descriptor.kind

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def arguments(self) -> Mapping[str, Any]:
        """调用参数（工具/提示词的 arguments；资源读取为空）"""
        return self._arguments

    @property
    def variables(self) -> Mapping[str, str]:
        """URI 模板提取出的变量（非模板资源为空）"""
        return self._variables

    @property
    def correlation_id(self) -> Optional[str]:
        return self._correlation_id

    def get_metadata(self, key: str, default: Any = None) -> Any:
        """读取注册时附加的元数据"""
        return self._descriptor.metadata.get(key, default)

    def get_all_metadata(self) -> Mapping[str, Any]:
        return self._descriptor.metadata

    def set_data(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get_data(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(kind={self._descriptor.kind.value!r}, "
            f"name={self._descriptor.name!r}, correlation_id={self._correlation_id!r})"
        )


__all__ = ["ExecutionContext"]
