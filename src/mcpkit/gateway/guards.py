"""
内置守卫

- AuthGuard: 校验 params 中携带的 API Key（校验函数可注入）
- PermissionGuard: 按注册元数据 permission/role 校验调用方权限（权限提取函数可注入）
- RateLimitGuard: 按操作维度的滑动窗口限流

定制方式是组合而非继承：把校验/提取逻辑作为普通函数传入构造器，
或直接用任意满足 can_activate(context) 的对象/函数作为守卫。

守卫实例在所有并发调用间共享，不保存单次请求的可变状态；
RateLimitGuard 的窗口计数是跨请求的外部状态，按操作键隔离。
"""

import inspect
import math
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Union

from .context import ExecutionContext
from .exceptions import ForbiddenError, RateLimitError, UnauthorizedError

KeyValidator = Callable[[str], Union[Any, Awaitable[Any]]]
PermissionExtractor = Callable[[ExecutionContext], Sequence[str]]


def accept_any_key(api_key: str) -> bool:
    """默认 API Key 校验：任意非空值均通过"""
    return bool(api_key)


def extract_api_key(params: Any, key_param: str = "auth") -> Optional[str]:
    """
    从 params 中提取 API Key

    支持两种形式:
    - {"auth": "key"}
    - {"auth": {"apiKey": "key"}}
    """
    raw = params.get(key_param) if hasattr(params, "get") else None
    if isinstance(raw, dict):
        raw = raw.get("apiKey") or raw.get("api_key")
    if isinstance(raw, str) and raw:
        return raw
    return None


def params_permissions(context: ExecutionContext) -> List[str]:
    """默认权限提取：读取 params.permissions（字符串或字符串列表）"""
    raw = context.params.get("permissions")
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, (list, tuple)):
        return [str(item) for item in raw]
    return []


class AuthGuard:
    """
    API Key 守卫

    Args:
        validate_key: 校验函数（同步或异步）。返回假值表示拒绝；
                      返回非 bool 的真值时，作为调用方身份写入 context.set_data("principal", ...)
        key_param: params 中携带凭据的字段名
    """

    def __init__(self, validate_key: Optional[KeyValidator] = None, key_param: str = "auth"):
        self._validate_key = validate_key or accept_any_key
        self._key_param = key_param

    async def can_activate(self, context: ExecutionContext) -> bool:
        api_key = extract_api_key(context.params, self._key_param)
        if api_key is None:
            raise UnauthorizedError("API key required")

        verdict = self._validate_key(api_key)
        if inspect.isawaitable(verdict):
            verdict = await verdict
        if not verdict:
            raise UnauthorizedError("Invalid API key")
        if verdict is not True:
            context.set_data("principal", verdict)
        return True


class PermissionGuard:
    """
    权限守卫

    所需权限取自注册元数据（依次查找 metadata_keys，默认 permission、role），
    可为单个字符串或字符串列表（需全部具备）。未声明所需权限时直接放行。

    Raises:
        ForbiddenError: 权限不足，data 为 {"required": ..., "provided": [...]}
    """

    def __init__(
        self,
        extract_permissions: Optional[PermissionExtractor] = None,
        metadata_keys: Sequence[str] = ("permission", "role"),
    ):
        self._extract = extract_permissions or params_permissions
        self._metadata_keys = tuple(metadata_keys)

    def required_permissions(self, context: ExecutionContext) -> Optional[Any]:
        for key in self._metadata_keys:
            value = context.get_metadata(key)
            if value:
                return value
        return None

    def can_activate(self, context: ExecutionContext) -> bool:
        required = self.required_permissions(context)
        if required is None:
            return True

        needed = [required] if isinstance(required, str) else list(required)
        provided = list(self._extract(context))
        if all(item in provided for item in needed):
            return True

        raise ForbiddenError(
            f"Insufficient permissions. Required: {', '.join(needed)}",
            data={"required": required, "provided": provided},
        )


class RateLimitGuard:
    """
    滑动窗口限流守卫

    Args:
        limit: 窗口内允许的最大调用次数
        window: 窗口长度（秒）
        clock: 单调时钟（测试可注入）
        key_func: 限流维度，默认按 "<kind>:<name>" 即每个操作独立计数
    """

    def __init__(
        self,
        limit: int = 10,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        key_func: Optional[Callable[[ExecutionContext], str]] = None,
    ):
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")
        self._limit = limit
        self._window = window
        self._clock = clock
        self._key_func = key_func or (lambda ctx: f"{ctx.kind.value}:{ctx.name}")
        self._hits: Dict[str, Deque[float]] = {}

    def can_activate(self, context: ExecutionContext) -> bool:
        key = self._key_func(context)
        now = self._clock()
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - self._window:
            hits.popleft()

        if len(hits) >= self._limit:
            retry_after = max(1, math.ceil(self._window - (now - hits[0])))
            raise RateLimitError(
                f"Rate limit exceeded for {context.name}. Try again in {retry_after}s",
                data={"retryAfter": retry_after, "limit": self._limit},
            )
        hits.append(now)
        return True

    def reset(self, key: Optional[str] = None) -> None:
        """清空计数（key 为 None 时清空全部）"""
        if key is None:
            self._hits.clear()
        else:
            self._hits.pop(key, None)


__all__ = [
    "AuthGuard",
    "PermissionGuard",
    "RateLimitGuard",
    "accept_any_key",
    "extract_api_key",
    "params_permissions",
]
