"""
守卫链 → 拦截器链 组合

执行顺序（固定且有意义）:

    guard_1 → guard_2 → ... → guard_n          （全部通过后才进入拦截器）
        interceptor_1.before
            interceptor_2.before
                handler
            interceptor_2.after
        interceptor_1.after

守卫链:
- 按声明顺序严格串行执行，每个守卫都等待完成后才执行下一个
- 第一个返回假值的守卫转换为 ForbiddenError("Guard <name> denied access")
- 守卫抛出的异常原样向上传播
- 任一守卫拒绝后，后续守卫、所有拦截器与 handler 都不会执行

拦截器链（洋葱模型）:
- 第一个声明的拦截器位于最外层
- 每个拦截器收到 call_next（剩余链路：内层拦截器 + handler），
  可以调用零次、一次或多次，并自行决定如何变换结果或异常
- 未声明拦截器时，守卫通过后直接调用 handler

守卫与拦截器都支持两种形态，同步或异步均可:
- 对象: guard.can_activate(context) / interceptor.intercept(context, call_next)
- 普通函数: guard(context) / interceptor(context, call_next)
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Sequence, Union, runtime_checkable

from .context import ExecutionContext
from .exceptions import ForbiddenError

logger = logging.getLogger("mcpkit.gateway.pipeline")

# 剩余调用链：每次调用返回一个新的 awaitable
CallNext = Callable[[], Awaitable[Any]]


@runtime_checkable
class Guard(Protocol):
    """授权守卫接口"""

    def can_activate(self, context: ExecutionContext) -> Union[bool, Awaitable[bool]]: ...


@runtime_checkable
class Interceptor(Protocol):
    """拦截器接口"""

    def intercept(self, context: ExecutionContext, call_next: CallNext) -> Any: ...


def is_guard(obj: Any) -> bool:
    """判断对象能否作为守卫使用"""
    return isinstance(obj, Guard) or callable(obj)


def is_interceptor(obj: Any) -> bool:
    """判断对象能否作为拦截器使用"""
    return isinstance(obj, Interceptor) or callable(obj)


def policy_name(policy: Any) -> str:
    """
    守卫/拦截器的展示名称

    优先使用 name 属性，其次函数名，最后类名。
    """
    name = getattr(policy, "name", None)
    if isinstance(name, str) and name:
        return name
    if inspect.isfunction(policy) or inspect.ismethod(policy):
        return policy.__name__
    return type(policy).__name__


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def run_guards(guards: Sequence[Any], context: ExecutionContext) -> None:
    """
    按声明顺序执行守卫

    Raises:
        ForbiddenError: 某个守卫返回假值
        Exception: 守卫自身抛出的异常（原样传播）
    """
    for guard in guards:
        check = guard.can_activate if isinstance(guard, Guard) else guard
        allowed = await _resolve(check(context))
        if not allowed:
            name = policy_name(guard)
            logger.info(
                "守卫拒绝访问",
                extra={
                    "guard": name,
                    "operation": context.name,
                    "kind": context.kind.value,
                    "correlation_id": context.correlation_id,
                },
            )
            raise ForbiddenError(f"Guard {name} denied access")


def _bind(interceptor: Any, context: ExecutionContext, inner: CallNext) -> CallNext:
    intercept = interceptor.intercept if isinstance(interceptor, Interceptor) else interceptor

    async def call_next() -> Any:
        return await _resolve(intercept(context, inner))

    return call_next


def compose_interceptors(
    interceptors: Sequence[Any], context: ExecutionContext, invoke: CallNext
) -> CallNext:
    """
    将拦截器按洋葱模型包裹在 invoke 外层

    Returns:
        最外层的 call_next；调用它即执行整条拦截器链
    """
    call_next = invoke
    for interceptor in reversed(interceptors):
        call_next = _bind(interceptor, context, call_next)
    return call_next


async def run_pipeline(
    guards: Sequence[Any],
    interceptors: Sequence[Any],
    context: ExecutionContext,
    invoke: CallNext,
) -> Any:
    """
    执行完整链路：守卫链 → 拦截器链 → handler

    Args:
        guards: 有序守卫列表
        interceptors: 有序拦截器列表（第一个为最外层）
        context: 本次调用的执行上下文
        invoke: 最内层调用（参数校验 + handler）

    Returns:
        handler（经拦截器变换后）的返回值
    """
    await run_guards(guards, context)
    if not interceptors:
        return await invoke()
    return await compose_interceptors(interceptors, context, invoke)()


__all__ = [
    "CallNext",
    "Guard",
    "Interceptor",
    "is_guard",
    "is_interceptor",
    "policy_name",
    "run_guards",
    "compose_interceptors",
    "run_pipeline",
]
