"""
能力注册表

在应用装配阶段通过显式 API 注册能力，生成不可变的 HandlerDescriptor 集合，
交给 Dispatcher 在运行期只读使用。

使用示例:
    registry = CapabilityRegistry()

    registry.register_tool("add", lambda a, b: a + b, description="两数相加")

    @registry.resource_template("user:///{userId}/profile", mime_type="application/json")
    async def user_profile(uri, variables):
        return {"id": variables["userId"]}

    @registry.prompt(guards=[PermissionGuard()], metadata={"permission": "prompts:read"})
    def greeting(name: str):
        return f"Hello, {name}"

    registry.seal()

约束:
- 操作键 (kind, 标识) 在同一注册表内唯一，重复注册抛出 RegistryError
  （标识：工具/提示词为 name，静态资源为 uri，资源模板为模板字符串）
- seal() 之后注册表只读，继续注册抛出 RegistryError
- 列表顺序即注册顺序；资源模板按注册顺序参与匹配（先注册者胜出）
"""

import enum
import inspect
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
)

from pydantic import BaseModel

from .pipeline import is_guard, is_interceptor
from .uri_template import TemplateMatch, UriTemplate, resolve

logger = logging.getLogger("mcpkit.gateway.registry")


class RegistryError(Exception):
    """注册表错误（重复注册、非法模板、注册表已封存等）"""

    pass


class OperationKind(str, enum.Enum):
    """操作类型"""

    TOOL = "tool"
    RESOURCE = "resource"
    RESOURCE_TEMPLATE = "resource_template"
    PROMPT = "prompt"


@dataclass(frozen=True, eq=False)
class HandlerDescriptor:
    """
    单个操作的已解析注册记录

    注册后不可变；Dispatcher 只引用、不复制。

    通用字段:
        kind / name / handler / guards / interceptors / metadata / public
        description / version / deprecated / deprecation_message

    按类型的字段:
        工具: input_schema（JSON Schema）、args_model（可选 pydantic 模型）
        资源: uri 或 uri_template、mime_type；模板可带 variables_model 校验路径变量
        提示词: arguments（[{name, description, required}]）、args_model
    """

    kind: OperationKind
    name: str
    handler: Callable[..., Any]
    guards: Tuple[Any, ...] = ()
    interceptors: Tuple[Any, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    public: bool = False
    description: str = ""
    version: Optional[str] = None
    deprecated: bool = False
    deprecation_message: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = None
    args_model: Optional[Type[BaseModel]] = None
    uri: Optional[str] = None
    uri_template: Optional[UriTemplate] = None
    variables_model: Optional[Type[BaseModel]] = None
    mime_type: Optional[str] = None
    arguments: Tuple[Dict[str, Any], ...] = ()

    @property
    def identifier(self) -> str:
        """操作键中的标识部分"""
        if self.kind is OperationKind.RESOURCE:
            return self.uri or self.name
        if self.kind is OperationKind.RESOURCE_TEMPLATE and self.uri_template is not None:
            return self.uri_template.template
        return self.name

    @property
    def key(self) -> Tuple[OperationKind, str]:
        return (self.kind, self.identifier)


# ===================== 工具输入 Schema 推导 =====================

_JSON_TYPES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    dict: "object",
}


def _annotation_type(annotation: Any) -> Optional[str]:
    if annotation is inspect.Parameter.empty:
        return None
    origin = getattr(annotation, "__origin__", None)
    return _JSON_TYPES.get(origin or annotation)


def schema_from_signature(handler: Callable[..., Any]) -> Dict[str, Any]:
    """
    从 handler 签名推导 JSON Schema

    - 每个具名参数对应一个属性，带注解时映射基础类型
    - 无默认值的参数为 required
    - *args / **kwargs 不参与推导
    """
    properties: Dict[str, Any] = {}
    required: List[str] = []
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return {"type": "object", "properties": {}}

    for param in signature.parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        prop: Dict[str, Any] = {}
        json_type = _annotation_type(param.annotation)
        if json_type:
            prop["type"] = json_type
        if param.default is inspect.Parameter.empty:
            required.append(param.name)
        properties[param.name] = prop

    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _prompt_arguments_from_signature(handler: Callable[..., Any]) -> List[Dict[str, Any]]:
    schema = schema_from_signature(handler)
    required = set(schema.get("required", []))
    return [{"name": name, "required": name in required} for name in schema["properties"]]


def _prompt_arguments_from_model(args_model: Type[BaseModel]) -> List[Dict[str, Any]]:
    arguments: List[Dict[str, Any]] = []
    for name, info in args_model.model_fields.items():
        argument: Dict[str, Any] = {"name": info.alias or name, "required": info.is_required()}
        if info.description:
            argument["description"] = info.description
        arguments.append(argument)
    return arguments


def _first_doc_line(handler: Callable[..., Any]) -> str:
    doc = inspect.getdoc(handler) or ""
    return doc.strip().splitlines()[0] if doc.strip() else ""


# ===================== 注册表 =====================


class CapabilityRegistry:
    """
    能力注册表

    线程安全: 注册阶段否（仅在装配阶段单线程调用）；seal() 之后只读访问安全
    """

    def __init__(self) -> None:
        self._tools: Dict[str, HandlerDescriptor] = {}
        self._resources: Dict[str, HandlerDescriptor] = {}
        self._templates: Dict[str, HandlerDescriptor] = {}
        self._prompts: Dict[str, HandlerDescriptor] = {}
        self._sealed = False

    # ---------- 生命周期 ----------

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> "CapabilityRegistry":
        """封存注册表（幂等），之后不再接受注册"""
        if not self._sealed:
            self._sealed = True
            logger.debug(
                "注册表已封存",
                extra={
                    "tools": len(self._tools),
                    "resources": len(self._resources),
                    "resource_templates": len(self._templates),
                    "prompts": len(self._prompts),
                },
            )
        return self

    def _check_writable(self) -> None:
        if self._sealed:
            raise RegistryError("Registry is sealed; register capabilities before serving")

    @staticmethod
    def _policies(
        guards: Optional[Sequence[Any]], interceptors: Optional[Sequence[Any]], label: str
    ) -> Tuple[Tuple[Any, ...], Tuple[Any, ...]]:
        guard_tuple = tuple(guards or ())
        interceptor_tuple = tuple(interceptors or ())
        # 守卫/拦截器必须是实例或函数；误传类本身时在注册期拒绝
        for policy in guard_tuple + interceptor_tuple:
            if inspect.isclass(policy):
                raise RegistryError(
                    f"Policy for {label} must be an instance, got class {policy.__name__}"
                )
        for guard in guard_tuple:
            if not is_guard(guard):
                raise RegistryError(f"Invalid guard for {label}: {guard!r}")
        for interceptor in interceptor_tuple:
            if not is_interceptor(interceptor):
                raise RegistryError(f"Invalid interceptor for {label}: {interceptor!r}")
        return guard_tuple, interceptor_tuple

    def _store(self, table: Dict[str, HandlerDescriptor], descriptor: HandlerDescriptor) -> None:
        identifier = descriptor.identifier
        if identifier in table:
            raise RegistryError(f"Duplicate {descriptor.kind.value} registration: {identifier}")
        table[identifier] = descriptor
        logger.debug(
            "注册能力",
            extra={"kind": descriptor.kind.value, "identifier": identifier},
        )

    # ---------- 注册 API ----------

    def register_tool(
        self,
        name: str,
        handler: Callable[..., Any],
        *,
        description: Optional[str] = None,
        input_schema: Optional[Dict[str, Any]] = None,
        args_model: Optional[Type[BaseModel]] = None,
        guards: Optional[Sequence[Any]] = None,
        interceptors: Optional[Sequence[Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        public: bool = False,
        version: Optional[str] = None,
        deprecated: bool = False,
        deprecation_message: Optional[str] = None,
    ) -> HandlerDescriptor:
        """
        注册工具

        input_schema 未显式提供时：有 args_model 则取其 model_json_schema()，
        否则从 handler 签名推导。
        """
        self._check_writable()
        if not name:
            raise RegistryError("Tool name is required")
        if not callable(handler):
            raise RegistryError(f"Tool handler must be callable: {name}")
        guard_tuple, interceptor_tuple = self._policies(guards, interceptors, f"tool {name}")

        if input_schema is None:
            if args_model is not None:
                input_schema = args_model.model_json_schema()
            else:
                input_schema = schema_from_signature(handler)

        descriptor = HandlerDescriptor(
            kind=OperationKind.TOOL,
            name=name,
            handler=handler,
            guards=guard_tuple,
            interceptors=interceptor_tuple,
            metadata=MappingProxyType(dict(metadata or {})),
            public=public,
            description=description if description is not None else _first_doc_line(handler),
            version=version,
            deprecated=deprecated,
            deprecation_message=deprecation_message,
            input_schema=input_schema,
            args_model=args_model,
        )
        self._store(self._tools, descriptor)
        return descriptor

    def register_resource(
        self,
        uri: str,
        handler: Callable[..., Any],
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        mime_type: Optional[str] = None,
        guards: Optional[Sequence[Any]] = None,
        interceptors: Optional[Sequence[Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        public: bool = False,
        version: Optional[str] = None,
        deprecated: bool = False,
        deprecation_message: Optional[str] = None,
    ) -> HandlerDescriptor:
        """
        注册静态资源

        handler 调用形式: handler(uri, variables)，静态资源的 variables 为空 dict。
        """
        self._check_writable()
        if not uri:
            raise RegistryError("Resource URI is required")
        if not callable(handler):
            raise RegistryError(f"Resource handler must be callable: {uri}")
        guard_tuple, interceptor_tuple = self._policies(guards, interceptors, f"resource {uri}")
        descriptor = HandlerDescriptor(
            kind=OperationKind.RESOURCE,
            name=name or uri,
            handler=handler,
            guards=guard_tuple,
            interceptors=interceptor_tuple,
            metadata=MappingProxyType(dict(metadata or {})),
            public=public,
            description=description if description is not None else _first_doc_line(handler),
            version=version,
            deprecated=deprecated,
            deprecation_message=deprecation_message,
            uri=uri,
            mime_type=mime_type,
        )
        self._store(self._resources, descriptor)
        return descriptor

    def register_resource_template(
        self,
        uri_template: str,
        handler: Callable[..., Any],
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        mime_type: Optional[str] = None,
        variables_model: Optional[Type[BaseModel]] = None,
        guards: Optional[Sequence[Any]] = None,
        interceptors: Optional[Sequence[Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        public: bool = False,
        version: Optional[str] = None,
        deprecated: bool = False,
        deprecation_message: Optional[str] = None,
    ) -> HandlerDescriptor:
        """
        注册资源模板

        handler 调用形式: handler(uri, variables)，variables 为 {变量名: 段原值}。
        提供 variables_model 时，读取前先用它校验提取出的变量，handler 收到的是校验后的字段值。

        Raises:
            RegistryError: 模板非法或重复；variables_model 的必填字段不在模板变量中
        """
        self._check_writable()
        try:
            template = UriTemplate(uri_template)
        except ValueError as e:
            raise RegistryError(str(e)) from e
        if not callable(handler):
            raise RegistryError(f"Resource template handler must be callable: {uri_template}")
        if variables_model is not None:
            unknown = [
                info.alias or field_name
                for field_name, info in variables_model.model_fields.items()
                if info.is_required() and (info.alias or field_name) not in template.variables
            ]
            if unknown:
                raise RegistryError(
                    f"Variables model requires fields missing from template {uri_template}: "
                    f"{', '.join(unknown)}"
                )
        guard_tuple, interceptor_tuple = self._policies(
            guards, interceptors, f"resource template {uri_template}"
        )
        descriptor = HandlerDescriptor(
            kind=OperationKind.RESOURCE_TEMPLATE,
            name=name or uri_template,
            handler=handler,
            guards=guard_tuple,
            interceptors=interceptor_tuple,
            metadata=MappingProxyType(dict(metadata or {})),
            public=public,
            description=description if description is not None else _first_doc_line(handler),
            version=version,
            deprecated=deprecated,
            deprecation_message=deprecation_message,
            uri_template=template,
            variables_model=variables_model,
            mime_type=mime_type,
        )
        self._store(self._templates, descriptor)
        return descriptor

    def register_prompt(
        self,
        name: str,
        handler: Callable[..., Any],
        *,
        description: Optional[str] = None,
        arguments: Optional[Iterable[Mapping[str, Any]]] = None,
        args_model: Optional[Type[BaseModel]] = None,
        guards: Optional[Sequence[Any]] = None,
        interceptors: Optional[Sequence[Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        public: bool = False,
        version: Optional[str] = None,
        deprecated: bool = False,
        deprecation_message: Optional[str] = None,
    ) -> HandlerDescriptor:
        """
        注册提示词

        arguments 未提供时：有 args_model 则取其字段（必填性与描述），
        否则从 handler 签名推导（无默认值的参数为必填）。
        """
        self._check_writable()
        if not name:
            raise RegistryError("Prompt name is required")
        if not callable(handler):
            raise RegistryError(f"Prompt handler must be callable: {name}")
        guard_tuple, interceptor_tuple = self._policies(guards, interceptors, f"prompt {name}")

        if arguments is None and args_model is not None:
            prompt_arguments = _prompt_arguments_from_model(args_model)
        elif arguments is None:
            prompt_arguments = _prompt_arguments_from_signature(handler)
        else:
            prompt_arguments = []
            for argument in arguments:
                if not argument.get("name"):
                    raise RegistryError(f"Prompt argument without name in prompt {name}")
                prompt_arguments.append(dict(argument))

        descriptor = HandlerDescriptor(
            kind=OperationKind.PROMPT,
            name=name,
            handler=handler,
            guards=guard_tuple,
            interceptors=interceptor_tuple,
            metadata=MappingProxyType(dict(metadata or {})),
            public=public,
            description=description if description is not None else _first_doc_line(handler),
            version=version,
            deprecated=deprecated,
            deprecation_message=deprecation_message,
            args_model=args_model,
            arguments=tuple(prompt_arguments),
        )
        self._store(self._prompts, descriptor)
        return descriptor

    # ---------- 装饰器形式 ----------

    def tool(self, name: Optional[str] = None, **options: Any) -> Callable[[Callable], Callable]:
        """工具装饰器，name 默认取函数名"""

        def decorator(func: Callable) -> Callable:
            self.register_tool(name or func.__name__, func, **options)
            return func

        return decorator

    def resource(self, uri: str, **options: Any) -> Callable[[Callable], Callable]:
        def decorator(func: Callable) -> Callable:
            options.setdefault("name", func.__name__)
            self.register_resource(uri, func, **options)
            return func

        return decorator

    def resource_template(
        self, uri_template: str, **options: Any
    ) -> Callable[[Callable], Callable]:
        def decorator(func: Callable) -> Callable:
            options.setdefault("name", func.__name__)
            self.register_resource_template(uri_template, func, **options)
            return func

        return decorator

    def prompt(self, name: Optional[str] = None, **options: Any) -> Callable[[Callable], Callable]:
        def decorator(func: Callable) -> Callable:
            self.register_prompt(name or func.__name__, func, **options)
            return func

        return decorator

    # ---------- 查询 ----------

    def get_tool(self, name: str) -> Optional[HandlerDescriptor]:
        return self._tools.get(name)

    def get_prompt(self, name: str) -> Optional[HandlerDescriptor]:
        return self._prompts.get(name)

    def get_resource(self, uri: str) -> Optional[HandlerDescriptor]:
        """精确匹配静态资源"""
        return self._resources.get(uri)

    def resolve_resource(self, uri: str) -> Optional[TemplateMatch]:
        """
        解析资源 URI

        1. 静态资源精确匹配优先（variables 为空）
        2. 否则按注册顺序匹配资源模板

        Returns:
            TemplateMatch(target=HandlerDescriptor, variables)；无匹配返回 None
        """
        static = self._resources.get(uri)
        if static is not None:
            return TemplateMatch(static, {})
        return resolve(
            uri,
            (
                (descriptor.uri_template, descriptor)
                for descriptor in self._templates.values()
                if descriptor.uri_template is not None
            ),
        )

    def list_tools(self) -> Tuple[HandlerDescriptor, ...]:
        return tuple(self._tools.values())

    def list_resources(self) -> Tuple[HandlerDescriptor, ...]:
        return tuple(self._resources.values())

    def list_resource_templates(self) -> Tuple[HandlerDescriptor, ...]:
        return tuple(self._templates.values())

    def list_prompts(self) -> Tuple[HandlerDescriptor, ...]:
        return tuple(self._prompts.values())

    def iter_descriptors(self) -> Iterable[HandlerDescriptor]:
        """按 工具 → 资源 → 资源模板 → 提示词 的顺序遍历全部描述符"""
        yield from self._tools.values()
        yield from self._resources.values()
        yield from self._templates.values()
        yield from self._prompts.values()

    def __len__(self) -> int:
        return len(self._tools) + len(self._resources) + len(self._templates) + len(self._prompts)


__all__ = [
    "RegistryError",
    "OperationKind",
    "HandlerDescriptor",
    "CapabilityRegistry",
    "schema_from_signature",
]
