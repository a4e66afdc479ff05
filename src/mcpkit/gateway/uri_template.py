"""
URI 模板解析

模板是带 `{variable}` 占位段的资源标识，例如:
    file:///{filename}
    user:///{userId}/profile

匹配规则:
1. 模板与候选 URI 都按 "/" 切分为段（scheme 前缀如 "file:" 与空段作为字面量参与比较）
2. 段数必须完全相等（不支持跨段通配）
3. 形如 `{name}` 的模板段匹配恰好一个非空段，并把该段原值绑定到 name
4. 其余模板段必须与候选段逐字节相等
5. 多个模板同时匹配时，先注册者胜出

静态 URI 的精确匹配优先于任何模板，这一步由 Registry 在调用 resolve() 之前完成。
"""

import re
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

_PLACEHOLDER_PATTERN = re.compile(r"^\{([A-Za-z_][A-Za-z0-9_]*)\}$")
_SEGMENT_SEPARATOR = "/"


class _Segment(NamedTuple):
    literal: str
    variable: Optional[str]


class UriTemplate:
    """
    已解析的 URI 模板（不可变）

    构造时校验模板格式，非法模板抛出 ValueError:
    - 占位符必须独占一整段（"{id}.json" 这类部分段占位不支持）
    - 变量名不可重复
    - 至少包含一个占位符
    """

    __slots__ = ("_template", "_segments", "_variables")

    def __init__(self, template: str):
        if not isinstance(template, str) or not template:
            raise ValueError("URI template must be a non-empty string")

        segments: List[_Segment] = []
        variables: List[str] = []
        for part in template.split(_SEGMENT_SEPARATOR):
            placeholder = _PLACEHOLDER_PATTERN.match(part)
            if placeholder:
                name = placeholder.group(1)
                if name in variables:
                    raise ValueError(f"Duplicate variable {name!r} in URI template: {template}")
                variables.append(name)
                segments.append(_Segment(part, name))
            elif "{" in part or "}" in part:
                raise ValueError(
                    f"Placeholder must occupy a whole segment in URI template: {template}"
                )
            else:
                segments.append(_Segment(part, None))

        if not variables:
            raise ValueError(f"URI template has no variables: {template}")

        self._template = template
        self._segments: Tuple[_Segment, ...] = tuple(segments)
        self._variables: Tuple[str, ...] = tuple(variables)

    @property
    def template(self) -> str:
        return self._template

    @property
    def variables(self) -> Tuple[str, ...]:
        return self._variables

    def match(self, uri: str) -> Optional[Dict[str, str]]:
        """
        用模板匹配具体 URI

        Returns:
            匹配成功返回 {变量名: 段原值}，否则返回 None
        """
        parts = uri.split(_SEGMENT_SEPARATOR)
        if len(parts) != len(self._segments):
            return None

        bound: Dict[str, str] = {}
        for segment, part in zip(self._segments, parts):
            if segment.variable is None:
                if segment.literal != part:
                    return None
            elif not part:
                return None
            else:
                bound[segment.variable] = part
        return bound

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UriTemplate):
            return NotImplemented
        return self._template == other._template

    def __hash__(self) -> int:
        return hash(self._template)

    def __repr__(self) -> str:
        return f"UriTemplate({self._template!r})"

    def __str__(self) -> str:
        return self._template


class TemplateMatch(NamedTuple):
    """模板匹配结果：命中的目标（通常是 HandlerDescriptor）与提取出的变量"""

    target: Any
    variables: Dict[str, str]


def resolve(uri: str, templates: Iterable[Tuple[UriTemplate, Any]]) -> Optional[TemplateMatch]:
    """
    按注册顺序解析 URI

    Args:
        uri: 待解析的具体 URI
        templates: 有序的 (UriTemplate, target) 序列

    Returns:
        第一个完全匹配的 TemplateMatch；全部不匹配时返回 None
    """
    for template, target in templates:
        variables = template.match(uri)
        if variables is not None:
            return TemplateMatch(target, variables)
    return None


__all__ = ["UriTemplate", "TemplateMatch", "resolve"]
