"""
JSON-RPC 2.0 / MCP 数据模型

提供：
1. 请求/响应信封模型（JsonRpcRequest / JsonRpcResponse / JsonRpcError）
2. 结构化错误数据（ErrorData）
3. 列表方法返回的能力描述模型（ToolDefinition / ResourceDefinition / ...）
4. 响应构造辅助函数与请求解析

响应信封不变量：result 与 error 二者恰有其一，id 始终存在（无法确定时为 null）。
"""

from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from .error_codes import McpErrorCategory, McpErrorCode, McpErrorReason
from .error_redaction import redact_outbound_error

JSONRPC_VERSION = "2.0"

# 合法的请求 ID 类型（bool 不算整数）
RequestId = Union[StrictInt, StrictStr]


# ===================== 结构化错误数据 =====================


class ErrorData(BaseModel):
    """
    JSON-RPC error.data 的稳定结构

    字段说明:
    - category: 错误分类 (protocol/validation/business/dependency/internal)
    - reason: 错误原因码（如 METHOD_NOT_FOUND, FORBIDDEN）
    - retryable: 是否可重试
    - correlation_id: 请求追踪 ID
    - details: 附加详情（可选）

    Example:
        {
            "category": "protocol",
            "reason": "METHOD_NOT_FOUND",
            "retryable": false,
            "correlation_id": "corr-abc123def4567890",
            "details": {"method": "tools/unknown"}
        }
    """

    category: str = Field(..., description="错误分类")
    reason: str = Field(..., description="错误原因码")
    retryable: bool = Field(False, description="是否可重试")
    correlation_id: Optional[str] = Field(None, description="请求追踪 ID")
    details: Optional[Dict[str, Any]] = Field(None, description="附加详情")

    def to_dict(self) -> Dict[str, Any]:
        """转换为 dict（排除 None 字段）"""
        return self.model_dump(exclude_none=True)


# ===================== JSON-RPC 2.0 信封 =====================


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 错误对象"""

    code: int = Field(..., description="错误码")
    message: str = Field(..., description="错误消息")
    data: Optional[Any] = Field(None, description="附加数据")


class JsonRpcRequest(BaseModel):
    """
    JSON-RPC 2.0 请求

    id 缺失或为 null 表示通知（不返回响应）。
    """

    model_config = ConfigDict(frozen=True)

    jsonrpc: Literal["2.0"] = Field(JSONRPC_VERSION, description="JSON-RPC 版本")
    id: Optional[RequestId] = Field(None, description="请求 ID")
    method: StrictStr = Field(..., min_length=1, description="方法名")
    params: Optional[Dict[str, Any]] = Field(None, description="方法参数")

    @property
    def is_notification(self) -> bool:
        return self.id is None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 响应"""

    jsonrpc: str = Field(JSONRPC_VERSION, description="JSON-RPC 版本")
    id: Optional[Any] = Field(None, description="请求 ID")
    result: Optional[Any] = Field(None, description="成功结果")
    error: Optional[JsonRpcError] = Field(None, description="错误对象")

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        """
        转换为线上格式 dict

        - id 始终输出（可能为 null）
        - 成功时仅含 result，失败时仅含 error（error.data 为空时省略）
        """
        body: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            body["error"] = self.error.model_dump(exclude_none=True)
        else:
            body["result"] = self.result
        return body


# ===================== 能力描述模型（list 方法返回） =====================


class ToolDefinition(BaseModel):
    """工具定义"""

    name: str = Field(..., description="工具名称")
    description: str = Field("", description="工具描述")
    inputSchema: Dict[str, Any] = Field(..., description="输入参数 JSON Schema")
    version: Optional[str] = Field(None, description="工具版本")
    deprecated: Optional[bool] = Field(None, description="是否已废弃")
    deprecationMessage: Optional[str] = Field(None, description="废弃说明")


class ResourceDefinition(BaseModel):
    """静态资源定义"""

    uri: str = Field(..., description="资源 URI")
    name: str = Field(..., description="资源名称")
    description: str = Field("", description="资源描述")
    mimeType: Optional[str] = Field(None, description="MIME 类型")
    version: Optional[str] = Field(None, description="资源版本")
    deprecated: Optional[bool] = Field(None, description="是否已废弃")
    deprecationMessage: Optional[str] = Field(None, description="废弃说明")


class ResourceTemplateDefinition(BaseModel):
    """资源模板定义"""

    uriTemplate: str = Field(..., description="URI 模板")
    name: str = Field(..., description="模板名称")
    description: str = Field("", description="模板描述")
    mimeType: Optional[str] = Field(None, description="MIME 类型")
    version: Optional[str] = Field(None, description="模板版本")
    deprecated: Optional[bool] = Field(None, description="是否已废弃")
    deprecationMessage: Optional[str] = Field(None, description="废弃说明")


class PromptArgument(BaseModel):
    """提示词参数定义"""

    name: str = Field(..., description="参数名")
    description: Optional[str] = Field(None, description="参数描述")
    required: bool = Field(False, description="是否必填")


class PromptDefinition(BaseModel):
    """提示词定义"""

    name: str = Field(..., description="提示词名称")
    description: str = Field("", description="提示词描述")
    arguments: List[PromptArgument] = Field(default_factory=list, description="参数列表")
    version: Optional[str] = Field(None, description="提示词版本")
    deprecated: Optional[bool] = Field(None, description="是否已废弃")
    deprecationMessage: Optional[str] = Field(None, description="废弃说明")


# ===================== 响应构造辅助函数 =====================


def make_jsonrpc_error(
    id: Optional[Any],
    code: int,
    message: str,
    data: Optional[Any] = None,
) -> JsonRpcResponse:
    """构造 JSON-RPC 错误响应（消息与 data 经过脱敏）"""
    message, data = redact_outbound_error(message, data)
    return JsonRpcResponse(id=id, error=JsonRpcError(code=code, message=message, data=data))


def make_jsonrpc_result(id: Optional[Any], result: Any) -> JsonRpcResponse:
    """构造 JSON-RPC 成功响应"""
    return JsonRpcResponse(id=id, result=result)


# ===================== 请求解析 =====================


def _recoverable_id(body: Dict[str, Any]) -> Optional[Any]:
    """从无效请求中尽量恢复 id（仅合法类型才回显）"""
    raw_id = body.get("id")
    if isinstance(raw_id, bool):
        return None
    if isinstance(raw_id, (int, str)):
        return raw_id
    return None


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", ())) or "request"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_jsonrpc_request(
    body: Any,
    correlation_id: Optional[str] = None,
) -> Tuple[Optional[JsonRpcRequest], Optional[JsonRpcResponse]]:
    """
    解析 JSON-RPC 请求

    Args:
        body: 已解码的单个请求体（应为 dict）
        correlation_id: 写入错误响应 error.data 的追踪 ID

    Returns:
        (request, error_response)
        - 成功时返回 (JsonRpcRequest, None)
        - 失败时返回 (None, INVALID_REQUEST 错误响应)
    """
    error_data = ErrorData(
        category=McpErrorCategory.PROTOCOL,
        reason=McpErrorReason.INVALID_REQUEST,
        correlation_id=correlation_id,
    ).to_dict()

    if not isinstance(body, dict):
        return None, make_jsonrpc_error(
            None,
            McpErrorCode.INVALID_REQUEST,
            "Invalid Request: request must be an object",
            data=error_data,
        )
    try:
        return JsonRpcRequest.model_validate(body), None
    except ValidationError as e:
        return None, make_jsonrpc_error(
            _recoverable_id(body),
            McpErrorCode.INVALID_REQUEST,
            f"Invalid Request: {_describe_validation_error(e)}",
            data=error_data,
        )
