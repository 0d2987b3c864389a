# src/ra_law_rag/backend/api/schemas_http/_common.py

"""
[职责] HTTP Schema 公共组件：ErrorResponse 与通用 ID 类型，作为 API 契约基础。
[边界] 仅描述 HTTP 输入/输出结构；不负责 trace 注入、异常映射或业务逻辑。
[上游关系] api/middleware 注入 trace/request；api/errors 将 DomainError 映射到 ErrorResponse。
[下游关系] api/schemas_http/search 复用本模块结构。
"""

from __future__ import annotations

from typing import Any, Dict, Literal, NewType

from pydantic import BaseModel, ConfigDict, Field


TraceId = NewType("TraceId", str)  # docstring: trace_id（跨请求链路）
RequestId = NewType("RequestId", str)  # docstring: request_id（单次请求）

ErrorCode = Literal[
    "bad_request",
    "external_dependency",
    "configuration_error",
    "internal_error",
]  # docstring: HTTP 层标准错误码

ErrorDetail = Dict[str, Any]  # docstring: ErrorResponse.error.detail 结构（必须 JSON-safe）


class ErrorInfo(BaseModel):
    """
    [职责] ErrorInfo：统一错误载体（code/message/trace_id/detail）。
    [边界] 不包含 HTTP status/retryable；这些由 api/errors.py 决定。
    """

    model_config = ConfigDict(extra="forbid")  # docstring: 锁死错误字段，避免 drift

    code: ErrorCode = Field(...)
    message: str = Field(..., min_length=1)
    trace_id: TraceId = Field(...)  # docstring: 由 middleware 注入
    detail: ErrorDetail = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """HTTP 错误响应的顶层包裹结构；trace/request id 同时经 header 透传。"""

    model_config = ConfigDict(extra="forbid")

    error: ErrorInfo = Field(...)
