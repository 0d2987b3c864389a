# src/ra_law_rag/backend/api/errors.py

"""
[职责] API 错误映射：将异常统一转换为 ErrorResponse 与 HTTP status。
[边界] 不负责 trace/request 注入（由 middleware/deps 负责）；仅对未知异常记录一次日志。
[上游关系] routers 捕获异常后调用本模块；main.create_app 注册兜底 handler。
[下游关系] 返回 ErrorResponse 供前端/生成层消费。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from ra_law_rag.backend.api.schemas_http._common import ErrorResponse
from ra_law_rag.backend.schemas.audit import new_uuid
from ra_law_rag.backend.utils.constants import REQUEST_ID_HEADER, TRACE_ID_HEADER
from ra_law_rag.backend.utils.errors import DomainError, describe_error, to_http_error
from ra_law_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("api.errors")


def _ensure_trace_id(trace_id: Optional[str]) -> str:
    raw = str(trace_id or "").strip()
    if raw:
        return raw  # docstring: 保留上游 trace_id
    return new_uuid()  # docstring: 无 trace_id 时生成兜底


def to_error_response(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
) -> Tuple[int, ErrorResponse]:
    """
    [职责] 将异常转换为 (status_code, ErrorResponse)。
    [边界] 不写 header；未知异常降级为 internal_error（不暴露原始信息）。
    """
    resolved_trace_id = _ensure_trace_id(trace_id)
    status_code, payload = to_http_error(error, trace_id=resolved_trace_id)
    return status_code, ErrorResponse.model_validate(payload)


def to_json_response(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    """
    [职责] 将异常转换为 JSONResponse（含 header 透传）。
    [边界] 不修改 error 语义。
    """
    status_code, response = to_error_response(error, trace_id=trace_id)
    content: Dict[str, Any] = response.model_dump(mode="json")

    headers: Dict[str, str] = {}
    if trace_id:
        headers[TRACE_ID_HEADER] = str(trace_id)
    if request_id:
        headers[REQUEST_ID_HEADER] = str(request_id)

    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def app_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """App-level handler: DomainError raised outside routers keeps its code; anything else becomes internal_error."""
    trace_id = getattr(request.state, "trace_id", None)
    request_id = getattr(request.state, "request_id", None)
    if not isinstance(exc, DomainError):
        log_event(
            logger,
            logging.ERROR,
            "unhandled exception",
            fields={
                "trace_id": trace_id,
                "request_id": request_id,
                "path": request.url.path,
                "error": describe_error(exc),
            },
            exc_info=True,
        )
    return to_json_response(exc, trace_id=trace_id, request_id=request_id)
