# src/ra_law_rag/backend/api/middleware.py

"""
[职责] API Middleware：注入 trace_id/request_id 与请求耗时统计。
[边界] 不做业务逻辑与异常处理；不重算 pipeline timing。
[上游关系] main.create_app 注册本 middleware。
[下游关系] deps/routers 读取 request.state.trace_context 与 timing_ms。
"""

from __future__ import annotations

import time
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ra_law_rag.backend.schemas.audit import TraceContext, new_uuid
from ra_law_rag.backend.utils.constants import (
    PARENT_REQUEST_ID_HEADER,
    REQUEST_ID_HEADER,
    TIMING_TOTAL_KEY,
    TRACE_ID_HEADER,
)

MAX_HEADER_ID_LEN = 128  # docstring: 超长 header 视为缺失


def _resolve_header_id(value: Optional[str]) -> Optional[str]:
    """Strip header ids; blank or oversized values fall back to None."""
    raw = str(value or "").strip()
    if not raw or len(raw) > MAX_HEADER_ID_LEN:
        return None
    return raw


class TraceContextMiddleware(BaseHTTPMiddleware):
    """
    [职责] 注入 trace/request id，并记录 request 总耗时。
    [边界] 不捕获异常；错误映射由 routers 与 api/errors.py 负责。
    [上游关系] FastAPI app.add_middleware 注册。
    [下游关系] deps.get_trace_context 使用 request.state.trace_context。
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_ts = time.perf_counter()

        trace_id = _resolve_header_id(request.headers.get(TRACE_ID_HEADER)) or new_uuid()
        request_id = _resolve_header_id(request.headers.get(REQUEST_ID_HEADER)) or new_uuid()
        parent_request_id = _resolve_header_id(request.headers.get(PARENT_REQUEST_ID_HEADER))

        request.state.trace_context = TraceContext(
            trace_id=trace_id,
            request_id=request_id,
            parent_request_id=parent_request_id,
            tags={},
        )
        request.state.trace_id = trace_id  # docstring: 便捷字段
        request.state.request_id = request_id  # docstring: 便捷字段
        request.state.parent_request_id = parent_request_id

        try:
            response = await call_next(request)
        finally:
            request.state.timing_ms = {TIMING_TOTAL_KEY: (time.perf_counter() - start_ts) * 1000.0}

        response.headers[TRACE_ID_HEADER] = trace_id  # docstring: 回写 trace_id header
        response.headers[REQUEST_ID_HEADER] = request_id  # docstring: 回写 request_id header
        return response
