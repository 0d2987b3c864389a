# src/ra_law_rag/backend/api/routers/search.py

"""
[职责] Search Router：暴露 /search/dual，负责 HTTP 入参映射与服务调用。
[边界] 不直接调用 pipeline；不控制事务；仅进行输入/输出映射。
[上游关系] 前端/生成层发起检索请求。
[下游关系] DualSearchService 执行双索引检索并返回 DualOutcome。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from ra_law_rag.backend.api.deps import get_dual_search_service, get_trace_context
from ra_law_rag.backend.api.errors import to_json_response
from ra_law_rag.backend.api.schemas_http._common import RequestId, TraceId
from ra_law_rag.backend.api.schemas_http.search import (
    BucketSummary,
    DualSearchRequest,
    DualSearchResponse,
    ResultView,
    SourceRef,
)
from ra_law_rag.backend.pipelines.retrieval.types import DualOutcome, ScoredResult
from ra_law_rag.backend.schemas.audit import TraceContext
from ra_law_rag.backend.services.dual_search_service import DualSearchService
from ra_law_rag.backend.utils.errors import DomainError, describe_error
from ra_law_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("api.search")

router = APIRouter(prefix="/search", tags=["search"])  # docstring: search 路由前缀


def _result_views(results: List[ScoredResult]) -> List[ResultView]:
    views: List[ResultView] = []
    for r in results:
        item = r.to_dict()
        item.pop("content_text", None)  # docstring: 正文已在 context 中，不重复回传
        views.append(ResultView.model_validate(item))
    return views


def _build_response(outcome: DualOutcome, trace_context: TraceContext) -> DualSearchResponse:
    payload: Dict[str, Any] = outcome.to_dict()
    return DualSearchResponse(
        trace_id=TraceId(str(trace_context.trace_id)),
        request_id=RequestId(outcome.request_id),
        retrieval_mode=outcome.retrieval_mode,
        rerank_ok=outcome.rerank_ok,
        rerank_error=outcome.rerank_error,
        cancelled=outcome.cancelled,
        kb_context=outcome.kb_context,
        practice_context=outcome.practice_context,
        context=outcome.context,
        kb_results=_result_views(outcome.kb_results),
        practice_results=_result_views(outcome.practice_results),
        sources=[SourceRef.model_validate(s) for s in outcome.sources],
        kb=BucketSummary.model_validate(payload["kb"]),
        practice=BucketSummary.model_validate(payload["practice"]),
        token_usage=dict(outcome.token_usage),
        timing_ms=dict(outcome.timing_ms),
    )


@router.post("/dual", response_model=DualSearchResponse)
async def dual_search(
    payload: DualSearchRequest,
    service: DualSearchService = Depends(get_dual_search_service),
    trace_context: TraceContext = Depends(get_trace_context),
) -> Any:
    """
    [职责] 执行法规 + 判例双索引检索。
    [边界] 入参错误 -> 400 bad_request；tier 级失败不影响 HTTP 状态（以 rerank_ok/retrieval_mode 表达）。
    """
    trace_id = str(trace_context.trace_id)
    request_id = str(trace_context.request_id)
    try:
        outcome = await service.dual_search(
            {
                "text": payload.query,
                "reference_date": payload.reference_date,
                "category": payload.category,
            },
            {
                "kb_limit": payload.kb_limit,
                "practice_limit": payload.practice_limit,
                "kb_snippet_length": payload.kb_snippet_length,
                "full_practice_text": payload.full_practice_text,
                "request_id": request_id,
                "kb_token_budget": payload.kb_token_budget,
                "practice_token_budget": payload.practice_token_budget,
                "assume_current_date": payload.assume_current_date,
            },
            trace_id=trace_id,
        )
    except DomainError as exc:
        return to_json_response(exc, trace_id=trace_id, request_id=request_id)
    except Exception as exc:
        log_event(
            logger,
            logging.ERROR,
            "dual search failed",
            fields={"trace_id": trace_id, "request_id": request_id, "error": describe_error(exc)},
            exc_info=True,
        )
        return to_json_response(exc, trace_id=trace_id, request_id=request_id)
    return _build_response(outcome, trace_context)
