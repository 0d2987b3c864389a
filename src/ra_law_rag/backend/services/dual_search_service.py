# src/ra_law_rag/backend/services/dual_search_service.py

"""
[职责] dual_search_service：法规（normative）与判例（practice）双索引检索的服务入口。
[边界] 不处理 HTTP 语义；不直接访问 DB/HTTP（通过 LegalStore / RerankClient 注入）；遥测只入队不等待。
[上游关系] api/routers/search.py 或生成层调用 DualSearchService.dual_search(...)。
[下游关系] 两个 IndexRetrievalPipeline 并发执行；context 格式化器生成上下文；TelemetryRecorder 记录遥测。
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from ra_law_rag.backend.clients.rerank_client import RerankClient
from ra_law_rag.backend.db.store import LegalStore
from ra_law_rag.backend.pipelines.base.context import RetrievalContext, new_request_id
from ra_law_rag.backend.pipelines.context.disclaimer import temporal_disclaimer
from ra_law_rag.backend.pipelines.context.normative import normative_blocks
from ra_law_rag.backend.pipelines.context.practice import practice_blocks
from ra_law_rag.backend.pipelines.context.token_budget import RankedBlock, estimate_tokens, trim_to_budget
from ra_law_rag.backend.pipelines.retrieval.pipeline import IndexRetrievalPipeline, build_index_config
from ra_law_rag.backend.pipelines.retrieval.types import (
    DualOutcome,
    RetrievalMode,
    RetrievalOutcome,
    ScoredResult,
)
from ra_law_rag.backend.schemas.retrieval import DualSearchOptions, RetrievalQuery
from ra_law_rag.backend.services.telemetry import TelemetryRecorder
from ra_law_rag.backend.utils.constants import (
    CONTEXT_SEPARATOR,
    INDEX_NORMATIVE,
    INDEX_PRACTICE,
    MODE_PREFERENCE,
    TIMING_TOTAL_KEY,
)
from ra_law_rag.backend.utils.errors import BadRequestError
from ra_law_rag.backend.utils.logging_ import get_logger, hash_text, log_event
from ra_law_rag.config import settings as default_settings


logger = get_logger("services.dual_search")

QueryInput = Union[RetrievalQuery, Mapping[str, Any], str]
OptionsInput = Union[DualSearchOptions, Mapping[str, Any], None]


def aggregate_retrieval_mode(*modes: RetrievalMode) -> RetrievalMode:
    """Best mode seen across the buckets (keyword+rerank > keyword_only > rpc_fallback)."""
    for mode in MODE_PREFERENCE:
        if mode in modes:
            return mode  # type: ignore[return-value]
    return MODE_PREFERENCE[-1]  # type: ignore[return-value]


def aggregate_rerank_error(kb: RetrievalOutcome, practice: RetrievalOutcome) -> Optional[str]:
    parts = [f"{o.index_kind}: {o.rerank_error}" for o in (kb, practice) if o.rerank_error]
    return "; ".join(parts) or None


def _validation_detail(exc: ValidationError) -> List[Dict[str, Any]]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]


def coerce_query(query: QueryInput, *, max_length: Optional[int] = None) -> RetrievalQuery:
    """str / dict / RetrievalQuery -> RetrievalQuery; invalid input -> BadRequestError."""
    if isinstance(query, RetrievalQuery):
        q = query
    else:
        payload: Dict[str, Any] = {"text": query} if isinstance(query, str) else dict(query or {})
        try:
            q = RetrievalQuery.model_validate(payload)
        except ValidationError as exc:
            raise BadRequestError(
                message="invalid retrieval query",
                detail={"errors": _validation_detail(exc)},
                cause=exc,
            ) from exc
    if max_length is not None and len(q.text) > max_length:
        raise BadRequestError(
            message="query text too long",
            detail={"errors": [{"loc": ["text"], "msg": f"at most {max_length} characters", "type": "string_too_long"}]},
        )
    return q


def coerce_options(options: OptionsInput) -> DualSearchOptions:
    if options is None:
        return DualSearchOptions()
    if isinstance(options, DualSearchOptions):
        return options
    try:
        return DualSearchOptions.model_validate(dict(options))
    except ValidationError as exc:
        raise BadRequestError(
            message="invalid dual search options",
            detail={"errors": _validation_detail(exc)},
            cause=exc,
        ) from exc


def _budgeted(
    blocks: Sequence[str],
    results: Sequence[ScoredResult],
    token_budget: Optional[int],
) -> Tuple[str, Dict[str, int]]:
    """
    Join rendered blocks, or fit them into a token budget (most relevant first).
    Returns (context, usage) where usage reports kept/dropped counts.
    """
    if not token_budget:
        text = CONTEXT_SEPARATOR.join(blocks)
        return text, {"tokens": estimate_tokens(text), "items_kept": len(blocks), "items_dropped": 0}
    ranked = [
        RankedBlock(text=block, score=float(r.normalized_score), source=r.id) for block, r in zip(blocks, results)
    ]
    trimmed = trim_to_budget(ranked, token_budget)
    return trimmed.text, {
        "tokens": trimmed.token_count,
        "items_kept": trimmed.items_kept,
        "items_dropped": trimmed.items_dropped,
    }


class DualSearchService:
    """
    [职责] 双索引并发检索 + 聚合（rerank_ok 取与、retrieval_mode 取最优）+ 上下文拼装。
    [边界] 输入校验先于任何 tier 调用；一个请求共享一个 RetrievalContext（截止时间与取消信号）。
    [上游关系] FastAPI 依赖注入或脚本直接构造。
    [下游关系] 返回 DualOutcome；遥测交给 TelemetryRecorder。
    """

    def __init__(
        self,
        *,
        store: LegalStore,
        rerank_client: Optional[RerankClient],
        telemetry: Optional[TelemetryRecorder] = None,
        settings: Any = None,
        config_overrides: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._store = store
        self._rerank_client = rerank_client
        self._telemetry = telemetry
        self._settings = settings or default_settings
        self._overrides = dict(config_overrides or {})

    @property
    def telemetry(self) -> Optional[TelemetryRecorder]:
        return self._telemetry

    @property
    def rerank_client(self) -> Optional[RerankClient]:
        return self._rerank_client

    def _pipelines(self, opts: DualSearchOptions) -> Tuple[IndexRetrievalPipeline, IndexRetrievalPipeline]:
        s = self._settings
        kb_cfg = build_index_config(
            INDEX_NORMATIVE,
            limit=s.KB_DEFAULT_LIMIT if opts.kb_limit is None else opts.kb_limit,
            snippet_length=opts.kb_snippet_length,
            settings=s,
            overrides=self._overrides,
        )
        practice_cfg = build_index_config(
            INDEX_PRACTICE,
            limit=s.PRACTICE_DEFAULT_LIMIT if opts.practice_limit is None else opts.practice_limit,
            snippet_length=s.PRACTICE_SNIPPET_LENGTH,
            settings=s,
            overrides=self._overrides,
        )
        return (
            IndexRetrievalPipeline(store=self._store, rerank_client=self._rerank_client, config=kb_cfg),
            IndexRetrievalPipeline(store=self._store, rerank_client=self._rerank_client, config=practice_cfg),
        )

    async def dual_search(
        self,
        query: QueryInput,
        options: OptionsInput = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        trace_id: Optional[str] = None,
    ) -> DualOutcome:
        started = time.perf_counter()

        # --- validate (before any tier runs) ---
        q = coerce_query(query, max_length=int(self._settings.MAX_QUERY_LENGTH))
        opts = coerce_options(options)

        request_id = opts.request_id or q.request_id or new_request_id()
        ctx = RetrievalContext(
            request_id=request_id,
            trace_id=trace_id or request_id,
            budget_s=float(self._settings.REQUEST_BUDGET_S),
            cancel_event=cancel_event,
        )
        kb_pipeline, practice_pipeline = self._pipelines(opts)

        # --- fan-out: both buckets share the deadline and the cancel signal ---
        kb, practice = await asyncio.gather(kb_pipeline.run(q, ctx), practice_pipeline.run(q, ctx))

        # --- context ---
        kb_context, kb_usage = _budgeted(
            normative_blocks(kb.results, kb_pipeline.config.snippet_length),
            kb.results,
            opts.kb_token_budget,
        )
        practice_context, practice_usage = _budgeted(
            practice_blocks(practice.results, full_text=opts.full_practice_text),
            practice.results,
            opts.practice_token_budget,
        )
        date_assumed = q.reference_date is None and opts.assume_current_date
        body = CONTEXT_SEPARATOR.join(part for part in (kb_context, practice_context) if part)
        context = body + temporal_disclaimer(q.reference_date, date_assumed) if body else ""

        retrieval_mode = aggregate_retrieval_mode(kb.retrieval_mode, practice.retrieval_mode)
        rerank_ok = kb.rerank_ok and practice.rerank_ok
        rerank_error = aggregate_rerank_error(kb, practice)
        cancelled = kb.cancelled or practice.cancelled

        timing_ms = ctx.timing.to_dict(include_total=False)
        timing_ms[TIMING_TOTAL_KEY] = (time.perf_counter() - started) * 1000.0

        outcome = DualOutcome(
            kb_context=kb_context,
            practice_context=practice_context,
            context=context,
            kb_results=list(kb.results),
            practice_results=list(practice.results),
            sources=[*kb.sources, *practice.sources],
            retrieval_mode=retrieval_mode,
            rerank_ok=rerank_ok,
            kb=kb,
            practice=practice,
            request_id=request_id,
            rerank_error=rerank_error,
            cancelled=cancelled,
            token_usage={
                "kb_tokens": kb_usage["tokens"],
                "practice_tokens": practice_usage["tokens"],
                "total_tokens": estimate_tokens(context),
                "kb_items_dropped": kb_usage["items_dropped"],
                "practice_items_dropped": practice_usage["items_dropped"],
            },
            timing_ms=timing_ms,
        )

        self._record_telemetry(q, outcome)
        log_event(
            logger,
            logging.INFO,
            "dual search completed",
            context=ctx,
            fields={
                "query_hash": hash_text(q.text),
                "retrieval_mode": retrieval_mode,
                "rerank_ok": rerank_ok,
                "kb_count": kb.result_count,
                "practice_count": practice.result_count,
                "cancelled": cancelled,
                "total_ms": round(timing_ms[TIMING_TOTAL_KEY], 2),
            },
        )
        return outcome

    def _record_telemetry(self, q: RetrievalQuery, outcome: DualOutcome) -> None:
        if self._telemetry is None:
            return
        self._telemetry.record(
            {
                "request_id": outcome.request_id,
                "query_hash": hash_text(q.text),
                "category": q.category,
                "retrieval_mode": outcome.retrieval_mode,
                "rerank_ok": outcome.rerank_ok,
                "rerank_error": outcome.rerank_error,
                "cancelled": outcome.cancelled,
                "kb": outcome.kb.telemetry_fields(),
                "practice": outcome.practice.telemetry_fields(),
            },
            tokens_used=outcome.token_usage.get("total_tokens", 0),
        )
