# src/ra_law_rag/backend/pipelines/retrieval/pipeline.py

"""
[职责] 单 index 检索管线：并发执行 rerank/keyword tier -> merge -> （必要时）全文兜底 -> 打分截断 -> RetrievalOutcome。
[边界] 不格式化上下文（见 pipelines/context）；不写遥测（由 service 层交给 TelemetryRecorder）；不跨 index 混排。
[上游关系] services/dual_search_service.py 为 normative 与 practice 各构造一个并发运行。
[下游关系] RetrievalOutcome 提供结果、sources、retrieval_mode/rerank_ok 与 tier 计数。
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ra_law_rag.backend.clients.rerank_client import RerankClient
from ra_law_rag.backend.db.store import LegalStore
from ra_law_rag.backend.pipelines.base.context import RetrievalContext
from ra_law_rag.backend.schemas.retrieval import RetrievalQuery
from ra_law_rag.backend.utils.constants import (
    INDEX_PRACTICE,
    MODE_KEYWORD_ONLY,
    MODE_KEYWORD_RERANK,
    MODE_RPC_FALLBACK,
    TIMING_TOTAL_KEY,
)
from ra_law_rag.backend.utils.logging_ import get_logger, log_event

from . import fallback as fallback_mod
from . import keyword as keyword_mod
from . import rerank as rerank_mod
from .fusion import count_by_tier, merge_candidates
from .scoring import score_candidates
from .tiers import run_tier
from .types import Candidate, IndexKind, RetrievalMode, RetrievalOutcome, ScoredResult, SourceTier, TierResult


logger = get_logger("retrieval.pipeline")

CANCELLED_ERROR = "cancelled"  # docstring: 因取消/截止未完成的 tier 错误标记


@dataclass(frozen=True)
class IndexPipelineConfig:
    """Normalized per-index config (limit already clamped to the hard cap)."""

    index_kind: IndexKind
    limit: int
    snippet_length: int
    max_keywords: int
    keyword_row_limit: int
    fts_limit: int
    rank_floor: float
    rerank_threshold: float
    rerank_multiplier: int
    rerank_max_candidates: int
    rerank_timeout_s: float
    keyword_timeout_s: float
    fts_timeout_s: float


def clamp_limit(limit: Any, hard_cap: int) -> int:
    """Server-side hard cap; caller input can only shrink the result set."""
    try:
        value = int(limit)
    except (TypeError, ValueError):
        value = 0
    return max(0, min(value, int(hard_cap)))


def build_index_config(
    index_kind: IndexKind,
    *,
    limit: Any,
    snippet_length: Optional[int],
    settings: Any,
    overrides: Optional[Mapping[str, Any]] = None,
) -> IndexPipelineConfig:
    """
    [职责] 由 Settings + 调用方参数构造 IndexPipelineConfig。
    [边界] overrides 仅用于测试/脚本覆盖个别数值；未知 key 忽略。
    """
    cfg = dict(overrides or {})
    practice = index_kind == INDEX_PRACTICE

    def _as_int(key: str, default: Any) -> int:
        v = cfg.get(key, default)
        return int(default if v is None else v)

    def _as_float(key: str, default: Any) -> float:
        v = cfg.get(key, default)
        return float(default if v is None else v)

    hard_cap = settings.PRACTICE_MAX_LIMIT if practice else settings.KB_MAX_LIMIT
    default_snippet = settings.PRACTICE_SNIPPET_LENGTH if practice else settings.KB_DEFAULT_SNIPPET_LENGTH

    return IndexPipelineConfig(
        index_kind=index_kind,
        limit=clamp_limit(limit, _as_int("hard_cap", hard_cap)),
        snippet_length=max(_as_int("snippet_length", snippet_length or default_snippet), 1),
        max_keywords=_as_int(
            "max_keywords",
            settings.PRACTICE_KEYWORD_MAX_COUNT if practice else settings.KB_KEYWORD_MAX_COUNT,
        ),
        keyword_row_limit=_as_int(
            "keyword_row_limit",
            settings.PRACTICE_KEYWORD_ROW_LIMIT if practice else settings.KB_KEYWORD_ROW_LIMIT,
        ),
        fts_limit=_as_int("fts_limit", settings.PRACTICE_FTS_LIMIT if practice else settings.KB_FTS_LIMIT),
        rank_floor=_as_float("rank_floor", settings.FTS_RANK_FLOOR),
        rerank_threshold=_as_float("rerank_threshold", settings.RERANK_THRESHOLD),
        rerank_multiplier=_as_int("rerank_multiplier", settings.RERANK_CANDIDATE_MULTIPLIER),
        rerank_max_candidates=_as_int("rerank_max_candidates", settings.RERANK_MAX_CANDIDATES),
        rerank_timeout_s=_as_float("rerank_timeout_s", settings.RERANK_TIMEOUT_S),
        keyword_timeout_s=_as_float("keyword_timeout_s", settings.KEYWORD_TIMEOUT_S),
        fts_timeout_s=_as_float("fts_timeout_s", settings.FTS_TIMEOUT_S),
    )


def resolve_retrieval_mode(
    *,
    rerank: TierResult,
    merged: List[Candidate],
) -> RetrievalMode:
    """
    keyword+rerank: rerank succeeded and at least one rerank candidate survived merging.
    keyword_only:   anything else that produced merged candidates.
    rpc_fallback:   merged list empty (fallback attempted, whatever it returned).
    """
    survivors = count_by_tier(merged)
    if not rerank.failed and survivors.get("rerank", 0) > 0:
        return MODE_KEYWORD_RERANK
    if merged:
        return MODE_KEYWORD_ONLY
    return MODE_RPC_FALLBACK


def build_sources(results: List[ScoredResult]) -> List[Dict[str, Any]]:
    """Citation list: {title, category, source_name} per ranked result."""
    sources: List[Dict[str, Any]] = []
    for r in results:
        fields = r.fields
        category = fields.get("practice_category") if r.index_kind == INDEX_PRACTICE else fields.get("category")
        sources.append(
            {
                "id": r.id,
                "index_kind": r.index_kind,
                "title": r.title,
                "category": category,
                "source_name": fields.get("source_name"),
            }
        )
    return sources


def _task_result(task: "asyncio.Task[TierResult]", tier: SourceTier) -> TierResult:
    if task.done() and not task.cancelled():
        return task.result()
    return TierResult.failure(tier, CANCELLED_ERROR)


class IndexRetrievalPipeline:
    """
    [职责] 一个 index 的 tier 编排器。
    [边界] rerank 与 keyword 并发启动；fallback 仅在两者都结束且合并结果为空时调用一次；
           取消/截止时立即返回已完成部分（cancelled=True），且不再启动 fallback。
    [上游关系] DualSearchService 注入 store / rerank client / config。
    [下游关系] 返回 RetrievalOutcome。
    """

    def __init__(
        self,
        *,
        store: LegalStore,
        rerank_client: Optional[RerankClient],
        config: IndexPipelineConfig,
    ) -> None:
        self._store = store
        self._rerank_client = rerank_client
        self._cfg = config

    @property
    def config(self) -> IndexPipelineConfig:
        return self._cfg

    def _rerank_call(self, query: RetrievalQuery, ctx: RetrievalContext):
        cfg = self._cfg
        client = self._rerank_client

        async def _call() -> List[Candidate]:
            if client is None:
                raise RuntimeError("rerank service is not configured")
            return await rerank_mod.fetch_rerank_candidates(
                client,
                query,
                index_kind=cfg.index_kind,
                desired=cfg.limit,
                threshold=cfg.rerank_threshold,
                multiplier=cfg.rerank_multiplier,
                max_candidates=cfg.rerank_max_candidates,
                request_id=ctx.request_id,
            )

        return _call

    async def run(self, query: RetrievalQuery, ctx: RetrievalContext) -> RetrievalOutcome:
        cfg = self._cfg
        started = time.perf_counter()
        keywords = keyword_mod.query_keywords(query, max_count=cfg.max_keywords)

        # --- fan-out: rerank + keyword (concurrent, independent) ---
        rerank_task = asyncio.create_task(
            run_tier(
                "rerank",
                self._rerank_call(query, ctx),
                index_kind=cfg.index_kind,
                timeout_s=ctx.tier_timeout(cfg.rerank_timeout_s),
                ctx=ctx,
            )
        )
        keyword_task = asyncio.create_task(
            run_tier(
                "keyword",
                lambda: keyword_mod.fetch_keyword_candidates(
                    self._store,
                    query,
                    keywords,
                    index_kind=cfg.index_kind,
                    row_limit=cfg.keyword_row_limit,
                ),
                index_kind=cfg.index_kind,
                timeout_s=ctx.tier_timeout(cfg.keyword_timeout_s),
                ctx=ctx,
            )
        )
        interrupted = await ctx.wait_for_tasks([rerank_task, keyword_task])
        rerank = _task_result(rerank_task, "rerank")
        keyword = _task_result(keyword_task, "keyword")

        # --- merge: rerank first by tier identity, never by arrival order ---
        merged = merge_candidates(rerank.candidates, keyword.candidates)

        # --- fallback: only when merged is empty, never after cancellation ---
        fallback = TierResult.skipped("fts_fallback")
        if not merged and not interrupted and not ctx.is_cancelled():
            fallback_task = asyncio.create_task(
                run_tier(
                    "fts_fallback",
                    lambda: fallback_mod.fetch_fallback_candidates(
                        self._store,
                        query,
                        index_kind=cfg.index_kind,
                        limit=cfg.fts_limit,
                        rank_floor=cfg.rank_floor,
                    ),
                    index_kind=cfg.index_kind,
                    timeout_s=ctx.tier_timeout(cfg.fts_timeout_s),
                    ctx=ctx,
                )
            )
            interrupted = await ctx.wait_for_tasks([fallback_task]) or interrupted
            fallback = _task_result(fallback_task, "fts_fallback")

        retrieval_mode = resolve_retrieval_mode(rerank=rerank, merged=merged)
        pool = merged if merged else fallback.candidates
        results = score_candidates(pool, keywords, limit=cfg.limit, snippet_length=cfg.snippet_length)

        tier_errors = {t.tier: t.error for t in (rerank, keyword, fallback) if t.failed and t.error}
        timing_ms = ctx.timing.to_dict(prefix=cfg.index_kind, include_total=False)
        timing_ms[TIMING_TOTAL_KEY] = (time.perf_counter() - started) * 1000.0

        outcome = RetrievalOutcome(
            index_kind=cfg.index_kind,
            results=results,
            sources=build_sources(results),
            retrieval_mode=retrieval_mode,
            rerank_ok=not rerank.failed,
            rerank_error=rerank.error if rerank.failed else None,
            fallback_invoked=fallback.invoked,
            cancelled=bool(interrupted or ctx.is_cancelled()),
            limit=cfg.limit,
            tier_counts={
                "rerank": rerank.count,
                "keyword": keyword.count,
                "fts_fallback": fallback.count,
                "merged": len(merged),
            },
            tier_errors=tier_errors,
            timing_ms=timing_ms,
        )

        log_event(
            logger,
            logging.INFO,
            "retrieval pipeline completed",
            context=ctx,
            fields={
                "index_kind": cfg.index_kind,
                "retrieval_mode": retrieval_mode,
                "rerank_ok": outcome.rerank_ok,
                "result_count": outcome.result_count,
                "tier_counts": outcome.tier_counts,
                "fallback_invoked": outcome.fallback_invoked,
                "cancelled": outcome.cancelled,
            },
        )
        return outcome
