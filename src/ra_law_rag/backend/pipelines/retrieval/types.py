# src/ra_law_rag/backend/pipelines/retrieval/types.py
"""
[职责] Retrieval types：检索各阶段共享的数据结构（Candidate / ScoredResult / TierResult / Outcome）。
[边界] 仅定义结构与只读派生字段；不包含检索、打分或格式化逻辑；不依赖 DB/HTTP。
[上游关系] tiers（rerank/keyword/fallback）产出 Candidate 与 TierResult。
[下游关系] fusion/scoring/format/telemetry/service 消费；api 层序列化 to_dict()。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


IndexKind = Literal["normative", "practice"]  # docstring: 逻辑索引，永不混排
SourceTier = Literal["rerank", "keyword", "fts_fallback"]  # docstring: 候选来源 tier
RetrievalMode = Literal["keyword+rerank", "keyword_only", "rpc_fallback"]  # docstring: 实际产出结果的 tier 组合


@dataclass(frozen=True)
class Candidate:
    """
    [职责] 单个 tier 返回的未排序文档。
    [边界] id 为同一 index 内的去重键；index_kind 创建后不可变。
    [上游关系] rerank/keyword/fallback tier 将后端行映射为 Candidate。
    [下游关系] merge_candidates 去重；score_candidates 打分。
    """

    id: str
    title: str
    content_text: str
    index_kind: IndexKind
    source_tier: SourceTier
    raw_score: float = 0.0
    fields: Dict[str, Any] = field(default_factory=dict)  # docstring: 索引相关元数据（category/court/...）
    rank: Optional[float] = None  # docstring: 全文检索 rank（仅 fts_fallback）


@dataclass(frozen=True)
class ScoredResult:
    """Candidate + comparable score; content_text is already cut to the snippet length."""

    candidate: Candidate
    normalized_score: float
    content_text: str
    preview: str

    @property
    def id(self) -> str:
        return self.candidate.id

    @property
    def title(self) -> str:
        return self.candidate.title

    @property
    def index_kind(self) -> IndexKind:
        return self.candidate.index_kind

    @property
    def source_tier(self) -> SourceTier:
        return self.candidate.source_tier

    @property
    def fields(self) -> Dict[str, Any]:
        return self.candidate.fields

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "index_kind": self.index_kind,
            "source_tier": self.source_tier,
            "raw_score": float(self.candidate.raw_score),
            "normalized_score": float(self.normalized_score),
            "rank": self.candidate.rank,
            "content_text": self.content_text,
            "preview": self.preview,
            "fields": dict(self.fields),
        }


@dataclass(frozen=True)
class TierResult:
    """
    [职责] 单个 tier 调用的结果：候选 + 显式失败标记。
    [边界] 失败时 candidates 必为空；invoked=False 表示该 tier 未被调用（如 fallback 未触发）。
    """

    tier: SourceTier
    candidates: List[Candidate] = field(default_factory=list)
    failed: bool = False
    error: Optional[str] = None
    latency_ms: float = 0.0
    invoked: bool = True
    timed_out: bool = False

    @classmethod
    def skipped(cls, tier: SourceTier) -> "TierResult":
        return cls(tier=tier, invoked=False)

    @classmethod
    def failure(
        cls,
        tier: SourceTier,
        error: str,
        *,
        latency_ms: float = 0.0,
        timed_out: bool = False,
    ) -> "TierResult":
        return cls(tier=tier, candidates=[], failed=True, error=error, latency_ms=latency_ms, timed_out=timed_out)

    @property
    def count(self) -> int:
        return len(self.candidates)


@dataclass
class RetrievalOutcome:
    """
    [职责] 单个 index 单次查询的检索结果 + 遥测字段。
    [边界] results 长度不超过（已被硬上限裁剪的）limit；不跨 index 混排。
    [上游关系] pipelines/retrieval/pipeline.py 产出。
    [下游关系] services/dual_search_service.py 聚合为 DualOutcome；telemetry 记录。
    """

    index_kind: IndexKind
    results: List[ScoredResult]
    sources: List[Dict[str, Any]]
    retrieval_mode: RetrievalMode
    rerank_ok: bool
    rerank_error: Optional[str] = None
    fallback_invoked: bool = False
    cancelled: bool = False
    limit: int = 0
    tier_counts: Dict[str, int] = field(default_factory=dict)
    tier_errors: Dict[str, str] = field(default_factory=dict)
    timing_ms: Dict[str, float] = field(default_factory=dict)

    @property
    def result_count(self) -> int:
        return len(self.results)

    def telemetry_fields(self) -> Dict[str, Any]:
        return {
            "retrieval_mode": self.retrieval_mode,
            "rerank_ok": self.rerank_ok,
            "rerank_error": self.rerank_error,
            "result_count": self.result_count,
            "fallback_invoked": self.fallback_invoked,
            "cancelled": self.cancelled,
            "tier_counts": dict(self.tier_counts),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index_kind": self.index_kind,
            "results": [r.to_dict() for r in self.results],
            "sources": [dict(s) for s in self.sources],
            "limit": self.limit,
            "timing_ms": dict(self.timing_ms),
            "tier_errors": dict(self.tier_errors),
            **self.telemetry_fields(),
        }


@dataclass
class DualOutcome:
    """KB + practice outcomes combined; retrieval_mode/rerank_ok are the aggregated values."""

    kb_context: str
    practice_context: str
    context: str
    kb_results: List[ScoredResult]
    practice_results: List[ScoredResult]
    sources: List[Dict[str, Any]]
    retrieval_mode: RetrievalMode
    rerank_ok: bool
    kb: RetrievalOutcome
    practice: RetrievalOutcome
    request_id: str
    rerank_error: Optional[str] = None
    cancelled: bool = False
    token_usage: Dict[str, int] = field(default_factory=dict)
    timing_ms: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "kb_context": self.kb_context,
            "practice_context": self.practice_context,
            "context": self.context,
            "kb_results": [r.to_dict() for r in self.kb_results],
            "practice_results": [r.to_dict() for r in self.practice_results],
            "sources": [dict(s) for s in self.sources],
            "retrieval_mode": self.retrieval_mode,
            "rerank_ok": self.rerank_ok,
            "rerank_error": self.rerank_error,
            "cancelled": self.cancelled,
            "token_usage": dict(self.token_usage),
            "timing_ms": dict(self.timing_ms),
            "kb": self.kb.telemetry_fields(),
            "practice": self.practice.telemetry_fields(),
        }
