# src/ra_law_rag/backend/pipelines/retrieval/scoring.py

"""
[职责] Scorer：为合并后的候选计算同一 index 内可比较的分数，排序、截断并裁剪正文。
[边界] rerank 沿用 raw_score（similarity*10）；fallback 使用 rank；keyword 用加权关键词重叠分。
[上游关系] pipeline 在 merge（及可能的 fallback）之后调用。
[下游关系] ContextFormatter 与 RetrievalOutcome.results。
"""

from __future__ import annotations

import math
from typing import Any, List, Mapping, Sequence, Tuple

from ra_law_rag.backend.pipelines.retrieval.types import Candidate, ScoredResult
from ra_law_rag.backend.utils.constants import PREVIEW_MAX_CHARS


TITLE_WEIGHT = 3.0
SUMMARY_WEIGHT = 2.0
CONTENT_WEIGHT = 1.0

SUMMARY_FIELD_KEYS = ("legal_reasoning_summary",)  # docstring: 判例的裁判理由摘要字段


def _summary_text(fields: Mapping[str, Any]) -> str:
    for key in SUMMARY_FIELD_KEYS:
        value = fields.get(key)
        if value:
            return str(value)
    return ""


def keyword_overlap_score(candidate: Candidate, keywords: Sequence[str]) -> float:
    """
    [职责] 加权关键词重叠分：标题 +3，摘要 +2，正文 +1。
    [边界] 大小写不敏感；每个关键词在每个字段独立计分（出现即计一次）。
    """
    title = (candidate.title or "").lower()
    summary = _summary_text(candidate.fields).lower()
    content = (candidate.content_text or "").lower()

    score = 0.0
    for kw in keywords:
        k = str(kw).lower()
        if not k:
            continue
        if k in title:
            score += TITLE_WEIGHT
        if k in summary:
            score += SUMMARY_WEIGHT
        if k in content:
            score += CONTENT_WEIGHT
    return score


def normalized_score(candidate: Candidate, keywords: Sequence[str]) -> float:
    if candidate.source_tier == "keyword":
        return keyword_overlap_score(candidate, keywords)
    if candidate.source_tier == "fts_fallback":
        return float(candidate.rank or 0.0)
    return float(candidate.raw_score)


def _sort_key(item: Tuple[Candidate, float]) -> Tuple[float, float, str, str]:
    cand, score = item
    rank_key = -float(cand.rank) if cand.rank is not None else math.inf
    return (-score, rank_key, cand.title or "", cand.id)


def score_candidates(
    candidates: Sequence[Candidate],
    keywords: Sequence[str],
    *,
    limit: int,
    snippet_length: int,
    preview_length: int = PREVIEW_MAX_CHARS,
) -> List[ScoredResult]:
    """
    [职责] 打分 -> 降序排序（平局按 fallback rank，再按标题字典序）-> 截断到 limit -> 正文裁剪到 snippet_length。
    [边界] limit 需已被调用方裁剪到硬上限；limit <= 0 返回空列表。
    """
    if limit <= 0:
        return []
    scored = [(c, normalized_score(c, keywords)) for c in candidates]
    scored.sort(key=_sort_key)

    out: List[ScoredResult] = []
    for cand, score in scored[: int(limit)]:
        content = (cand.content_text or "")[: max(int(snippet_length), 0)]
        out.append(
            ScoredResult(
                candidate=cand,
                normalized_score=float(score),
                content_text=content,
                preview=content[:preview_length],
            )
        )
    return out
