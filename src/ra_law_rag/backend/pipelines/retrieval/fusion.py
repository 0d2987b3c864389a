# src/ra_law_rag/backend/pipelines/retrieval/fusion.py

"""
[职责] merge：按固定 tier 优先级（rerank 在前，keyword 在后）合并候选并按 id 去重。
[边界] 首次出现者胜出，后续重复（即使 raw_score 更高）不做检查直接丢弃；不排序、不打分；O(n)。
[上游关系] pipeline 在 rerank/keyword 两个 tier 都结束后调用。
[下游关系] scoring.score_candidates 消费合并结果。
"""

from __future__ import annotations

from typing import List, Sequence

from ra_law_rag.backend.pipelines.retrieval.types import Candidate


def merge_candidates(*lists: Sequence[Candidate]) -> List[Candidate]:
    """
    merge_candidates(rerank, keyword) -> unique-by-id list in priority order.

    The `seen` set lives only for this call; it is never shared across invocations.
    """
    merged: List[Candidate] = []
    seen: set[str] = set()
    for candidates in lists:
        for cand in candidates:
            key = str(cand.id)
            if key in seen:
                continue
            seen.add(key)
            merged.append(cand)
    return merged


def count_by_tier(candidates: Sequence[Candidate]) -> dict[str, int]:
    """How many merged survivors each tier contributed."""
    out: dict[str, int] = {}
    for cand in candidates:
        out[cand.source_tier] = out.get(cand.source_tier, 0) + 1
    return out
