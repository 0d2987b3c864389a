# src/ra_law_rag/backend/pipelines/retrieval/fallback.py

"""
[职责] 全文检索兜底 tier：调用存储的全文检索过程，过滤低相关噪声行。
[边界] 仅当 rerank + keyword 合并后为空时由 pipeline 调用一次；从不与其它 tier 并发推测执行。
[上游关系] pipeline 在 merge 之后判断是否调用。
[下游关系] 产出 source_tier="fts_fallback" 的 Candidate，raw_score = rank。
"""

from __future__ import annotations

from dataclasses import replace
from typing import List

from ra_law_rag.backend.db.store import LegalStore
from ra_law_rag.backend.pipelines.retrieval.types import Candidate, IndexKind
from ra_law_rag.backend.schemas.retrieval import RetrievalQuery
from ra_law_rag.backend.utils.constants import INDEX_NORMATIVE, INDEX_PRACTICE


DEFAULT_RANK_FLOOR = 0.001


async def fetch_fallback_candidates(
    store: LegalStore,
    query: RetrievalQuery,
    *,
    index_kind: IndexKind,
    limit: int,
    rank_floor: float = DEFAULT_RANK_FLOOR,
) -> List[Candidate]:
    rows = await store.call_full_text_search(
        index_kind,
        query.text,
        limit=int(limit),
        reference_date=query.reference_date if index_kind == INDEX_NORMATIVE else None,
        category=query.category if index_kind == INDEX_PRACTICE else None,
    )
    out: List[Candidate] = []
    for c in rows:
        rank = float(c.rank or 0.0)
        if rank <= rank_floor:
            continue  # noise match
        out.append(replace(c, source_tier="fts_fallback", rank=rank, raw_score=rank))
    return out
