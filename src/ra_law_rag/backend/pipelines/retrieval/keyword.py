# src/ra_law_rag/backend/pipelines/retrieval/keyword.py

"""
[职责] keyword tier：以净化后的关键词对主存储做 OR 子串查询，产出 source_tier="keyword" 的 Candidate。
[边界] 不做打分（见 scoring.py）；不做全文检索（见 fallback.py）；无安全关键词时不访问存储。
[上游关系] pipeline 在 fan-out 阶段与 rerank tier 并发调用，与 rerank 结果无关。
[下游关系] merge 时排在 rerank 列表之后。
"""

from __future__ import annotations

from typing import List, Sequence

from ra_law_rag.backend.db.store import LegalStore
from ra_law_rag.backend.pipelines.retrieval.keywords import extract_keywords, safe_keywords
from ra_law_rag.backend.pipelines.retrieval.types import Candidate, IndexKind
from ra_law_rag.backend.schemas.retrieval import RetrievalQuery
from ra_law_rag.backend.utils.constants import INDEX_PRACTICE


def query_keywords(query: RetrievalQuery, *, max_count: int) -> List[str]:
    """Extracted + sanitized keywords, shared by the keyword tier and the scorer."""
    return safe_keywords(extract_keywords(query.text, max_count))


async def fetch_keyword_candidates(
    store: LegalStore,
    query: RetrievalQuery,
    keywords: Sequence[str],
    *,
    index_kind: IndexKind,
    row_limit: int,
) -> List[Candidate]:
    if not keywords:
        return []
    category = query.category if index_kind == INDEX_PRACTICE else None
    return await store.query_by_keyword(index_kind, list(keywords), limit=int(row_limit), category=category)
