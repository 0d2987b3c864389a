# src/ra_law_rag/backend/pipelines/retrieval/rerank.py

"""
[职责] rerank tier：调用外部语义检索 + rerank 服务，映射为 source_tier="rerank" 的 Candidate。
[边界] 只做请求构造与响应映射；失败以异常形式抛给 run_tier；不与 keyword tier 串行依赖。
[上游关系] pipeline 在 fan-out 阶段与 keyword tier 并发调用。
[下游关系] merge 时 rerank 列表永远排在 keyword 列表之前。
"""

from __future__ import annotations

from typing import List, Optional

from ra_law_rag.backend.clients.rerank_client import RerankClient
from ra_law_rag.backend.pipelines.retrieval.types import Candidate, IndexKind
from ra_law_rag.backend.schemas.retrieval import RerankHit, RerankRequest, RetrievalQuery
from ra_law_rag.backend.utils.constants import INDEX_PRACTICE, RERANK_TABLE_BY_INDEX
from ra_law_rag.backend.utils.errors import ExternalDependencyError


SIMILARITY_SCALE = 10.0  # docstring: rawScore = similarity * 10


def rerank_candidate_limit(desired: int, *, multiplier: int = 3, max_candidates: int = 50) -> int:
    """Ask the service for `multiplier` x the desired results, capped."""
    return max(1, min(int(desired) * int(multiplier), int(max_candidates)))


def _hit_to_candidate(hit: RerankHit, *, index_kind: IndexKind) -> Candidate:
    content = hit.content_text if hit.content_text is not None else (hit.content_snippet or "")
    fields = hit.extra_fields()
    fields["similarity"] = float(hit.similarity)
    return Candidate(
        id=str(hit.id),
        title=hit.title or "",
        content_text=content,
        index_kind=index_kind,
        source_tier="rerank",
        raw_score=float(hit.similarity) * SIMILARITY_SCALE,
        fields=fields,
    )


async def fetch_rerank_candidates(
    client: RerankClient,
    query: RetrievalQuery,
    *,
    index_kind: IndexKind,
    desired: int,
    threshold: float = 0.3,
    multiplier: int = 3,
    max_candidates: int = 50,
    request_id: Optional[str] = None,
) -> List[Candidate]:
    """
    [职责] 单个 index 的 rerank 调用。
    [边界] 服务显式返回 rerank_ok=false 时视为本 tier 失败（不采用其返回的候选）。
    """
    request = RerankRequest(
        query=query.text,
        tables=RERANK_TABLE_BY_INDEX[index_kind],
        category=query.category if index_kind == INDEX_PRACTICE else None,
        limit=rerank_candidate_limit(desired, multiplier=multiplier, max_candidates=max_candidates),
        threshold=threshold,
        reference_date=query.reference_date,
    )
    response = await client.search(request, request_id=request_id)
    if response.rerank_ok is False:
        raise ExternalDependencyError(
            message=response.rerank_error or "rerank service reported rerank_ok=false",
            detail={"retrieval_mode": response.retrieval_mode},
        )

    hits = response.practice if index_kind == INDEX_PRACTICE else response.kb
    return [_hit_to_candidate(h, index_kind=index_kind) for h in hits]
