# src/ra_law_rag/backend/db/sql_store.py

"""
[职责] SqlLegalStore：LegalStore 协议的 SQLAlchemy async 实现（PostgreSQL / SQLite）。
[边界] 每次调用独立开启 session（KB 与 practice 管线并发执行，AsyncSession 不可跨任务共享）；只读。
[上游关系] services/dual_search_service 注入；pipelines 仅依赖 LegalStore 协议。
[下游关系] LegalRepo（关键词 ILIKE）与 fts.search_full_text（全文兜底）。
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ra_law_rag.backend.pipelines.retrieval.types import Candidate, IndexKind
from ra_law_rag.backend.utils.constants import INDEX_NORMATIVE, INDEX_PRACTICE

from .fts import FullTextHit, search_full_text
from .models.legal import KnowledgeBaseModel, LegalPracticeModel
from .repo.legal_repo import LegalRepo


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def kb_row_fields(row: KnowledgeBaseModel) -> Dict[str, Any]:
    return {
        "category": row.category,
        "source_name": row.source_name,
        "source_url": row.source_url,
        "article_number": row.article_number,
        "version_date": _iso(row.version_date),
    }


def practice_row_fields(row: LegalPracticeModel) -> Dict[str, Any]:
    return {
        "practice_category": row.practice_category,
        "court_type": row.court_type,
        "court_name": row.court_name,
        "outcome": row.outcome,
        "decision_date": _iso(row.decision_date),
        "case_number_anonymized": row.case_number_anonymized,
        "applied_articles": row.applied_articles,
        "key_violations": row.key_violations,
        "legal_reasoning_summary": row.legal_reasoning_summary,
        "key_paragraphs": row.key_paragraphs,
        "source_name": row.source_name,
    }


def _hit_to_candidate(hit: FullTextHit, index_kind: IndexKind) -> Candidate:
    return Candidate(
        id=hit.id,
        title=hit.title,
        content_text=hit.content_text,
        index_kind=index_kind,
        source_tier="fts_fallback",
        raw_score=hit.rank,
        fields=dict(hit.meta),
        rank=hit.rank,
    )


class SqlLegalStore:
    """LegalStore backed by knowledge_base / legal_practice_kb."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, dialect: Optional[str] = None):
        self._session_factory = session_factory
        bind = session_factory.kw.get("bind")
        self._dialect = dialect or (bind.dialect.name if bind is not None else "sqlite")

    @property
    def dialect(self) -> str:
        return self._dialect

    async def query_by_keyword(
        self,
        index_kind: IndexKind,
        keywords: Sequence[str],
        *,
        limit: int,
        category: Optional[str] = None,
    ) -> List[Candidate]:
        async with self._session_factory() as session:
            repo = LegalRepo(session)
            if index_kind == INDEX_PRACTICE:
                rows = await repo.search_practice_by_keywords(keywords, limit=limit, category=category)
                return [
                    Candidate(
                        id=str(r.id),
                        title=r.title or "",
                        content_text=r.content_text or "",
                        index_kind=INDEX_PRACTICE,
                        source_tier="keyword",
                        fields=practice_row_fields(r),
                    )
                    for r in rows
                ]
            kb_rows = await repo.search_kb_by_keywords(keywords, limit=limit)
            return [
                Candidate(
                    id=str(r.id),
                    title=r.title or "",
                    content_text=r.content_text or "",
                    index_kind=INDEX_NORMATIVE,
                    source_tier="keyword",
                    fields=kb_row_fields(r),
                )
                for r in kb_rows
            ]

    async def call_full_text_search(
        self,
        index_kind: IndexKind,
        query: str,
        *,
        limit: int,
        reference_date: Optional[date] = None,
        category: Optional[str] = None,
    ) -> List[Candidate]:
        async with self._session_factory() as session:
            hits = await search_full_text(
                session,
                index_kind=index_kind,
                query=query,
                limit=limit,
                reference_date=reference_date,
                category=category,
                dialect=self._dialect,
            )
        return [_hit_to_candidate(h, index_kind) for h in hits]
