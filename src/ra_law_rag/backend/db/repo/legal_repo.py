# src/ra_law_rag/backend/db/repo/legal_repo.py

"""
[职责] LegalRepo：法规/判例两张索引表的关键词（ILIKE OR）查询。
[边界] 关键词须已净化（无 % _ 等通配符）；只查 active 行；不打分。
[上游关系] db/sql_store.SqlLegalStore.query_by_keyword 调用。
[下游关系] 返回 ORM 行，由 sql_store 映射为 Candidate。
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.legal import KnowledgeBaseModel, LegalPracticeModel


class LegalRepo:
    """Keyword lookups over knowledge_base / legal_practice_kb (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def search_kb_by_keywords(self, keywords: Sequence[str], *, limit: int) -> List[KnowledgeBaseModel]:
        """OR over title / content_text."""
        kws = [k for k in keywords if k]
        if not kws:
            return []
        conds = []
        for kw in kws:
            pattern = f"%{kw}%"
            conds.append(KnowledgeBaseModel.title.ilike(pattern))
            conds.append(KnowledgeBaseModel.content_text.ilike(pattern))
        stmt = (
            select(KnowledgeBaseModel)
            .where(KnowledgeBaseModel.is_active.is_(True))
            .where(or_(*conds))
            .order_by(KnowledgeBaseModel.title, KnowledgeBaseModel.id)
            .limit(int(limit))
        )
        return list((await self._session.scalars(stmt)).all())

    async def search_practice_by_keywords(
        self,
        keywords: Sequence[str],
        *,
        limit: int,
        category: Optional[str] = None,
    ) -> List[LegalPracticeModel]:
        """OR over title / legal_reasoning_summary; optional practice_category filter."""
        kws = [k for k in keywords if k]
        if not kws:
            return []
        conds = []
        for kw in kws:
            pattern = f"%{kw}%"
            conds.append(LegalPracticeModel.title.ilike(pattern))
            conds.append(LegalPracticeModel.legal_reasoning_summary.ilike(pattern))
        stmt = select(LegalPracticeModel).where(LegalPracticeModel.is_active.is_(True)).where(or_(*conds))
        if category:
            stmt = stmt.where(LegalPracticeModel.practice_category == category)
        stmt = stmt.order_by(LegalPracticeModel.title, LegalPracticeModel.id).limit(int(limit))
        return list((await self._session.scalars(stmt)).all())
