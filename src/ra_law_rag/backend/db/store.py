# src/ra_law_rag/backend/db/store.py

"""
[职责] LegalStore：检索管线对主存储的唯一依赖面（关键词查询 + 全文检索过程调用）。
[边界] 只读；不暴露 session/SQL；每个后端各实现一次（sql_store.SqlLegalStore / 测试 fake）。
[上游关系] pipelines/retrieval/keyword.py 与 fallback.py 调用。
[下游关系] 返回已映射好的 Candidate 列表（index_kind / source_tier 已固定）。
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from ra_law_rag.backend.pipelines.retrieval.types import Candidate, IndexKind


@runtime_checkable
class LegalStore(Protocol):
    async def query_by_keyword(
        self,
        index_kind: IndexKind,
        keywords: Sequence[str],
        *,
        limit: int,
        category: Optional[str] = None,
    ) -> List[Candidate]:
        """OR-match sanitized keywords over title/content fields of active rows."""
        ...

    async def call_full_text_search(
        self,
        index_kind: IndexKind,
        query: str,
        *,
        limit: int,
        reference_date: Optional[date] = None,
        category: Optional[str] = None,
    ) -> List[Candidate]:
        """Run the stored full-text procedure; candidates carry `rank`."""
        ...
