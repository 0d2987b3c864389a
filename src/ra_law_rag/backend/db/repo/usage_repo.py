# src/ra_law_rag/backend/db/repo/usage_repo.py

"""
[职责] UsageRepo：api_usage 的 insert-only 写入。
[边界] 只 flush，不 commit（由 SqlUsageSink 控制事务）。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.usage import ApiUsageModel


class UsageRepo:
    """Usage log repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_usage(
        self,
        *,
        service_type: str,
        model_name: Optional[str],
        tokens_used: int = 0,
        estimated_cost: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ApiUsageModel:
        row = ApiUsageModel(
            service_type=service_type,
            model_name=model_name,
            tokens_used=int(tokens_used),
            estimated_cost=float(estimated_cost),
            request_metadata=dict(metadata or {}),
        )
        self._session.add(row)
        await self._session.flush()  # docstring: 获取 row.id
        return row
