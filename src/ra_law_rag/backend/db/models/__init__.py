# src/ra_law_rag/backend/db/models/__init__.py

"""
[职责] db.models 聚合导出：集中声明 ORM Models，确保 Base.metadata 完整。
[边界] 仅做导入与 __all__ 暴露。
"""

from __future__ import annotations

from ..base import Base
from .legal import KnowledgeBaseModel, LegalPracticeModel
from .usage import ApiUsageModel

__all__ = [
    "Base",
    "KnowledgeBaseModel",
    "LegalPracticeModel",
    "ApiUsageModel",
]
