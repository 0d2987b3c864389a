# src/ra_law_rag/backend/db/repo/__init__.py

"""
[职责] db.repo 聚合导出：集中暴露仓储对象，供 store / sink 层调用。
[边界] 仅做导入与 __all__ 暴露。
"""

from __future__ import annotations

from .legal_repo import LegalRepo
from .usage_repo import UsageRepo

__all__ = [
    "LegalRepo",
    "UsageRepo",
]
