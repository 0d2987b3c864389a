# src/ra_law_rag/backend/db/base.py

"""
[职责] ORM 基类与通用时间戳 mixin。
[边界] 不定义业务表；不创建 engine。
[上游关系] db/models/* 继承 Base。
[下游关系] engine.init_db 通过 Base.metadata 建表。
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="创建时间",  # docstring: 行创建时间（DB 侧默认）
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="更新时间",
    )
