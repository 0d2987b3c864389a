# src/ra_law_rag/backend/db/models/usage.py

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, TimestampMixin


class ApiUsageModel(Base, TimestampMixin):
    """
    [职责] 使用量/遥测日志（insert-only）：每次 dual search 一行，metadata 中携带检索遥测字段。
    [边界] 检索管线内无读后写依赖；写入失败不影响调用方。
    [上游关系] services/telemetry.TelemetryRecorder 经 SqlUsageSink 写入。
    """

    __tablename__ = "api_usage"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="日志ID",
    )
    service_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True, comment="服务类型")
    model_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, comment="模型/组件名")
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="token 用量")
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, comment="估算成本")
    request_metadata: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="遥测字段（request_id / retrieval_mode / rerank_ok / counts）",
    )
