# src/ra_law_rag/backend/schemas/audit.py

"""
[职责] Audit 契约层：请求追踪上下文（trace/request 标识）与分块质量审计的输入/输出结构。
[边界] 仅字段定义与轻量校验；不做审计计算（见 backend/audit/chunk_audit.py）；不落盘。
[上游关系] api/middleware 生成 TraceContext；调用方构造 ChunkSpan 列表。
[下游关系] services 与 routers 透传 trace 字段；chunk_audit 产出 ChunkAuditMetrics。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_uuid() -> str:
    return str(uuid4())


class TraceContext(BaseModel):
    """
    [职责] TraceContext：一次 HTTP 请求的追踪上下文（trace_id/request_id）。
    [边界] request_id 可由上游透传（不强制 UUID 格式）；不包含 span 细节。
    [上游关系] TraceContextMiddleware 创建并挂到 request.state。
    [下游关系] DualSearchService 使用 request_id/trace_id 串联日志与遥测。
    """

    model_config = ConfigDict(extra="allow")

    trace_id: str = Field(default_factory=new_uuid, max_length=128)  # docstring: 全链路追踪ID
    request_id: str = Field(default_factory=new_uuid, max_length=128)  # docstring: 单次 HTTP 请求ID
    parent_request_id: Optional[str] = Field(default=None, max_length=128)  # docstring: 上游请求ID
    tags: Dict[str, Any] = Field(default_factory=dict)


class AuditThresholds(BaseModel):
    """Chunk audit thresholds; defaults come from Settings.AUDIT_*."""

    model_config = ConfigDict(frozen=True)

    coverage_min: float = Field(default=0.95, ge=0.0, le=1.0)
    overlap_max_ratio: float = Field(default=0.15, ge=0.0, le=1.0)
    gap_tolerance_chars: int = Field(default=20, ge=0)


class ChunkSpan(BaseModel):
    """
    [职责] 单个分块行（chunk_index/chunk_text/字符边界/哈希）。
    [边界] char_start/char_end 可缺省（无边界时覆盖率按文本长度比估算）；未知列忽略。
    """

    model_config = ConfigDict(extra="ignore")

    chunk_index: int = Field(default=0)
    chunk_text: str = Field(default="")
    char_start: Optional[int] = Field(default=None)
    char_end: Optional[int] = Field(default=None)
    chunk_hash: Optional[str] = Field(default=None)


class BoundaryViolation(BaseModel):
    chunk_index: int
    issue: str


class GapViolation(BaseModel):
    between: Tuple[int, int]
    gap_start: int
    gap_end: int
    gap_size: int


class OverlapViolation(BaseModel):
    between: Tuple[int, int]
    overlap_start: int
    overlap_end: int
    overlap_size: int
    overlap_ratio: float


class ChunkAuditMetrics(BaseModel):
    """
    [职责] 单文档分块审计结果（覆盖率、边界、缺口、重叠、重复、空块、索引连续性）。
    [边界] 纯计算结果；passed 为各项检查的合取。
    """

    document_id: str
    source_table: str
    chunk_count: int = 0
    avg_size: int = 0
    max_size: int = 0
    min_size: int = 0
    total_chunk_chars: int = 0
    document_chars: int = 0
    coverage_ratio: float = 0.0
    coverage_ok: bool = False
    boundary_violations: List[BoundaryViolation] = Field(default_factory=list)
    gap_violations: List[GapViolation] = Field(default_factory=list)
    overlap_violations: List[OverlapViolation] = Field(default_factory=list)
    duplicate_hashes: List[str] = Field(default_factory=list)
    empty_chunks: List[int] = Field(default_factory=list)
    index_continuity_ok: bool = True
    missing_indices: List[int] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return (
            self.coverage_ok
            and self.index_continuity_ok
            and not self.boundary_violations
            and not self.gap_violations
            and not self.overlap_violations
            and not self.duplicate_hashes
            and not self.empty_chunks
        )
