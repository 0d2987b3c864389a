# src/ra_law_rag/backend/audit/chunk_audit.py

"""
[职责] chunk_audit：确定性的分块质量审计（覆盖率/边界/缺口/重叠/重复哈希/空块/索引连续性）。
[边界] 纯函数；不访问 DB（分块加载不在本模块范围）；不调用 LLM；阈值由 AuditThresholds 注入。
[上游关系] 运维脚本或测试传入文档全文与分块行。
[下游关系] ChunkAuditMetrics 供报告/门禁使用。
"""

from __future__ import annotations

from collections import Counter
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from ra_law_rag.backend.schemas.audit import (
    AuditThresholds,
    BoundaryViolation,
    ChunkAuditMetrics,
    ChunkSpan,
    GapViolation,
    OverlapViolation,
)


EMPTY_DOC_CHARS = 100  # docstring: 无分块时，短于该长度的文档视为覆盖合格
FALLBACK_COVERAGE_CAP = 1.5  # docstring: 无字符边界时按文本长度比估算覆盖率的上限

ChunkInput = Union[ChunkSpan, Mapping[str, Any]]


def thresholds_from_settings(settings: Any) -> AuditThresholds:
    return AuditThresholds(
        coverage_min=float(settings.AUDIT_COVERAGE_MIN),
        overlap_max_ratio=float(settings.AUDIT_OVERLAP_MAX_RATIO),
        gap_tolerance_chars=int(settings.AUDIT_GAP_TOLERANCE_CHARS),
    )


def _coerce_chunks(chunks: Sequence[ChunkInput]) -> List[ChunkSpan]:
    return [c if isinstance(c, ChunkSpan) else ChunkSpan.model_validate(dict(c)) for c in chunks]


def _missing_indices(chunks: Sequence[ChunkSpan]) -> List[int]:
    present = {c.chunk_index for c in chunks}
    lo, hi = min(present), max(present)
    return [i for i in range(lo, hi + 1) if i not in present]


def _boundary_violations(chunks: Sequence[ChunkSpan], doc_chars: int) -> List[BoundaryViolation]:
    out: List[BoundaryViolation] = []
    for c in chunks:
        start = c.char_start or 0
        end = c.char_end or 0
        if start < 0:
            out.append(BoundaryViolation(chunk_index=c.chunk_index, issue=f"char_start < 0 ({start})"))
        if end > doc_chars:
            out.append(
                BoundaryViolation(chunk_index=c.chunk_index, issue=f"char_end ({end}) > doc length ({doc_chars})")
            )
        if end <= start:
            out.append(
                BoundaryViolation(chunk_index=c.chunk_index, issue=f"char_end ({end}) <= char_start ({start})")
            )
    return out


def _adjacency(
    chunks: Sequence[ChunkSpan], thresholds: AuditThresholds
) -> Tuple[List[GapViolation], List[OverlapViolation]]:
    """Walk chunks in char_start order; report gaps over tolerance and overlaps over the ratio."""
    gaps: List[GapViolation] = []
    overlaps: List[OverlapViolation] = []
    ordered = sorted(chunks, key=lambda c: c.char_start or 0)
    for curr, nxt in zip(ordered, ordered[1:]):
        curr_start = curr.char_start or 0
        curr_end = curr.char_end or 0
        next_start = nxt.char_start or 0
        between = (curr.chunk_index, nxt.chunk_index)
        if curr_end < next_start:
            size = next_start - curr_end
            if size > thresholds.gap_tolerance_chars:
                gaps.append(GapViolation(between=between, gap_start=curr_end, gap_end=next_start, gap_size=size))
        elif curr_end > next_start:
            size = curr_end - next_start
            curr_len = curr_end - curr_start
            ratio = size / curr_len if curr_len > 0 else 0.0
            if ratio > thresholds.overlap_max_ratio:
                overlaps.append(
                    OverlapViolation(
                        between=between,
                        overlap_start=next_start,
                        overlap_end=curr_end,
                        overlap_size=size,
                        overlap_ratio=round(ratio, 2),
                    )
                )
    return gaps, overlaps


def _covered_ratio(chunks: Sequence[ChunkSpan], doc_chars: int) -> float:
    if doc_chars <= 0:
        return 0.0
    covered = set()
    for c in chunks:
        start = max(c.char_start or 0, 0)
        end = min(c.char_end or 0, doc_chars)
        covered.update(range(start, end))
    return len(covered) / doc_chars


def compute_metrics(
    document_id: str,
    source_table: str,
    content_text: Optional[str],
    chunks: Sequence[ChunkInput],
    thresholds: Optional[AuditThresholds] = None,
) -> ChunkAuditMetrics:
    """
    [职责] 计算单文档分块审计指标。
    [边界] 有字符边界时按覆盖字符集合计算覆盖率并检查边界/缺口/重叠；
           否则按总分块长度 / 文档长度估算（上限 1.5），不做边界类检查。
    """
    th = thresholds or AuditThresholds()
    text = content_text or ""
    doc_chars = len(text)
    spans = _coerce_chunks(chunks)

    if not spans:
        return ChunkAuditMetrics(
            document_id=document_id,
            source_table=source_table,
            document_chars=doc_chars,
            coverage_ok=doc_chars < EMPTY_DOC_CHARS,
        )

    sizes = [len(c.chunk_text) for c in spans]
    total = sum(sizes)
    has_bounds = any(c.char_start is not None for c in spans)

    boundary: List[BoundaryViolation] = []
    gaps: List[GapViolation] = []
    overlaps: List[OverlapViolation] = []
    if has_bounds:
        boundary = _boundary_violations(spans, doc_chars)
        gaps, overlaps = _adjacency(spans, th)
        coverage = _covered_ratio(spans, doc_chars)
    else:
        coverage = min(total / doc_chars, FALLBACK_COVERAGE_CAP) if doc_chars > 0 else 0.0

    hash_counts = Counter(c.chunk_hash for c in spans if c.chunk_hash)
    missing = _missing_indices(spans)

    return ChunkAuditMetrics(
        document_id=document_id,
        source_table=source_table,
        chunk_count=len(spans),
        avg_size=round(total / len(spans)),
        max_size=max(sizes),
        min_size=min(sizes),
        total_chunk_chars=total,
        document_chars=doc_chars,
        coverage_ratio=round(coverage, 3),
        coverage_ok=coverage >= th.coverage_min,
        boundary_violations=boundary,
        gap_violations=gaps,
        overlap_violations=overlaps,
        duplicate_hashes=[h for h, n in hash_counts.items() if n > 1],
        empty_chunks=[c.chunk_index for c in spans if not c.chunk_text.strip()],
        index_continuity_ok=not missing,
        missing_indices=missing,
    )
