# src/ra_law_rag/backend/pipelines/context/normative.py

"""
[职责] 法规（normative）上下文格式化：[n] 标题 (类别, 来源):\n正文，块间固定分隔符。
[边界] 只接受 normative 结果；与 practice 格式化器不共享渲染路径。
[上游关系] DualSearchService 传入已排序、已截断的 KB 结果。
[下游关系] DualOutcome.kb_context 供生成层注入 prompt。
"""

from __future__ import annotations

from typing import List, Sequence

from ra_law_rag.backend.pipelines.retrieval.types import ScoredResult
from ra_law_rag.backend.utils.constants import CONTEXT_SEPARATOR, DEFAULT_NORMATIVE_SOURCE, INDEX_NORMATIVE


def normative_blocks(results: Sequence[ScoredResult], snippet_length: int = 4000) -> List[str]:
    """One rendered block per normative result; non-normative results are skipped, never mixed in."""
    blocks: List[str] = []
    for r in results:
        if r.index_kind != INDEX_NORMATIVE:
            continue
        category = r.fields.get("category") or "N/A"
        source = r.fields.get("source_name") or DEFAULT_NORMATIVE_SOURCE
        body = (r.content_text or "")[: max(int(snippet_length), 0)]
        blocks.append(f"[{len(blocks) + 1}] {r.title} ({category}, {source}):\n{body}")
    return blocks


def format_normative_context(results: Sequence[ScoredResult], snippet_length: int = 4000) -> str:
    """Deterministic: the same ranked list always renders to the same bytes."""
    return CONTEXT_SEPARATOR.join(normative_blocks(results, snippet_length))
