# src/ra_law_rag/backend/pipelines/context/token_budget.py

"""
[职责] 确定性的 token 估算与预算裁剪：按相关度保留上下文块，超出预算时丢弃最低相关块，末块按句界截断。
[边界] 启发式估算（拉丁 ~4 字符/token，亚美尼亚文/西里尔文 ~2 字符/token），不调用分词器。
[上游关系] DualSearchService 在设置了 kb/practice token 预算时调用。
[下游关系] DualOutcome.token_usage 与裁剪后的上下文字符串。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ra_law_rag.backend.utils.constants import CONTEXT_SEPARATOR


MIN_PARTIAL_TOKENS = 50  # docstring: 剩余预算不足该值时不再截断放入末块
SENTENCE_BOUNDARIES = (". ", ".\n", "։ ", "։\n")  # docstring: 含亚美尼亚句号 ։


def _is_wide(ch: str) -> bool:
    code = ord(ch)
    return 0x0531 <= code <= 0x058F or 0x0400 <= code <= 0x04FF


def estimate_tokens(text: Optional[str]) -> int:
    if not text:
        return 0
    wide = sum(1 for ch in text if _is_wide(ch))
    latin = len(text) - wide
    return math.ceil(latin / 4) + math.ceil(wide / 2)


def truncate_to_token_budget(text: Optional[str], max_tokens: int) -> str:
    """
    Cut to roughly `max_tokens` (2 chars/token, conservative), preferring the
    last sentence boundary when it sits past the halfway mark.
    """
    if not text:
        return ""
    if estimate_tokens(text) <= max_tokens:
        return text
    char_limit = max(int(max_tokens), 0) * 2
    truncated = text[:char_limit]
    last_sentence = max(truncated.rfind(b) for b in SENTENCE_BOUNDARIES)
    if last_sentence > char_limit * 0.5:
        truncated = truncated[: last_sentence + 1]
    return truncated


@dataclass(frozen=True)
class RankedBlock:
    text: str
    score: float
    source: Optional[str] = None


@dataclass(frozen=True)
class TrimResult:
    text: str
    token_count: int
    items_kept: int  # docstring: 仅计完整放入的块；截断块计入 items_dropped
    items_dropped: int
    was_trimmed: bool


def trim_to_budget(items: Sequence[RankedBlock], max_tokens: int) -> TrimResult:
    """
    [职责] 按 score 降序填充预算；首个放不下的块在剩余 > 50 token 时截断放入，其余全部丢弃。
    [边界] 排序稳定（同分保持输入顺序）；max_tokens <= 0 或空输入返回空结果。
    """
    if not items or max_tokens <= 0:
        return TrimResult(text="", token_count=0, items_kept=0, items_dropped=0, was_trimmed=False)

    ordered = sorted(items, key=lambda b: -float(b.score))
    kept: List[str] = []
    total = 0
    truncated_last = False
    for block in ordered:
        tokens = estimate_tokens(block.text)
        if total + tokens <= max_tokens:
            kept.append(block.text)
            total += tokens
            continue
        remaining = max_tokens - total
        if remaining > MIN_PARTIAL_TOKENS:
            partial = truncate_to_token_budget(block.text, remaining)
            if partial:
                kept.append(partial)
                total += estimate_tokens(partial)
                truncated_last = True
        break

    whole = len(kept) - (1 if truncated_last else 0)
    dropped = len(ordered) - whole
    text = CONTEXT_SEPARATOR.join(kept)
    return TrimResult(
        text=text,
        token_count=estimate_tokens(text),
        items_kept=whole,
        items_dropped=dropped,
        was_trimmed=dropped > 0,
    )
