# src/ra_law_rag/backend/pipelines/context/practice.py

"""
[职责] 判例（practice）上下文格式化：每条结果一个带标签字段的结构化块 + 摘录。
[边界] 摘录策略强制：存在 precedent units（key_paragraphs）时只渲染至多 6 条单元（引文 <= 25 词），
       绝不附带原始 content_text；无单元时才退回截断摘录。与 normative 格式化器不共享渲染路径。
[上游关系] DualSearchService 传入已排序、已截断的 practice 结果（ECHR 为 category 子集）。
[下游关系] DualOutcome.practice_context。
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ra_law_rag.backend.pipelines.retrieval.types import ScoredResult
from ra_law_rag.backend.utils.constants import CONTEXT_SEPARATOR, INDEX_PRACTICE


MAX_PRECEDENT_UNITS = 6
MAX_QUOTE_WORDS = 25
FULL_EXCERPT_CHARS = 2000
SHORT_EXCERPT_CHARS = 1500
NOT_AVAILABLE = "N/A"

COURT_LABELS = {
    "first_instance": "Court of First Instance",
    "appeal": "Court of Appeal",
    "cassation": "Court of Cassation",
    "constitutional": "Constitutional Court",
    "echr": "European Court of Human Rights",
}

OUTCOME_LABELS = {
    "granted": "Granted",
    "rejected": "Rejected",
    "partial": "Partially granted",
    "remanded": "Remanded",
    "discontinued": "Discontinued",
}


def jurisdiction_tag(fields: Mapping[str, Any]) -> str:
    if fields.get("practice_category") == "echr" or fields.get("court_type") == "echr":
        return "ECHR"
    return "RA"


def truncate_quote(quote: str, max_words: int = MAX_QUOTE_WORDS) -> str:
    words = str(quote or "").split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]) + "…"


def _join_list(value: Any) -> str:
    if not value:
        return NOT_AVAILABLE
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def precedent_units(fields: Mapping[str, Any]) -> List[Dict[str, str]]:
    """
    [职责] 从 key_paragraphs 提取规范化的 precedent units（rule/quote/anchor/issue）。
    [边界] 兼容 rule_text|holding、quote|exact_quote、anchor|paragraph 两套键名；空 rule 且空 quote 的单元丢弃。
    """
    raw = fields.get("key_paragraphs")
    if not isinstance(raw, list):
        return []
    units: List[Dict[str, str]] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        rule = str(item.get("rule_text") or item.get("holding") or "").strip()
        quote = str(item.get("quote") or item.get("exact_quote") or "").strip()
        if not rule and not quote:
            continue
        units.append(
            {
                "rule": rule,
                "quote": truncate_quote(quote),
                "anchor": str(item.get("anchor") or item.get("paragraph") or "").strip(),
                "issue": str(item.get("issue_id") or "").strip(),
            }
        )
    return units


def _render_units(units: Sequence[Mapping[str, str]]) -> str:
    lines: List[str] = []
    for idx, u in enumerate(units[:MAX_PRECEDENT_UNITS], start=1):
        line = f"  {idx}) {u['rule']}"
        if u["quote"]:
            line += f"\n     «{u['quote']}»"
        if u["anchor"]:
            line += f" [§{u['anchor']}]"
        if u["issue"]:
            line += f" [{u['issue']}]"
        lines.append(line)
    return "PRECEDENT UNITS:\n" + "\n".join(lines)


def _excerpt(result: ScoredResult, *, full_text: bool) -> str:
    units = precedent_units(result.fields)
    if units:
        return _render_units(units)
    content = result.content_text or ""
    if full_text:
        summary: Optional[str] = result.fields.get("legal_reasoning_summary")
        return str(summary) if summary else content[:FULL_EXCERPT_CHARS]
    return content[:SHORT_EXCERPT_CHARS]


def _render_block(n: int, r: ScoredResult, *, full_text: bool) -> str:
    f = r.fields
    court_type = f.get("court_type") or ""
    court = COURT_LABELS.get(court_type, court_type) or NOT_AVAILABLE
    court_name = f.get("court_name")
    if court_name:
        court = f"{court} ({court_name})"
    outcome = f.get("outcome") or ""

    header = [
        f"[Practice {n}] {r.title}",
        f"Jurisdiction: {jurisdiction_tag(f)} | Category: {f.get('practice_category') or NOT_AVAILABLE} | Court: {court}",
        f"Decision date: {f.get('decision_date') or NOT_AVAILABLE}"
        f" | Case number: {f.get('case_number_anonymized') or NOT_AVAILABLE}"
        f" | ID: {r.id}",
        f"Outcome: {OUTCOME_LABELS.get(outcome, outcome) or NOT_AVAILABLE}",
        f"Applied articles: {_join_list(f.get('applied_articles'))}",
        f"Key violations: {_join_list(f.get('key_violations'))}",
        f"Legal reasoning: {f.get('legal_reasoning_summary') or NOT_AVAILABLE}",
    ]
    return "\n".join(header) + "\n\n" + _excerpt(r, full_text=full_text)


def practice_blocks(results: Sequence[ScoredResult], full_text: bool = True) -> List[str]:
    """One rendered block per practice result; non-practice results are skipped, never mixed in."""
    blocks: List[str] = []
    for r in results:
        if r.index_kind != INDEX_PRACTICE:
            continue
        blocks.append(_render_block(len(blocks) + 1, r, full_text=full_text))
    return blocks


def format_practice_context(results: Sequence[ScoredResult], full_text: bool = True) -> str:
    """Deterministic: the same ranked list always renders to the same bytes."""
    return CONTEXT_SEPARATOR.join(practice_blocks(results, full_text))
