# playground/retrieval_gate/test_keywords_gate.py

"""
[职责] keywords gate：验证关键词提取与净化（长度/数字过滤、通配符与操作符剔除、数量上限）。
[边界] 纯函数测试；不访问存储。
[上游关系] pipelines/retrieval/keywords.py。
[下游关系] keyword tier 与 scorer 共享同一批关键词。
"""

from __future__ import annotations

import pytest

from ra_law_rag.backend.pipelines.retrieval.keyword import query_keywords
from ra_law_rag.backend.pipelines.retrieval.keywords import (
    MAX_TOKEN_CHARS,
    extract_keywords,
    safe_keywords,
    sanitize_keyword,
)
from ra_law_rag.backend.schemas.retrieval import RetrievalQuery


pytestmark = pytest.mark.retrieval_gate


def test_extract_drops_short_and_numeric_tokens() -> None:
    assert extract_keywords("Article 104 of the Code") == ["Article", "the", "Code"]
    assert extract_keywords("a an 12 2024") == []


def test_only_ascii_digit_tokens_count_as_numeric() -> None:
    assert extract_keywords("x\u00b2\u00b3 \u0661\u0662\u0663 404") == ["x\u00b2\u00b3", "\u0661\u0662\u0663"]
    assert extract_keywords("\u00b2\u00b3\u00b9") == ["\u00b2\u00b3\u00b9"]


def test_extract_respects_max_count_and_order() -> None:
    text = "alpha beta gamma delta epsilon"
    assert extract_keywords(text, max_count=3) == ["alpha", "beta", "gamma"]
    assert extract_keywords(text, max_count=0) == []
    assert extract_keywords(None) == []


def test_extract_keeps_armenian_tokens() -> None:
    assert extract_keywords("Քրեական օրենսգիրք 104") == ["Քրեական", "օրենսգիրք"]


def test_sanitize_strips_wildcards_and_operators() -> None:
    assert sanitize_keyword("%fraud_") == "fraud"
    assert sanitize_keyword("title.ilike.*(x),") == "titleilikex"
    assert sanitize_keyword("back\\slash") == "backslash"
    assert sanitize_keyword("  spaced \t out ") == "spaced out"


def test_sanitize_caps_length() -> None:
    assert len(sanitize_keyword("x" * 500)) == MAX_TOKEN_CHARS


def test_safe_keywords_drops_tokens_that_sanitize_to_empty() -> None:
    assert safe_keywords(["%%%", "(*)", "theft"]) == ["theft"]


def test_query_keywords_combines_extract_and_sanitize() -> None:
    q = RetrievalQuery(text="fraud% (Article) 12 ok")
    assert query_keywords(q, max_count=10) == ["fraud", "Article"]
