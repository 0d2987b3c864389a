# playground/retrieval_gate/test_merge_scoring_gate.py

"""
[职责] merge/scoring gate：验证 tier 优先级合并（rerank 在前、首次出现者胜出）与确定性打分排序。
[边界] 纯函数测试；不跑 pipeline。
[上游关系] pipelines/retrieval/fusion.py + scoring.py。
[下游关系] RetrievalOutcome.results 的顺序与分数。
"""

from __future__ import annotations

import pytest

from gate_support import make_candidate
from ra_law_rag.backend.pipelines.retrieval.fusion import count_by_tier, merge_candidates
from ra_law_rag.backend.pipelines.retrieval.keywords import extract_keywords
from ra_law_rag.backend.pipelines.retrieval.scoring import keyword_overlap_score, score_candidates


pytestmark = pytest.mark.retrieval_gate


def test_article_104_rerank_then_keyword_merge_and_scores() -> None:
    """rerank 0.9 / 0.4 + keyword(dup of 0.9, new) -> 3 unique, ordered 9.0, 4.0, overlap."""
    rerank = [
        make_candidate("kb-1", title="Criminal Code Art. 104", tier="rerank", raw_score=9.0),
        make_candidate("kb-2", title="Criminal Code Art. 105", tier="rerank", raw_score=4.0),
    ]
    keyword = [
        make_candidate("kb-1", title="Criminal Code Art. 104 (keyword copy)", content="Article 104 murder"),
        make_candidate("kb-9", title="Procedure", content="see Article 104 for scope"),
    ]
    merged = merge_candidates(rerank, keyword)

    assert [c.id for c in merged] == ["kb-1", "kb-2", "kb-9"]
    assert merged[0].source_tier == "rerank"  # docstring: 首次出现者胜出
    assert merged[0].title == "Criminal Code Art. 104"

    keywords = extract_keywords("Article 104")
    results = score_candidates(merged, keywords, limit=8, snippet_length=4000)
    assert [r.id for r in results] == ["kb-1", "kb-2", "kb-9"]
    assert [r.normalized_score for r in results] == [9.0, 4.0, 1.0]
    assert len({r.id for r in results}) == 3


def test_merge_drops_later_duplicate_even_with_higher_score() -> None:
    rerank = [make_candidate("a", tier="rerank", raw_score=1.0)]
    keyword = [make_candidate("a", tier="keyword", raw_score=100.0)]
    merged = merge_candidates(rerank, keyword)
    assert len(merged) == 1
    assert merged[0].raw_score == 1.0


def test_merge_has_no_memory_between_calls() -> None:
    first = merge_candidates([make_candidate("x", tier="rerank")], [])
    second = merge_candidates([], [make_candidate("x")])
    assert [c.id for c in first] == ["x"]
    assert [c.id for c in second] == ["x"]
    assert second[0].source_tier == "keyword"


def test_count_by_tier() -> None:
    merged = merge_candidates(
        [make_candidate("a", tier="rerank"), make_candidate("b", tier="rerank")],
        [make_candidate("b"), make_candidate("c")],
    )
    assert count_by_tier(merged) == {"rerank": 2, "keyword": 1}


def test_keyword_overlap_weights_title_summary_content() -> None:
    cand = make_candidate(
        "p1",
        index_kind="practice",
        title="Fraud appeal",
        content="The fraud scheme ...",
        fields={"legal_reasoning_summary": "Court found FRAUD proven"},
    )
    assert keyword_overlap_score(cand, ["fraud"]) == 6.0  # docstring: 3 + 2 + 1
    assert keyword_overlap_score(cand, ["Appeal", "missing"]) == 3.0
    assert keyword_overlap_score(cand, []) == 0.0


def test_fallback_candidates_score_by_rank_and_ties_break_by_title() -> None:
    cands = [
        make_candidate("f2", title="Beta", tier="fts_fallback", rank=0.5, raw_score=0.5),
        make_candidate("f1", title="Alpha", tier="fts_fallback", rank=0.5, raw_score=0.5),
        make_candidate("f3", title="Gamma", tier="fts_fallback", rank=2.0, raw_score=2.0),
    ]
    results = score_candidates(cands, [], limit=10, snippet_length=100)
    assert [r.id for r in results] == ["f3", "f1", "f2"]
    assert results[0].normalized_score == 2.0


def test_equal_keyword_scores_order_by_title_then_id() -> None:
    cands = [
        make_candidate("k2", title="Same", content="theft"),
        make_candidate("k1", title="Same", content="theft"),
        make_candidate("k0", title="Another", content="theft"),
    ]
    results = score_candidates(cands, ["theft"], limit=10, snippet_length=100)
    assert [r.id for r in results] == ["k0", "k1", "k2"]


def test_limit_and_snippet_truncation() -> None:
    cands = [make_candidate(f"r{i}", tier="rerank", raw_score=float(i), content="x" * 1000) for i in range(10)]
    results = score_candidates(cands, [], limit=3, snippet_length=120, preview_length=50)
    assert [r.id for r in results] == ["r9", "r8", "r7"]
    assert all(len(r.content_text) == 120 for r in results)
    assert all(len(r.preview) == 50 for r in results)
    assert score_candidates(cands, [], limit=0, snippet_length=10) == []


def test_scoring_is_deterministic_across_input_orders() -> None:
    cands = [
        make_candidate("a", title="Theft", content="theft"),
        make_candidate("b", title="Fraud", content="theft"),
        make_candidate("c", tier="rerank", raw_score=3.5),
    ]
    forward = [r.id for r in score_candidates(cands, ["theft"], limit=5, snippet_length=50)]
    backward = [r.id for r in score_candidates(list(reversed(cands)), ["theft"], limit=5, snippet_length=50)]
    assert forward == backward == ["a", "c", "b"]
