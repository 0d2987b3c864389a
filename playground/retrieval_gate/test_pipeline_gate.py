# playground/retrieval_gate/test_pipeline_gate.py

"""
[职责] pipeline gate：验证单 index 管线的 tier 编排（并发 fan-out、失败隔离、fallback 仅一次、取消/截止、硬上限）。
[边界] 使用内存 FakeStore + MockTransport rerank；不访问数据库。
[上游关系] pipelines/retrieval/pipeline.py。
[下游关系] RetrievalOutcome 的 retrieval_mode / rerank_ok / cancelled / tier_counts 语义。
"""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from gate_support import FakeStore, RerankServiceStub, make_candidate, make_rerank_client, rerank_hit
from ra_law_rag.backend.pipelines.base.context import RetrievalContext
from ra_law_rag.backend.pipelines.retrieval.pipeline import (
    IndexRetrievalPipeline,
    build_index_config,
    clamp_limit,
)
from ra_law_rag.backend.schemas.retrieval import RetrievalQuery
from ra_law_rag.config import Settings


pytestmark = pytest.mark.retrieval_gate


def _pipeline(store, client, *, index_kind="normative", limit=8, **overrides) -> IndexRetrievalPipeline:
    cfg = build_index_config(
        index_kind,
        limit=limit,
        snippet_length=None,
        settings=Settings(),
        overrides=overrides,
    )
    return IndexRetrievalPipeline(store=store, rerank_client=client, config=cfg)


def _keyword_rows(*ids: str, index_kind: str = "normative"):
    return [make_candidate(i, index_kind=index_kind, content=f"theft penalty {i}") for i in ids]


@pytest.mark.asyncio
async def test_rerank_and_keyword_both_contribute() -> None:
    stub = RerankServiceStub(kb=[rerank_hit("kb-1", 0.9), rerank_hit("kb-2", 0.4)])
    client = make_rerank_client(stub)
    store = FakeStore(keyword={"normative": _keyword_rows("kb-1", "kb-3")})
    try:
        outcome = await _pipeline(store, client).run(RetrievalQuery(text="theft penalty"), RetrievalContext())
    finally:
        await client.aclose()

    assert outcome.retrieval_mode == "keyword+rerank"
    assert outcome.rerank_ok is True
    assert [r.id for r in outcome.results] == ["kb-1", "kb-2", "kb-3"]
    assert outcome.results[0].source_tier == "rerank"
    assert outcome.tier_counts == {"rerank": 2, "keyword": 2, "fts_fallback": 0, "merged": 3}
    assert outcome.fallback_invoked is False
    assert store.fulltext_calls == []
    assert [s["id"] for s in outcome.sources] == ["kb-1", "kb-2", "kb-3"]


@pytest.mark.asyncio
async def test_rerank_timeout_degrades_to_keyword_only() -> None:
    stub = RerankServiceStub(kb=[rerank_hit("kb-1", 0.9)], delay_s=2.0)
    client = make_rerank_client(stub)
    store = FakeStore(keyword={"normative": _keyword_rows("k1", "k2", "k3")})
    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        outcome = await _pipeline(store, client, rerank_timeout_s=0.05).run(
            RetrievalQuery(text="theft penalty"), RetrievalContext()
        )
    finally:
        await client.aclose()

    assert loop.time() - started < 1.0
    assert outcome.retrieval_mode == "keyword_only"
    assert outcome.rerank_ok is False
    assert outcome.rerank_error and outcome.rerank_error.startswith("TimeoutError")
    assert sorted(r.id for r in outcome.results) == ["k1", "k2", "k3"]
    assert outcome.fallback_invoked is False
    assert store.fulltext_calls == []
    assert "rerank" in outcome.tier_errors


@pytest.mark.asyncio
async def test_rerank_http_failure_with_keyword_hits_is_keyword_only() -> None:
    client = make_rerank_client(RerankServiceStub(status_code=500))
    store = FakeStore(keyword={"normative": _keyword_rows("k1")})
    try:
        outcome = await _pipeline(store, client).run(RetrievalQuery(text="theft"), RetrievalContext())
    finally:
        await client.aclose()

    assert outcome.retrieval_mode == "keyword_only"
    assert outcome.rerank_ok is False
    assert [r.id for r in outcome.results] == ["k1"]


@pytest.mark.asyncio
async def test_rerank_ok_but_empty_is_keyword_only() -> None:
    client = make_rerank_client(RerankServiceStub())
    store = FakeStore(keyword={"normative": _keyword_rows("k1")})
    try:
        outcome = await _pipeline(store, client).run(RetrievalQuery(text="theft"), RetrievalContext())
    finally:
        await client.aclose()

    assert outcome.retrieval_mode == "keyword_only"
    assert outcome.rerank_ok is True
    assert outcome.rerank_error is None


@pytest.mark.asyncio
async def test_fallback_invoked_exactly_once_when_merged_is_empty() -> None:
    client = make_rerank_client(RerankServiceStub())
    store = FakeStore(
        fulltext={
            "normative": [
                make_candidate("f1", title="Alpha", tier="fts_fallback", rank=0.2),
                make_candidate("f2", title="Beta", tier="fts_fallback", rank=0.7),
                make_candidate("noise", title="Noise", tier="fts_fallback", rank=0.0005),
            ]
        }
    )
    try:
        outcome = await _pipeline(store, client).run(RetrievalQuery(text="theft penalty"), RetrievalContext())
    finally:
        await client.aclose()

    assert len(store.fulltext_calls) == 1
    assert store.fulltext_calls[0]["query"] == "theft penalty"
    assert outcome.fallback_invoked is True
    assert outcome.retrieval_mode == "rpc_fallback"
    assert [r.id for r in outcome.results] == ["f2", "f1"]  # docstring: rank 降序；低于 floor 的噪声被过滤
    assert [r.normalized_score for r in outcome.results] == [0.7, 0.2]
    assert all(r.source_tier == "fts_fallback" for r in outcome.results)


@pytest.mark.asyncio
async def test_all_tiers_empty_returns_no_results() -> None:
    client = make_rerank_client(RerankServiceStub())
    store = FakeStore()
    try:
        outcome = await _pipeline(store, client).run(RetrievalQuery(text="nothing matches"), RetrievalContext())
    finally:
        await client.aclose()

    assert outcome.results == []
    assert outcome.sources == []
    assert outcome.retrieval_mode == "rpc_fallback"
    assert len(store.fulltext_calls) == 1


@pytest.mark.asyncio
async def test_all_tiers_failing_still_returns_an_outcome() -> None:
    store = FakeStore(keyword_error=RuntimeError("db down"), fulltext_error=RuntimeError("db down"))
    outcome = await _pipeline(store, None).run(RetrievalQuery(text="theft"), RetrievalContext())

    assert outcome.results == []
    assert outcome.rerank_ok is False
    assert "not configured" in (outcome.rerank_error or "")
    assert set(outcome.tier_errors) == {"rerank", "keyword", "fts_fallback"}
    assert outcome.fallback_invoked is True


@pytest.mark.asyncio
async def test_fallback_filters_by_reference_date_for_normative_only() -> None:
    store = FakeStore()
    q = RetrievalQuery(text="theft", reference_date=date(2020, 1, 1), category="criminal")
    await _pipeline(store, None).run(q, RetrievalContext())
    await _pipeline(store, None, index_kind="practice").run(q, RetrievalContext())

    normative_call, practice_call = store.fulltext_calls
    assert normative_call["reference_date"] == date(2020, 1, 1)
    assert normative_call["category"] is None
    assert practice_call["reference_date"] is None
    assert practice_call["category"] == "criminal"


@pytest.mark.asyncio
async def test_cancellation_returns_fast_without_fallback() -> None:
    store = FakeStore(keyword={"normative": _keyword_rows("k1")}, keyword_delay_s=5.0)
    client = make_rerank_client(RerankServiceStub(kb=[rerank_hit("kb-1", 0.8)], delay_s=5.0))
    event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.call_later(0.05, event.set)
    started = loop.time()
    try:
        outcome = await _pipeline(store, client).run(
            RetrievalQuery(text="theft"), RetrievalContext(cancel_event=event)
        )
    finally:
        await client.aclose()

    assert loop.time() - started < 1.0
    assert outcome.cancelled is True
    assert outcome.fallback_invoked is False
    assert store.fulltext_calls == []
    assert outcome.results == []


@pytest.mark.asyncio
async def test_cancellation_keeps_tiers_that_already_finished() -> None:
    store = FakeStore(keyword={"normative": _keyword_rows("k1")}, keyword_delay_s=5.0)
    client = make_rerank_client(RerankServiceStub(kb=[rerank_hit("kb-1", 0.8)]))
    event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.2, event.set)
    try:
        outcome = await _pipeline(store, client).run(
            RetrievalQuery(text="theft"), RetrievalContext(cancel_event=event)
        )
    finally:
        await client.aclose()

    assert outcome.cancelled is True
    assert [r.id for r in outcome.results] == ["kb-1"]
    assert outcome.rerank_ok is True
    assert outcome.tier_errors.get("keyword") == "cancelled"


@pytest.mark.asyncio
async def test_outer_deadline_interrupts_slow_tiers() -> None:
    store = FakeStore(keyword_delay_s=5.0, fulltext={"normative": [make_candidate("f1", rank=1.0)]})
    loop = asyncio.get_running_loop()
    started = loop.time()
    outcome = await _pipeline(store, None).run(RetrievalQuery(text="theft"), RetrievalContext(budget_s=0.1))

    assert loop.time() - started < 1.0
    assert outcome.cancelled is True
    assert outcome.results == []


@pytest.mark.asyncio
async def test_hard_cap_clamps_caller_limit() -> None:
    rows = _keyword_rows(*[f"k{i:02d}" for i in range(40)])
    store = FakeStore(keyword={"normative": rows})
    pipeline = _pipeline(store, None, limit=1000, keyword_row_limit=100)
    outcome = await pipeline.run(RetrievalQuery(text="theft"), RetrievalContext())

    assert pipeline.config.limit == 30
    assert outcome.limit == 30
    assert len(outcome.results) == 30
    assert clamp_limit(0, 30) == 0
    assert clamp_limit(-5, 30) == 0
    assert clamp_limit("junk", 30) == 0


@pytest.mark.asyncio
async def test_zero_limit_returns_no_results() -> None:
    store = FakeStore(keyword={"normative": _keyword_rows("k1", "k2")})
    pipeline = _pipeline(store, None, limit=0)
    outcome = await pipeline.run(RetrievalQuery(text="theft penalty"), RetrievalContext())

    assert pipeline.config.limit == 0
    assert outcome.results == []
    assert outcome.sources == []
    assert outcome.fallback_invoked is False


@pytest.mark.asyncio
async def test_indexes_never_mix() -> None:
    store = FakeStore(
        keyword={
            "normative": _keyword_rows("kb-1") + _keyword_rows("p-stray", index_kind="practice"),
            "practice": _keyword_rows("p-1", index_kind="practice"),
        }
    )
    kb = await _pipeline(store, None).run(RetrievalQuery(text="theft"), RetrievalContext())
    practice = await _pipeline(store, None, index_kind="practice").run(
        RetrievalQuery(text="theft", category="civil"), RetrievalContext()
    )

    assert [r.id for r in kb.results] == ["kb-1"]
    assert [r.id for r in practice.results] == ["p-1"]
    assert store.keyword_calls[0]["category"] is None
    assert store.keyword_calls[1]["category"] == "civil"


@pytest.mark.asyncio
async def test_query_without_keywords_skips_store_keyword_call() -> None:
    store = FakeStore()
    outcome = await _pipeline(store, None).run(RetrievalQuery(text="a 12 of"), RetrievalContext())

    assert store.keyword_calls == []
    assert outcome.tier_counts["keyword"] == 0
    assert "keyword" not in outcome.tier_errors
