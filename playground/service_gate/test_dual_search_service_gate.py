# playground/service_gate/test_dual_search_service_gate.py

"""
[职责] service gate：验证 dual_search 的输入校验、双索引聚合、上下文拼装与 fire-and-forget 遥测。
[边界] 使用 FakeStore + MockTransport rerank + 内存 usage sink；不访问数据库。
[上游关系] services/dual_search_service.py + services/telemetry.py。
[下游关系] DualOutcome 契约（api/routers/search.py 序列化）。
"""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from gate_support import (
    FailingSink,
    FakeStore,
    RecordingSink,
    RerankServiceStub,
    SlowSink,
    make_candidate,
    make_rerank_client,
    rerank_hit,
)
from ra_law_rag.backend.pipelines.context.disclaimer import ASSUMED_DATE_NOTE
from ra_law_rag.backend.pipelines.retrieval.types import RetrievalOutcome
from ra_law_rag.backend.services.dual_search_service import (
    DualSearchService,
    aggregate_rerank_error,
    aggregate_retrieval_mode,
)
from ra_law_rag.backend.services.telemetry import TelemetryRecorder
from ra_law_rag.backend.utils.constants import CONTEXT_SEPARATOR
from ra_law_rag.backend.utils.errors import BadRequestError
from ra_law_rag.config import Settings


pytestmark = pytest.mark.service_gate


def _store() -> FakeStore:
    return FakeStore(
        keyword={
            "normative": [make_candidate("kb-7", title="Criminal Code Art. 177", content="theft is punished")],
            "practice": [
                make_candidate(
                    "p-1",
                    title="Theft appeal",
                    content="theft appeal text",
                    index_kind="practice",
                    fields={"practice_category": "criminal", "court_type": "appeal"},
                )
            ],
        }
    )


def _stub() -> RerankServiceStub:
    return RerankServiceStub(kb=[rerank_hit("kb-1", 0.9, content="Theft means ...", category="criminal_code")])


def _outcome(index_kind: str, mode: str, *, rerank_ok: bool = True, rerank_error=None) -> RetrievalOutcome:
    return RetrievalOutcome(
        index_kind=index_kind,  # type: ignore[arg-type]
        results=[],
        sources=[],
        retrieval_mode=mode,  # type: ignore[arg-type]
        rerank_ok=rerank_ok,
        rerank_error=rerank_error,
    )


def test_aggregate_retrieval_mode_takes_the_best_bucket() -> None:
    assert aggregate_retrieval_mode("keyword_only", "keyword+rerank") == "keyword+rerank"
    assert aggregate_retrieval_mode("rpc_fallback", "keyword_only") == "keyword_only"
    assert aggregate_retrieval_mode("rpc_fallback", "rpc_fallback") == "rpc_fallback"


def test_aggregate_rerank_error_names_each_failed_bucket() -> None:
    kb = _outcome("normative", "keyword_only", rerank_ok=False, rerank_error="TimeoutError: x")
    practice = _outcome("practice", "keyword+rerank")
    assert aggregate_rerank_error(kb, practice) == "normative: TimeoutError: x"
    assert aggregate_rerank_error(practice, practice) is None


@pytest.mark.asyncio
async def test_dual_search_aggregates_both_buckets() -> None:
    stub = _stub()
    client = make_rerank_client(stub)
    store = _store()
    service = DualSearchService(store=store, rerank_client=client)
    try:
        outcome = await service.dual_search(
            {"text": "theft penalty", "category": "criminal"},
            {"request_id": "req-42"},
        )
    finally:
        await client.aclose()

    assert outcome.request_id == "req-42"
    assert outcome.kb.retrieval_mode == "keyword+rerank"
    assert outcome.practice.retrieval_mode == "keyword_only"
    assert outcome.retrieval_mode == "keyword+rerank"
    assert outcome.rerank_ok is True
    assert outcome.rerank_error is None
    assert [r.id for r in outcome.kb_results] == ["kb-1", "kb-7"]
    assert [r.id for r in outcome.practice_results] == ["p-1"]
    assert [s["id"] for s in outcome.sources] == ["kb-1", "kb-7", "p-1"]
    assert sorted(stub.tables_called()) == ["kb", "practice"]
    assert all(h["x-request-id"] == "req-42" for h in stub.headers)
    assert {c["index_kind"]: c["category"] for c in store.keyword_calls} == {"normative": None, "practice": "criminal"}

    assert outcome.kb_context.startswith("[1] Title kb-1 (criminal_code, RA Legal Database):")
    assert outcome.practice_context.startswith("[Practice 1] Theft appeal")
    assert outcome.context == outcome.kb_context + CONTEXT_SEPARATOR + outcome.practice_context + ASSUMED_DATE_NOTE
    assert outcome.token_usage["total_tokens"] > 0
    assert outcome.cancelled is False
    assert "total" in outcome.timing_ms
    assert "normative.rerank" in outcome.timing_ms


@pytest.mark.asyncio
async def test_rerank_outage_is_reported_for_both_buckets() -> None:
    client = make_rerank_client(RerankServiceStub(status_code=503))
    service = DualSearchService(store=_store(), rerank_client=client)
    try:
        outcome = await service.dual_search("theft")
    finally:
        await client.aclose()

    assert outcome.rerank_ok is False
    assert outcome.retrieval_mode == "keyword_only"
    assert outcome.rerank_error.startswith("normative: ExternalDependencyError")
    assert "; practice: " in outcome.rerank_error


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", {"text": "\t"}, {"text": "ok", "unknown": 1}])
async def test_invalid_query_rejected_before_any_tier(query) -> None:
    stub = _stub()
    client = make_rerank_client(stub)
    store = _store()
    service = DualSearchService(store=store, rerank_client=client)
    try:
        with pytest.raises(BadRequestError) as err:
            await service.dual_search(query)
    finally:
        await client.aclose()

    assert err.value.detail["errors"]
    assert stub.requests == []
    assert store.keyword_calls == []
    assert store.fulltext_calls == []


@pytest.mark.asyncio
async def test_reference_date_note_and_empty_context() -> None:
    service = DualSearchService(store=FakeStore(), rerank_client=None)
    empty = await service.dual_search({"text": "nothing here", "reference_date": "2021-06-01"})
    assert empty.context == ""
    assert empty.kb_results == [] and empty.practice_results == []
    assert empty.retrieval_mode == "rpc_fallback"

    dated = await DualSearchService(store=_store(), rerank_client=None).dual_search(
        {"text": "theft", "reference_date": date(2021, 6, 1)}
    )
    assert dated.context.endswith("effective as of 2021-06-01.]")


@pytest.mark.asyncio
async def test_settings_caps_apply_to_caller_limits() -> None:
    rows = [make_candidate(f"kb-{i}", content="theft") for i in range(10)]
    store = FakeStore(keyword={"normative": rows})
    settings = Settings().model_copy(update={"KB_MAX_LIMIT": 2})
    service = DualSearchService(store=store, rerank_client=None, settings=settings)

    outcome = await service.dual_search("theft", {"kb_limit": 50})
    assert len(outcome.kb_results) == 2
    assert outcome.kb.limit == 2


@pytest.mark.asyncio
async def test_token_budget_drops_lowest_ranked_blocks() -> None:
    rows = [make_candidate(f"kb-{i}", content="theft " + "x" * 2000) for i in range(4)]
    service = DualSearchService(store=FakeStore(keyword={"normative": rows}), rerank_client=None)

    outcome = await service.dual_search("theft", {"kb_token_budget": 600})
    assert outcome.token_usage["kb_items_dropped"] >= 2
    assert outcome.token_usage["kb_tokens"] <= 600 + 10


@pytest.mark.asyncio
async def test_cancel_event_is_shared_by_both_buckets() -> None:
    store = FakeStore(keyword_delay_s=5.0)
    event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.call_later(0.05, event.set)
    started = loop.time()

    outcome = await DualSearchService(store=store, rerank_client=None).dual_search("theft", cancel_event=event)

    assert loop.time() - started < 1.0
    assert outcome.cancelled is True
    assert outcome.kb.cancelled and outcome.practice.cancelled
    assert store.fulltext_calls == []


@pytest.mark.asyncio
async def test_telemetry_recorded_without_blocking() -> None:
    sink = RecordingSink()
    telemetry = TelemetryRecorder(sink, timeout_s=1.0)
    service = DualSearchService(store=_store(), rerank_client=None, telemetry=telemetry)
    try:
        outcome = await service.dual_search({"text": "theft", "category": "criminal"}, {"request_id": "req-7"})
        assert await telemetry.drain(1.0) is True
    finally:
        await telemetry.aclose(1.0)

    assert len(sink.events) == 1
    event = sink.events[0]
    assert event["service_type"] == "rag_search"
    assert event["model_name"] == "dual_search"
    assert event["tokens_used"] == outcome.token_usage["total_tokens"]
    meta = event["metadata"]
    assert meta["request_id"] == "req-7"
    assert meta["category"] == "criminal"
    assert meta["retrieval_mode"] == "keyword_only"
    assert meta["rerank_ok"] is False
    assert meta["kb"]["result_count"] == 1
    assert "theft" not in str(meta)  # docstring: 只记录查询哈希
    assert telemetry.stats.sent == 1


@pytest.mark.asyncio
async def test_failing_and_slow_sinks_never_affect_results() -> None:
    failing = TelemetryRecorder(FailingSink(), timeout_s=1.0)
    slow = TelemetryRecorder(SlowSink(delay_s=5.0), timeout_s=0.05)
    baseline = await DualSearchService(store=_store(), rerank_client=None).dual_search("theft")

    loop = asyncio.get_running_loop()
    try:
        for telemetry in (failing, slow):
            started = loop.time()
            outcome = await DualSearchService(store=_store(), rerank_client=None, telemetry=telemetry).dual_search(
                "theft"
            )
            assert loop.time() - started < 1.0
            assert [r.id for r in outcome.kb_results] == [r.id for r in baseline.kb_results]
            assert outcome.context == baseline.context
            assert await telemetry.drain(1.0) is True
    finally:
        await failing.aclose(1.0)
        await slow.aclose(1.0)

    assert failing.stats.failed == 1
    assert "usage store unavailable" in (failing.stats.last_error or "")
    assert slow.stats.failed == 1
    assert (slow.stats.last_error or "").startswith("TimeoutError")


@pytest.mark.asyncio
async def test_full_queue_drops_events() -> None:
    sink = RecordingSink()
    telemetry = TelemetryRecorder(sink, maxsize=1)
    try:
        assert telemetry.record({"request_id": "a"}) is True
        assert telemetry.record({"request_id": "b"}) is False
        assert telemetry.stats.dropped == 1
        assert await telemetry.drain(1.0) is True
    finally:
        await telemetry.aclose(1.0)

    assert [e["metadata"]["request_id"] for e in sink.events] == ["a"]


@pytest.mark.asyncio
async def test_disabled_recorder_records_nothing() -> None:
    sink = RecordingSink()
    telemetry = TelemetryRecorder(sink, enabled=False)
    assert telemetry.record({"request_id": "a"}) is False
    assert telemetry.pending == 0
    await telemetry.aclose(0.1)
    assert sink.events == []


@pytest.mark.asyncio
async def test_zero_or_negative_limits_return_empty_buckets() -> None:
    service = DualSearchService(store=_store(), rerank_client=None)

    outcome = await service.dual_search("theft penalty", {"kb_limit": 0, "practice_limit": -3})
    assert outcome.kb_results == []
    assert outcome.practice_results == []
    assert outcome.kb.limit == 0 and outcome.practice.limit == 0
    assert outcome.context == ""


@pytest.mark.asyncio
async def test_unset_options_take_configured_defaults() -> None:
    rows = [make_candidate(f"kb-{i}", content="theft " + "y" * 50) for i in range(10)]
    settings = Settings().model_copy(
        update={"KB_DEFAULT_LIMIT": 3, "PRACTICE_DEFAULT_LIMIT": 1, "KB_DEFAULT_SNIPPET_LENGTH": 12}
    )
    service = DualSearchService(store=FakeStore(keyword={"normative": rows}), rerank_client=None, settings=settings)

    outcome = await service.dual_search("theft")
    assert outcome.kb.limit == 3
    assert outcome.practice.limit == 1
    assert len(outcome.kb_results) == 3
    assert all(len(r.content_text) <= 12 for r in outcome.kb_results)

    explicit = await service.dual_search("theft", {"kb_limit": 5})
    assert explicit.kb.limit == 5


@pytest.mark.asyncio
async def test_query_length_limit_comes_from_settings() -> None:
    store = _store()
    settings = Settings().model_copy(update={"MAX_QUERY_LENGTH": 10})
    service = DualSearchService(store=store, rerank_client=None, settings=settings)

    with pytest.raises(BadRequestError) as err:
        await service.dual_search("theft penalty article")
    assert err.value.detail["errors"][0]["type"] == "string_too_long"
    assert store.keyword_calls == []

    ok = await service.dual_search("  theft  ")  # docstring: 去除首尾空白后再计长度
    assert ok.kb_results
