# playground/sql_gate/test_sql_store_gate.py

"""
[职责] sql gate：验证 SqlLegalStore 的关键词查询（ILIKE OR / active / category）、SQLite FTS5 全文兜底（rank / 日期过滤）与 api_usage 写入。
[边界] 使用 conftest 提供的临时 SQLite（含 FTS5 虚表与触发器）；不连接 PostgreSQL。
[上游关系] db/sql_store.py + db/fts.py + db/repo/* + services/telemetry.SqlUsageSink。
[下游关系] keyword tier / fallback tier 的真实存储行为。
"""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from ra_law_rag.backend.db.fts import build_fts5_query
from ra_law_rag.backend.db.models import ApiUsageModel, KnowledgeBaseModel, LegalPracticeModel
from ra_law_rag.backend.db.sql_store import SqlLegalStore
from ra_law_rag.backend.services.dual_search_service import DualSearchService
from ra_law_rag.backend.services.telemetry import SqlUsageSink, TelemetryRecorder


pytestmark = pytest.mark.sql_gate


FILLER_KB = [
    ("Constitution Art. 1", "Armenia is a sovereign democratic state."),
    ("Civil Code Art. 2", "Civil legislation regulates property relations."),
    ("Labour Code Art. 3", "Employment contracts are concluded in writing."),
    ("Tax Code Art. 4", "Taxes are paid to the state budget."),
]


async def _seed_kb(session, *extra: KnowledgeBaseModel) -> None:
    for title, content in FILLER_KB:
        session.add(KnowledgeBaseModel(title=title, content_text=content, category="misc"))
    for row in extra:
        session.add(row)
    await session.commit()


async def _seed_practice(session) -> None:
    session.add_all(
        [
            LegalPracticeModel(
                title="Theft appeal",
                content_text="y" * 900,
                practice_category="criminal",
                court_type="appeal",
                legal_reasoning_summary="The appellant's theft conviction was upheld.",
                key_paragraphs=[{"rule_text": "Intent must be proven", "quote": "intent", "anchor": "12"}],
                applied_articles=["Art. 177"],
            ),
            LegalPracticeModel(
                title="Property dispute",
                content_text="Theft allegations were dismissed in the civil dispute.",
                practice_category="civil",
                legal_reasoning_summary="Ownership transferred lawfully; theft claims irrelevant.",
            ),
            LegalPracticeModel(title="Tax audit", content_text="Audit procedure.", practice_category="administrative"),
            LegalPracticeModel(title="Labour claim", content_text="Wrongful dismissal.", practice_category="civil"),
            LegalPracticeModel(title="Detention review", content_text="Article 5 review.", practice_category="echr"),
        ]
    )
    await session.commit()


@pytest.mark.asyncio
async def test_keyword_search_kb_is_case_insensitive_and_active_only(session, session_factory) -> None:
    await _seed_kb(
        session,
        KnowledgeBaseModel(
            title="Criminal Code Art. 177",
            content_text="THEFT is the secret stealing of property.",
            category="criminal_code",
            source_name="arlis.am",
        ),
        KnowledgeBaseModel(title="Repealed theft article", content_text="old", is_active=False),
    )
    store = SqlLegalStore(session_factory)
    assert store.dialect == "sqlite"

    rows = await store.query_by_keyword("normative", ["theft"], limit=10)
    assert [c.title for c in rows] == ["Criminal Code Art. 177"]
    c = rows[0]
    assert c.index_kind == "normative"
    assert c.source_tier == "keyword"
    assert c.fields["category"] == "criminal_code"
    assert c.fields["source_name"] == "arlis.am"

    multi = await store.query_by_keyword("normative", ["theft", "budget"], limit=10)
    assert sorted(c.title for c in multi) == ["Criminal Code Art. 177", "Tax Code Art. 4"]
    assert await store.query_by_keyword("normative", [], limit=10) == []


@pytest.mark.asyncio
async def test_keyword_search_practice_matches_summary_and_filters_category(session, session_factory) -> None:
    await _seed_practice(session)
    store = SqlLegalStore(session_factory)

    both = await store.query_by_keyword("practice", ["theft"], limit=10)
    assert sorted(c.title for c in both) == ["Property dispute", "Theft appeal"]

    criminal = await store.query_by_keyword("practice", ["theft"], limit=10, category="criminal")
    assert [c.title for c in criminal] == ["Theft appeal"]
    fields = criminal[0].fields
    assert fields["practice_category"] == "criminal"
    assert fields["key_paragraphs"][0]["rule_text"] == "Intent must be proven"
    assert fields["applied_articles"] == ["Art. 177"]


@pytest.mark.asyncio
async def test_full_text_search_kb_ranks_and_boosts_phrase(session, session_factory) -> None:
    await _seed_kb(
        session,
        KnowledgeBaseModel(
            title="Criminal Code Art. 177",
            content_text="Theft is the secret stealing of property.",
            category="criminal_code",
        ),
    )
    store = SqlLegalStore(session_factory)

    hits = await store.call_full_text_search("normative", "theft", limit=10)
    assert [h.title for h in hits] == ["Criminal Code Art. 177"]
    assert hits[0].source_tier == "fts_fallback"
    assert hits[0].rank is not None and hits[0].rank >= 0.3
    assert hits[0].raw_score == hits[0].rank

    assert await store.call_full_text_search("normative", "nonexistentterm", limit=10) == []
    assert await store.call_full_text_search("normative", "%%% ***", limit=10) == []


@pytest.mark.asyncio
async def test_full_text_search_kb_respects_reference_date(session, session_factory) -> None:
    await _seed_kb(
        session,
        KnowledgeBaseModel(
            title="Fraud article (old)",
            content_text="Fraud is punished by a fine.",
            effective_to=date(2019, 12, 31),
        ),
        KnowledgeBaseModel(
            title="Fraud article (new)",
            content_text="Fraud is punished by imprisonment.",
            effective_from=date(2020, 1, 1),
        ),
    )
    store = SqlLegalStore(session_factory)

    old = await store.call_full_text_search("normative", "fraud", limit=10, reference_date=date(2018, 6, 1))
    new = await store.call_full_text_search("normative", "fraud", limit=10, reference_date=date(2021, 6, 1))
    both = await store.call_full_text_search("normative", "fraud", limit=10)

    assert [h.title for h in old] == ["Fraud article (old)"]
    assert [h.title for h in new] == ["Fraud article (new)"]
    assert len(both) == 2


@pytest.mark.asyncio
async def test_full_text_search_practice_returns_snippet_and_meta(session, session_factory) -> None:
    await _seed_practice(session)
    store = SqlLegalStore(session_factory)

    hits = await store.call_full_text_search("practice", "conviction", limit=10)
    assert [h.title for h in hits] == ["Theft appeal"]
    hit = hits[0]
    assert len(hit.content_text) == 500
    assert hit.rank and hit.rank > 0
    assert hit.fields["practice_category"] == "criminal"
    assert hit.fields["key_paragraphs"] == [{"rule_text": "Intent must be proven", "quote": "intent", "anchor": "12"}]

    filtered = await store.call_full_text_search("practice", "theft", limit=10, category="civil")
    assert [h.title for h in filtered] == ["Property dispute"]


def test_fts5_query_quotes_every_token() -> None:
    assert build_fts5_query('theft "AND" OR*') == '"theft" "AND" "OR"'
    assert build_fts5_query("  ") == ""


@pytest.mark.asyncio
async def test_sql_usage_sink_inserts_row(session_factory) -> None:
    recorder = TelemetryRecorder(SqlUsageSink(session_factory), timeout_s=5.0)
    try:
        assert recorder.record({"request_id": "req-1", "retrieval_mode": "keyword_only"}, tokens_used=42)
        assert await recorder.drain(5.0) is True
    finally:
        await recorder.aclose(1.0)

    async with session_factory() as s:
        rows = list((await s.scalars(select(ApiUsageModel))).all())
    assert len(rows) == 1
    assert rows[0].service_type == "rag_search"
    assert rows[0].tokens_used == 42
    assert rows[0].request_metadata["request_id"] == "req-1"
    assert recorder.stats.sent == 1


@pytest.mark.asyncio
async def test_dual_search_over_sql_store(session, session_factory) -> None:
    await _seed_kb(
        session,
        KnowledgeBaseModel(title="Criminal Code Art. 177", content_text="Theft is punished.", category="criminal_code"),
    )
    await _seed_practice(session)
    service = DualSearchService(store=SqlLegalStore(session_factory), rerank_client=None)

    outcome = await service.dual_search({"text": "theft", "category": "criminal"})
    assert outcome.retrieval_mode == "keyword_only"
    assert outcome.rerank_ok is False
    assert [r.title for r in outcome.kb_results] == ["Criminal Code Art. 177"]
    assert [r.title for r in outcome.practice_results] == ["Theft appeal"]
    assert "PRECEDENT UNITS:" in outcome.practice_context
