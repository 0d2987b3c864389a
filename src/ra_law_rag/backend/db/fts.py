# src/ra_law_rag/backend/db/fts.py

"""
[职责] 全文检索兜底的 SQL 侧实现：PostgreSQL 调用存储过程，SQLite 以 FTS5 虚表 + 触发器模拟同一合同。
[边界] 只读查询（ensure/rebuild 为运维工具）；不做 rank 下限过滤（由 fallback tier 负责）。
[上游关系] db/sql_store.SqlLegalStore.call_full_text_search 按方言路由调用。
[下游关系] 返回 FullTextHit（至少含 id/title/content_text/rank），sql_store 映射为 Candidate。
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


KB_FTS_TABLE = "kb_fts"  # docstring: knowledge_base 的 FTS5 虚表
PRACTICE_FTS_TABLE = "practice_fts"  # docstring: legal_practice_kb 的 FTS5 虚表

TITLE_PHRASE_BOOST = 0.5  # docstring: 与 search_knowledge_base 一致的整句命中加权
CONTENT_PHRASE_BOOST = 0.3
PRACTICE_SNIPPET_CHARS = 500  # docstring: search_legal_practice 仅返回前 500 字符


@dataclass(frozen=True)
class FullTextHit:
    """Row returned by the full-text procedures (or their SQLite emulation)."""

    id: str
    title: str
    content_text: str
    rank: float
    meta: Dict[str, Any]


_KB_DDL = (
    f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {KB_FTS_TABLE}
    USING fts5(doc_id UNINDEXED, title, content_text, tokenize = 'unicode61');
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS kb_fts_ai AFTER INSERT ON knowledge_base BEGIN
      INSERT INTO {KB_FTS_TABLE}(doc_id, title, content_text)
      VALUES (new.id, new.title, COALESCE(new.content_text, ''));
    END;
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS kb_fts_ad AFTER DELETE ON knowledge_base BEGIN
      DELETE FROM {KB_FTS_TABLE} WHERE doc_id = old.id;
    END;
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS kb_fts_au AFTER UPDATE OF title, content_text ON knowledge_base BEGIN
      UPDATE {KB_FTS_TABLE} SET title = new.title, content_text = COALESCE(new.content_text, '')
      WHERE doc_id = new.id;
    END;
    """,
)

_PRACTICE_DDL = (
    f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {PRACTICE_FTS_TABLE}
    USING fts5(doc_id UNINDEXED, title, content_text, legal_reasoning_summary, tokenize = 'unicode61');
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS practice_fts_ai AFTER INSERT ON legal_practice_kb BEGIN
      INSERT INTO {PRACTICE_FTS_TABLE}(doc_id, title, content_text, legal_reasoning_summary)
      VALUES (new.id, new.title, COALESCE(new.content_text, ''), COALESCE(new.legal_reasoning_summary, ''));
    END;
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS practice_fts_ad AFTER DELETE ON legal_practice_kb BEGIN
      DELETE FROM {PRACTICE_FTS_TABLE} WHERE doc_id = old.id;
    END;
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS practice_fts_au
    AFTER UPDATE OF title, content_text, legal_reasoning_summary ON legal_practice_kb BEGIN
      UPDATE {PRACTICE_FTS_TABLE}
      SET title = new.title,
          content_text = COALESCE(new.content_text, ''),
          legal_reasoning_summary = COALESCE(new.legal_reasoning_summary, '')
      WHERE doc_id = new.id;
    END;
    """,
)


async def ensure_sqlite_fts(session: AsyncSession) -> None:
    """
    Create the FTS5 tables and sync triggers (idempotent). Call once after
    init_db and before rows are inserted; use rebuild_sqlite_fts for legacy rows.
    """
    for ddl in _KB_DDL + _PRACTICE_DDL:
        await session.execute(text(ddl))
    await session.commit()


async def rebuild_sqlite_fts(session: AsyncSession) -> None:
    """Repopulate both FTS tables from the base tables."""
    await session.execute(text(f"DELETE FROM {KB_FTS_TABLE};"))
    await session.execute(
        text(
            f"""
            INSERT INTO {KB_FTS_TABLE}(doc_id, title, content_text)
            SELECT id, title, COALESCE(content_text, '') FROM knowledge_base;
            """
        )
    )
    await session.execute(text(f"DELETE FROM {PRACTICE_FTS_TABLE};"))
    await session.execute(
        text(
            f"""
            INSERT INTO {PRACTICE_FTS_TABLE}(doc_id, title, content_text, legal_reasoning_summary)
            SELECT id, title, COALESCE(content_text, ''), COALESCE(legal_reasoning_summary, '')
            FROM legal_practice_kb;
            """
        )
    )
    await session.commit()


def build_fts5_query(query: str) -> str:
    """plainto_tsquery-like: every word token quoted and ANDed; FTS5 operators never leak through."""
    tokens = re.findall(r"\w+", str(query or ""), flags=re.UNICODE)
    return " ".join(f'"{t}"' for t in tokens)


def _json_value(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _phrase_rank(base: float, query: str, title: str, content: str) -> float:
    q = str(query or "").lower()
    boost = 0.0
    if q and q in (title or "").lower():
        boost = TITLE_PHRASE_BOOST
    elif q and q in (content or "").lower():
        boost = CONTENT_PHRASE_BOOST
    return max(base, boost)


def _practice_meta(r: Any) -> Dict[str, Any]:
    return {
        "practice_category": r["practice_category"],
        "court_type": r.get("court_type"),
        "court_name": r.get("court_name"),
        "outcome": r.get("outcome"),
        "decision_date": _iso(r.get("decision_date")),
        "case_number_anonymized": r.get("case_number_anonymized"),
        "applied_articles": _json_value(r.get("applied_articles")),
        "key_violations": _json_value(r.get("key_violations")),
        "legal_reasoning_summary": r.get("legal_reasoning_summary"),
        "key_paragraphs": _json_value(r.get("key_paragraphs")),
        "source_name": r.get("source_name"),
    }


async def search_kb_sqlite(
    session: AsyncSession,
    *,
    query: str,
    limit: int,
    reference_date: Optional[date] = None,
) -> List[FullTextHit]:
    match = build_fts5_query(query)
    if not match:
        return []
    sql = f"""
    SELECT
      kb.id AS id,
      kb.title AS title,
      kb.content_text AS content_text,
      kb.category AS category,
      kb.source_name AS source_name,
      kb.version_date AS version_date,
      -bm25({KB_FTS_TABLE}) AS fts_rank
    FROM {KB_FTS_TABLE}
    JOIN knowledge_base kb ON kb.id = {KB_FTS_TABLE}.doc_id
    WHERE {KB_FTS_TABLE} MATCH :q
      AND kb.is_active = 1
      AND (:ref IS NULL OR kb.effective_from IS NULL OR kb.effective_from <= :ref)
      AND (:ref IS NULL OR kb.effective_to IS NULL OR kb.effective_to >= :ref)
    ORDER BY fts_rank DESC
    LIMIT :limit
    """
    params = {"q": match, "ref": _iso(reference_date), "limit": int(limit)}
    rows = (await session.execute(text(sql), params)).mappings().all()

    hits: List[FullTextHit] = []
    for r in rows:
        rank = _phrase_rank(float(r["fts_rank"] or 0.0), query, r["title"], r["content_text"])
        hits.append(
            FullTextHit(
                id=str(r["id"]),
                title=str(r["title"] or ""),
                content_text=str(r["content_text"] or ""),
                rank=rank,
                meta={
                    "category": r["category"],
                    "source_name": r["source_name"],
                    "version_date": _iso(r["version_date"]),
                },
            )
        )
    hits.sort(key=lambda h: (-h.rank, h.title, h.id))
    return hits


async def search_practice_sqlite(
    session: AsyncSession,
    *,
    query: str,
    limit: int,
    category: Optional[str] = None,
) -> List[FullTextHit]:
    match = build_fts5_query(query)
    if not match:
        return []
    sql = f"""
    SELECT
      lp.id AS id,
      lp.title AS title,
      substr(COALESCE(lp.content_text, ''), 1, {PRACTICE_SNIPPET_CHARS}) AS content_snippet,
      lp.practice_category AS practice_category,
      lp.court_type AS court_type,
      lp.court_name AS court_name,
      lp.outcome AS outcome,
      lp.decision_date AS decision_date,
      lp.case_number_anonymized AS case_number_anonymized,
      lp.applied_articles AS applied_articles,
      lp.key_violations AS key_violations,
      lp.legal_reasoning_summary AS legal_reasoning_summary,
      lp.key_paragraphs AS key_paragraphs,
      lp.source_name AS source_name,
      -bm25({PRACTICE_FTS_TABLE}) AS relevance_rank
    FROM {PRACTICE_FTS_TABLE}
    JOIN legal_practice_kb lp ON lp.id = {PRACTICE_FTS_TABLE}.doc_id
    WHERE {PRACTICE_FTS_TABLE} MATCH :q
      AND lp.is_active = 1
      AND (:category IS NULL OR lp.practice_category = :category)
    ORDER BY relevance_rank DESC
    LIMIT :limit
    """
    params = {"q": match, "category": category, "limit": int(limit)}
    rows = (await session.execute(text(sql), params)).mappings().all()
    return [
        FullTextHit(
            id=str(r["id"]),
            title=str(r["title"] or ""),
            content_text=str(r["content_snippet"] or ""),
            rank=float(r["relevance_rank"] or 0.0),
            meta=_practice_meta(r),
        )
        for r in rows
    ]


async def search_kb_postgres(
    session: AsyncSession,
    *,
    query: str,
    limit: int,
    reference_date: Optional[date] = None,
) -> List[FullTextHit]:
    sql = """
    SELECT id, title, content_text, category, source_name, version_date, rank
    FROM search_knowledge_base(
      search_query => :q,
      result_limit => :limit,
      reference_date => CAST(:ref AS date)
    )
    """
    rows = (
        await session.execute(text(sql), {"q": query, "limit": int(limit), "ref": reference_date})
    ).mappings().all()
    return [
        FullTextHit(
            id=str(r["id"]),
            title=str(r["title"] or ""),
            content_text=str(r["content_text"] or ""),
            rank=float(r["rank"] or 0.0),
            meta={
                "category": r["category"],
                "source_name": r["source_name"],
                "version_date": _iso(r["version_date"]),
            },
        )
        for r in rows
    ]


async def search_practice_postgres(
    session: AsyncSession,
    *,
    query: str,
    limit: int,
    category: Optional[str] = None,
) -> List[FullTextHit]:
    sql = """
    SELECT *
    FROM search_legal_practice(
      search_query => :q,
      category => CAST(:category AS practice_category),
      result_limit => :limit
    )
    """
    rows = (
        await session.execute(text(sql), {"q": query, "limit": int(limit), "category": category})
    ).mappings().all()
    return [
        FullTextHit(
            id=str(r["id"]),
            title=str(r["title"] or ""),
            content_text=str(r.get("content_snippet") or ""),
            rank=float(r["relevance_rank"] or 0.0),
            meta=_practice_meta(r),
        )
        for r in rows
    ]


async def search_full_text(
    session: AsyncSession,
    *,
    index_kind: str,
    query: str,
    limit: int,
    reference_date: Optional[date] = None,
    category: Optional[str] = None,
    dialect: str = "sqlite",
) -> List[FullTextHit]:
    """Dialect router: postgresql -> stored procedures, sqlite -> FTS5 emulation."""
    if dialect == "postgresql":
        if index_kind == "practice":
            return await search_practice_postgres(session, query=query, limit=limit, category=category)
        return await search_kb_postgres(session, query=query, limit=limit, reference_date=reference_date)
    if dialect == "sqlite":
        if index_kind == "practice":
            return await search_practice_sqlite(session, query=query, limit=limit, category=category)
        return await search_kb_sqlite(session, query=query, limit=limit, reference_date=reference_date)
    raise NotImplementedError(f"full-text search is not implemented for dialect: {dialect}")
