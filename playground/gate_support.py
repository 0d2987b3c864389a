# playground/gate_support.py

"""
[职责] gate 测试共享替身：内存 LegalStore、MockTransport rerank 客户端、usage sink 替身与候选构造器。
[边界] 仅用于测试；不访问网络与真实数据库。
[上游关系] retrieval_gate / context_gate / service_gate / fastapi_gate 导入。
[下游关系] 通过 LegalStore 协议与 RerankClient 注入 pipeline / service。
"""

from __future__ import annotations

import asyncio
import json
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from ra_law_rag.backend.clients.rerank_client import RerankClient
from ra_law_rag.backend.pipelines.retrieval.types import Candidate, IndexKind, ScoredResult, SourceTier


RERANK_URL = "http://rerank.test/functions/v1/vector-search"


def make_candidate(
    id: str,
    *,
    title: str = "",
    content: str = "",
    index_kind: IndexKind = "normative",
    tier: SourceTier = "keyword",
    raw_score: float = 0.0,
    fields: Optional[Dict[str, Any]] = None,
    rank: Optional[float] = None,
) -> Candidate:
    return Candidate(
        id=id,
        title=title or f"Title {id}",
        content_text=content,
        index_kind=index_kind,
        source_tier=tier,
        raw_score=raw_score,
        fields=dict(fields or {}),
        rank=rank,
    )


def make_result(candidate: Candidate, score: float = 1.0, snippet_length: int = 4000) -> ScoredResult:
    content = candidate.content_text[:snippet_length]
    return ScoredResult(candidate=candidate, normalized_score=score, content_text=content, preview=content[:300])


class FakeStore:
    """
    In-memory LegalStore with per-index rows, optional delays/errors and call logs.
    """

    def __init__(
        self,
        *,
        keyword: Optional[Dict[str, List[Candidate]]] = None,
        fulltext: Optional[Dict[str, List[Candidate]]] = None,
        keyword_error: Optional[Exception] = None,
        fulltext_error: Optional[Exception] = None,
        keyword_delay_s: float = 0.0,
        fulltext_delay_s: float = 0.0,
    ) -> None:
        self.keyword = keyword or {}
        self.fulltext = fulltext or {}
        self.keyword_error = keyword_error
        self.fulltext_error = fulltext_error
        self.keyword_delay_s = keyword_delay_s
        self.fulltext_delay_s = fulltext_delay_s
        self.keyword_calls: List[Dict[str, Any]] = []
        self.fulltext_calls: List[Dict[str, Any]] = []

    async def query_by_keyword(
        self,
        index_kind: IndexKind,
        keywords: Sequence[str],
        *,
        limit: int,
        category: Optional[str] = None,
    ) -> List[Candidate]:
        self.keyword_calls.append(
            {"index_kind": index_kind, "keywords": list(keywords), "limit": limit, "category": category}
        )
        if self.keyword_delay_s:
            await asyncio.sleep(self.keyword_delay_s)
        if self.keyword_error is not None:
            raise self.keyword_error
        return list(self.keyword.get(index_kind, []))[:limit]

    async def call_full_text_search(
        self,
        index_kind: IndexKind,
        query: str,
        *,
        limit: int,
        reference_date: Optional[date] = None,
        category: Optional[str] = None,
    ) -> List[Candidate]:
        self.fulltext_calls.append(
            {
                "index_kind": index_kind,
                "query": query,
                "limit": limit,
                "reference_date": reference_date,
                "category": category,
            }
        )
        if self.fulltext_delay_s:
            await asyncio.sleep(self.fulltext_delay_s)
        if self.fulltext_error is not None:
            raise self.fulltext_error
        return list(self.fulltext.get(index_kind, []))[:limit]

    def calls_for(self, index_kind: str) -> Dict[str, int]:
        return {
            "keyword": sum(1 for c in self.keyword_calls if c["index_kind"] == index_kind),
            "fulltext": sum(1 for c in self.fulltext_calls if c["index_kind"] == index_kind),
        }


def rerank_hit(id: str, similarity: float, *, title: str = "", content: str = "", **extra: Any) -> Dict[str, Any]:
    return {"id": id, "title": title or f"Title {id}", "content_text": content, "similarity": similarity, **extra}


def rerank_body(
    *,
    kb: Optional[List[Dict[str, Any]]] = None,
    practice: Optional[List[Dict[str, Any]]] = None,
    rerank_ok: bool = True,
    rerank_error: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "kb": kb or [],
        "practice": practice or [],
        "retrieval_mode": "keyword+rerank" if rerank_ok else "keyword_only",
        "rerank_ok": rerank_ok,
        "rerank_error": rerank_error,
    }


class RerankServiceStub:
    """
    MockTransport handler: answers per `tables` value, records request bodies,
    and can delay or fail on demand.
    """

    def __init__(
        self,
        *,
        kb: Optional[List[Dict[str, Any]]] = None,
        practice: Optional[List[Dict[str, Any]]] = None,
        status_code: int = 200,
        delay_s: float = 0.0,
        raw_body: Optional[bytes] = None,
        rerank_ok: bool = True,
        rerank_error: Optional[str] = None,
    ) -> None:
        self.kb = kb or []
        self.practice = practice or []
        self.status_code = status_code
        self.delay_s = delay_s
        self.raw_body = raw_body
        self.rerank_ok = rerank_ok
        self.rerank_error = rerank_error
        self.requests: List[Dict[str, Any]] = []
        self.headers: List[Dict[str, str]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8") or "{}")
        self.requests.append(body)
        self.headers.append(dict(request.headers))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.raw_body is not None:
            return httpx.Response(self.status_code, content=self.raw_body)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, json={"error": "upstream failure"})
        tables = body.get("tables")
        return httpx.Response(
            self.status_code,
            json=rerank_body(
                kb=self.kb if tables in ("kb", "both") else [],
                practice=self.practice if tables in ("practice", "both") else [],
                rerank_ok=self.rerank_ok,
                rerank_error=self.rerank_error,
            ),
        )

    def tables_called(self) -> List[str]:
        return [str(r.get("tables")) for r in self.requests]


def make_rerank_client(handler: Callable[[httpx.Request], Any], *, timeout_s: float = 10.0) -> RerankClient:
    return RerankClient(
        url=RERANK_URL,
        api_key="test-key",
        timeout_s=timeout_s,
        transport=httpx.MockTransport(handler),
    )


class RecordingSink:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    async def log_api_usage(self, **kwargs: Any) -> None:
        self.events.append(kwargs)


class FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    async def log_api_usage(self, **kwargs: Any) -> None:
        self.calls += 1
        raise RuntimeError("usage store unavailable")


class SlowSink:
    def __init__(self, delay_s: float = 5.0) -> None:
        self.delay_s = delay_s
        self.calls = 0

    async def log_api_usage(self, **kwargs: Any) -> None:
        self.calls += 1
        await asyncio.sleep(self.delay_s)
