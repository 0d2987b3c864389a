# src/ra_law_rag/backend/pipelines/retrieval/tiers.py

"""
[职责] run_tier：为单个 tier 调用加超时与失败隔离，产出 TierResult（失败=空候选+显式标记）。
[边界] 捕获 Exception（含超时/非 2xx/响应体非法/后端异常）；不捕获 CancelledError（由编排层处理取消）。
[上游关系] pipelines/retrieval/pipeline.py 以 coroutine factory 形式传入各 tier。
[下游关系] merge/scoring 只看到 TierResult，不会因单个 tier 的异常中断整条管线。
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable, List

from ra_law_rag.backend.pipelines.base.context import RetrievalContext
from ra_law_rag.backend.pipelines.retrieval.types import Candidate, IndexKind, SourceTier, TierResult
from ra_law_rag.backend.utils.errors import describe_error
from ra_law_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("retrieval.tiers")

TierCall = Callable[[], Awaitable[List[Candidate]]]  # docstring: 无参 coroutine factory


def _pin_candidates(candidates: List[Candidate], *, index_kind: IndexKind, tier: SourceTier) -> List[Candidate]:
    """Stamp tier identity; drop anything that claims a different index."""
    out: List[Candidate] = []
    for c in candidates:
        if c.index_kind != index_kind:
            continue  # never mix indexes
        out.append(c if c.source_tier == tier else replace(c, source_tier=tier))
    return out


async def run_tier(
    tier: SourceTier,
    call: TierCall,
    *,
    index_kind: IndexKind,
    timeout_s: float,
    ctx: RetrievalContext,
) -> TierResult:
    """
    [职责] 执行单个 tier 并转换失败。
    [边界] timeout_s 已由调用方按外层剩余预算裁剪；<= 0 时立即视为超时。
    """
    stage_key = f"{index_kind}.{tier}"
    start = time.perf_counter()
    try:
        with ctx.timing.stage(stage_key):
            candidates = await asyncio.wait_for(call(), timeout=max(float(timeout_s), 0.0))
    except asyncio.TimeoutError:
        latency_ms = (time.perf_counter() - start) * 1000.0
        error = f"TimeoutError: {tier} tier exceeded {float(timeout_s):.1f}s"
        log_event(
            logger,
            logging.WARNING,
            "retrieval tier timed out",
            context=ctx,
            fields={"index_kind": index_kind, "tier": tier, "timeout_s": timeout_s},
        )
        return TierResult.failure(tier, error, latency_ms=latency_ms, timed_out=True)
    except Exception as exc:
        latency_ms = (time.perf_counter() - start) * 1000.0
        error = describe_error(exc)
        log_event(
            logger,
            logging.WARNING,
            "retrieval tier failed",
            context=ctx,
            fields={"index_kind": index_kind, "tier": tier, "error": error},
        )
        return TierResult.failure(tier, error, latency_ms=latency_ms)

    latency_ms = (time.perf_counter() - start) * 1000.0
    pinned = _pin_candidates(list(candidates or []), index_kind=index_kind, tier=tier)
    return TierResult(tier=tier, candidates=pinned, latency_ms=latency_ms)
