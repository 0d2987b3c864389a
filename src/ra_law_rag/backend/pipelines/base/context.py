# src/ra_law_rag/backend/pipelines/base/context.py

"""
[职责] RetrievalContext：单次请求的运行上下文（request/trace id、计时、外层截止时间、调用方取消信号）。
[边界] 不持有跨请求状态；不持有 DB session（存储通过 LegalStore 协议注入）；不做业务编排。
[上游关系] services/dual_search_service.py 为每次 dual_search 构造一次，并传给两个 index pipeline。
[下游关系] pipelines/retrieval/* 读取剩余预算裁剪 tier 超时；通过 wait_for_tasks 统一等待 fan-out 任务。
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional
from uuid import uuid4

from .timing import TimingCollector


def new_request_id() -> str:
    return str(uuid4())


@dataclass
class RetrievalContext:
    """
    [职责] 聚合单次检索请求的可观测字段与取消/截止控制。
    [边界] deadline 基于 time.monotonic；cancel_event 由调用方持有并 set()。
    [上游关系] service 层或测试直接构造。
    [下游关系] pipeline 通过 remaining_s/tier_timeout/is_cancelled/wait_for_tasks 使用。
    """

    request_id: str = field(default_factory=new_request_id)
    trace_id: str = field(default_factory=new_request_id)
    timing: TimingCollector = field(default_factory=TimingCollector)
    budget_s: Optional[float] = None  # docstring: 外层请求预算（秒）；None 表示不限
    cancel_event: Optional[asyncio.Event] = None  # docstring: 调用方取消信号
    meta: Dict[str, Any] = field(default_factory=dict)
    _deadline: Optional[float] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.budget_s is not None:
            self._deadline = time.monotonic() + max(float(self.budget_s), 0.0)

    def remaining_s(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def expired(self) -> bool:
        remaining = self.remaining_s()
        return remaining is not None and remaining <= 0.0

    def is_cancelled(self) -> bool:
        """True once the caller signalled cancellation or the outer deadline passed."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self.expired()

    def tier_timeout(self, configured_s: float) -> float:
        """Per-tier timeout, never longer than what is left of the outer budget."""
        remaining = self.remaining_s()
        if remaining is None:
            return float(configured_s)
        return min(float(configured_s), remaining)

    async def wait_for_tasks(self, tasks: Iterable["asyncio.Task[Any]"]) -> bool:
        """
        [职责] 等待 fan-out 任务全部结束，或在取消信号/截止时间到达时提前返回。
        [边界] 提前返回时取消未完成任务并等待其退出；已完成任务的结果保持可读。
        [上游关系] retrieval pipeline 在 tier fan-out 与 fallback 阶段调用。
        [下游关系] 返回 True 表示被中断（结果为部分结果）。
        """
        pending = set(tasks)
        waiter: Optional[asyncio.Future[Any]] = None
        if self.cancel_event is not None:
            waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            while pending and not self.is_cancelled():
                wait_set = set(pending)
                if waiter is not None:
                    wait_set.add(waiter)
                done, _ = await asyncio.wait(
                    wait_set,
                    timeout=self.remaining_s(),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                pending -= done
                if not done:
                    break  # deadline reached
        except asyncio.CancelledError:
            for task in pending:
                task.cancel()  # the awaiting task itself was cancelled; do not orphan children
            raise
        finally:
            if waiter is not None and not waiter.done():
                waiter.cancel()

        if not pending:
            return False
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return True
