# src/ra_law_rag/backend/pipelines/base/timing.py

"""
[职责] 阶段计时（ms）收集与导出，支撑 tier 延迟遥测与门禁断言。
[边界] 非分布式 tracing；单事件循环内使用（并发 coroutine 共享同一 collector 时 key 需带 index 前缀）。
[上游关系] retrieval pipeline / dual search service 用 stage(...) 包裹 tier 调用。
[下游关系] RetrievalOutcome.timing_ms / DualOutcome.timing_ms。
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional


def _now_ms() -> float:
    return time.perf_counter() * 1000.0


@dataclass
class TimingCollector:
    """
    [职责] 收集各阶段耗时并导出 dict[str, float]。
    [边界] 不限制 stage 命名；同名 stage 默认覆盖，accumulate=True 时累加。
    """

    _stages_ms: Dict[str, float] = field(default_factory=dict)
    _start_ms: float = field(default_factory=_now_ms)

    def add_ms(self, key: str, ms: float, *, accumulate: bool = True) -> None:
        k = str(key).strip()
        if not k:
            return
        v = max(float(ms), 0.0)  # docstring: 负数截断为 0
        if accumulate:
            self._stages_ms[k] = self._stages_ms.get(k, 0.0) + v
        else:
            self._stages_ms[k] = v

    @contextmanager
    def stage(self, key: str, *, accumulate: bool = False) -> Iterator[None]:
        """with timing.stage("normative.rerank"): ...  (records even if the block raises)"""
        start = _now_ms()
        try:
            yield
        finally:
            self.add_ms(key, _now_ms() - start, accumulate=accumulate)

    def total_ms(self) -> float:
        return _now_ms() - self._start_ms

    def to_dict(
        self,
        *,
        include_total: bool = True,
        total_key: str = "total",
        prefix: Optional[str] = None,
    ) -> Dict[str, float]:
        """
        [职责] 导出 timing dict（可按 prefix 过滤 index 维度的阶段）。
        [边界] total 与分阶段之和不必相等（阶段并发执行）。
        """
        if prefix:
            p = f"{prefix}."
            out = {k[len(p) :]: v for k, v in self._stages_ms.items() if k.startswith(p)}
        else:
            out = dict(self._stages_ms)
        if include_total:
            out[total_key] = float(self.total_ms())
        return out

    def get(self, key: str, default: Optional[float] = None) -> Optional[float]:
        return self._stages_ms.get(key, default)
