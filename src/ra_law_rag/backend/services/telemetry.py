# src/ra_law_rag/backend/services/telemetry.py

"""
[职责] TelemetryRecorder：fire-and-forget 检索遥测。调用方同步入队后立即返回，后台单 worker 写入 usage sink。
[边界] 有界队列，满则丢弃并告警（不阻塞、不增长）；每次写入有独立超时；失败只记日志，不重试、不抛出。
[上游关系] DualSearchService 在打分完成后调用 record(...)，不 await 写入结果。
[下游关系] UsageSink.log_api_usage（SqlUsageSink -> api_usage 表）。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ra_law_rag.backend.db.repo.usage_repo import UsageRepo
from ra_law_rag.backend.utils.errors import describe_error
from ra_law_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("services.telemetry")


class UsageSink(Protocol):
    async def log_api_usage(
        self,
        *,
        service_type: str,
        model_name: Optional[str],
        tokens_used: int,
        estimated_cost: float,
        metadata: Dict[str, Any],
    ) -> None: ...


class SqlUsageSink:
    """Insert-only sink writing one api_usage row per event."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def log_api_usage(
        self,
        *,
        service_type: str,
        model_name: Optional[str],
        tokens_used: int,
        estimated_cost: float,
        metadata: Dict[str, Any],
    ) -> None:
        async with self._session_factory() as session:
            await UsageRepo(session).create_usage(
                service_type=service_type,
                model_name=model_name,
                tokens_used=tokens_used,
                estimated_cost=estimated_cost,
                metadata=metadata,
            )
            await session.commit()


@dataclass(frozen=True)
class TelemetryEvent:
    service_type: str
    model_name: Optional[str]
    metadata: Dict[str, Any]
    tokens_used: int = 0
    estimated_cost: float = 0.0


@dataclass
class TelemetryStats:
    enqueued: int = 0
    sent: int = 0
    failed: int = 0
    dropped: int = 0
    last_error: Optional[str] = field(default=None)


class TelemetryRecorder:
    """
    [职责] 有界队列 + 后台 worker。
    [边界] worker 在首次 record 时（或显式 start）于当前事件循环中启动；aclose 在超时内尽量排空队列。
    """

    def __init__(
        self,
        sink: UsageSink,
        *,
        maxsize: int = 256,
        timeout_s: float = 5.0,
        service_type: str = "rag_search",
        model_name: Optional[str] = "dual_search",
        enabled: bool = True,
    ) -> None:
        self._sink = sink
        self._queue: "asyncio.Queue[TelemetryEvent]" = asyncio.Queue(maxsize=max(int(maxsize), 1))
        self._timeout_s = float(timeout_s)
        self._service_type = service_type
        self._model_name = model_name
        self._enabled = enabled
        self._worker: Optional["asyncio.Task[None]"] = None
        self.stats = TelemetryStats()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="telemetry-worker")

    def record(
        self,
        metadata: Mapping[str, Any],
        *,
        tokens_used: int = 0,
        estimated_cost: float = 0.0,
    ) -> bool:
        """
        Enqueue without awaiting. Returns False when the event was dropped
        (disabled, queue full, or enqueue error); never raises.
        """
        if not self._enabled:
            return False
        try:
            event = TelemetryEvent(
                service_type=self._service_type,
                model_name=self._model_name,
                metadata=dict(metadata),
                tokens_used=int(tokens_used),
                estimated_cost=float(estimated_cost),
            )
            self._queue.put_nowait(event)
            self.stats.enqueued += 1
            self.start()
            return True
        except asyncio.QueueFull:
            self.stats.dropped += 1
            log_event(
                logger,
                logging.WARNING,
                "telemetry queue full, event dropped",
                fields={"request_id": metadata.get("request_id"), "dropped_total": self.stats.dropped},
            )
            return False
        except Exception as exc:  # pragma: no cover
            self.stats.dropped += 1
            log_event(logger, logging.WARNING, "telemetry enqueue failed", fields={"error": describe_error(exc)})
            return False

    async def _send(self, event: TelemetryEvent) -> None:
        try:
            await asyncio.wait_for(
                self._sink.log_api_usage(
                    service_type=event.service_type,
                    model_name=event.model_name,
                    tokens_used=event.tokens_used,
                    estimated_cost=event.estimated_cost,
                    metadata=event.metadata,
                ),
                timeout=self._timeout_s,
            )
            self.stats.sent += 1
        except asyncio.TimeoutError:
            self._record_failure(event, f"TimeoutError: telemetry sink exceeded {self._timeout_s:.1f}s")
        except Exception as exc:
            self._record_failure(event, describe_error(exc))

    def _record_failure(self, event: TelemetryEvent, error: str) -> None:
        self.stats.failed += 1
        self.stats.last_error = error
        log_event(
            logger,
            logging.WARNING,
            "telemetry write failed",
            fields={"request_id": event.metadata.get("request_id"), "error": error},
        )

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._send(event)
            finally:
                self._queue.task_done()

    async def drain(self, timeout_s: Optional[float] = None) -> bool:
        """Wait until every queued event was handled; False on timeout."""
        if self._queue.empty():
            return True
        self.start()
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout_s)
            return True
        except asyncio.TimeoutError:
            return False

    async def aclose(self, timeout_s: Optional[float] = None) -> None:
        await self.drain(timeout_s if timeout_s is not None else self._timeout_s)
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None
