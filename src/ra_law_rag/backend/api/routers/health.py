# src/ra_law_rag/backend/api/routers/health.py

"""
[职责] Health Router：提供服务健康检查（DB / rerank 配置 / 遥测队列）与版本摘要。
[边界] 不触发检索 pipeline；rerank 仅报告配置状态，不发起外部探测。
[上游关系] 运维/监控系统调用健康检查接口。
[下游关系] 依赖 DB session 执行轻量检查；读取 app.state 中的遥测统计。
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ra_law_rag.backend.api.deps import get_session, get_settings
from ra_law_rag.backend.utils.errors import describe_error


router = APIRouter(prefix="/health", tags=["health"])  # docstring: health 路由前缀


@router.get("")
async def health_check(
    request: Request,
    session: AsyncSession = Depends(get_session),
    settings: Any = Depends(get_settings),
) -> Dict[str, Any]:
    """
    [职责] 检测 DB 可用性并返回健康摘要。
    [边界] 只做轻量探测；不做业务写入或耗时操作。
    """
    status = "ok"
    db_status: Dict[str, Any] = {"ok": True}
    try:
        await session.execute(text("SELECT 1"))  # docstring: DB ping（最小读）
    except Exception as exc:
        db_status["ok"] = False
        db_status["error"] = describe_error(exc)

    rerank_status: Dict[str, Any] = {
        "configured": bool((settings.RERANK_SERVICE_URL or "").strip()),
        "required": bool(settings.RERANK_REQUIRED),
    }

    telemetry_status: Dict[str, Any] = {"enabled": False}
    recorder = getattr(request.app.state, "telemetry", None)
    if recorder is not None:
        stats = recorder.stats
        telemetry_status = {
            "enabled": True,
            "pending": recorder.pending,
            "sent": stats.sent,
            "failed": stats.failed,
            "dropped": stats.dropped,
        }

    if not db_status["ok"] or (rerank_status["required"] and not rerank_status["configured"]):
        status = "degraded"  # docstring: 任一必需依赖异常则降级

    return {
        "status": status,
        "db": db_status,
        "rerank": rerank_status,
        "telemetry": telemetry_status,
        "version": {"api": "v1"},
    }
