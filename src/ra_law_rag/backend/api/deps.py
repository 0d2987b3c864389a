# src/ra_law_rag/backend/api/deps.py

"""
[职责] API 依赖装配：提供 session、trace_context、settings 与 DualSearchService 注入。
[边界] 不做业务逻辑；不提交事务；服务实例由 app 生命周期创建并挂在 app.state。
[上游关系] FastAPI 路由层调用依赖注入。
[下游关系] routers 通过本模块获取依赖实例（测试通过 dependency_overrides 替换）。
"""

from __future__ import annotations

from typing import Any, AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ra_law_rag.backend.db.engine import SessionLocal
from ra_law_rag.backend.schemas.audit import TraceContext, new_uuid
from ra_law_rag.backend.services.dual_search_service import DualSearchService
from ra_law_rag.backend.utils.errors import ConfigurationError
from ra_law_rag.config import settings


async def get_session() -> AsyncIterator[AsyncSession]:
    """每个 request 一个 session；不提交/回滚事务。"""
    async with SessionLocal() as session:
        yield session


def get_settings() -> Any:
    return settings


def get_trace_context(request: Request) -> TraceContext:
    """
    [职责] 获取或创建 TraceContext（优先使用 middleware 注入）。
    [边界] 不写入日志；不校验 UUID 格式。
    """
    existing = getattr(request.state, "trace_context", None)
    if isinstance(existing, TraceContext):
        return existing

    trace_id = str(getattr(request.state, "trace_id", "") or "").strip() or new_uuid()
    request_id = str(getattr(request.state, "request_id", "") or "").strip() or new_uuid()
    ctx = TraceContext(trace_id=trace_id, request_id=request_id, tags={})  # docstring: 兜底构造
    request.state.trace_context = ctx
    request.state.trace_id = trace_id
    request.state.request_id = request_id
    return ctx


def get_dual_search_service(request: Request) -> DualSearchService:
    """
    [职责] 返回 app 生命周期内共享的 DualSearchService。
    [边界] 未装配（lifespan 未运行）视为配置错误。
    """
    service = getattr(request.app.state, "dual_search_service", None)
    if not isinstance(service, DualSearchService):
        raise ConfigurationError(message="dual search service is not initialised")
    return service
