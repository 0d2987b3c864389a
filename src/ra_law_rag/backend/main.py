# src/ra_law_rag/backend/main.py

"""
[职责] FastAPI 应用装配：middleware、routers、错误 handler 与生命周期（配置校验、遥测 worker、rerank 客户端）。
[边界] 不包含业务逻辑；生产部署的表结构与全文检索过程由迁移负责，仅 SQLite 本地库在启动时建表。
[上游关系] uvicorn 以 `ra_law_rag.backend.main:app` 或工厂 create_app 启动。
[下游关系] app.state.dual_search_service / app.state.telemetry 供 deps 与 health 读取。
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ra_law_rag.backend.api.errors import to_json_response, app_exception_handler
from ra_law_rag.backend.api.middleware import TraceContextMiddleware
from ra_law_rag.backend.api.routers.health import router as health_router
from ra_law_rag.backend.api.routers.search import router as search_router
from ra_law_rag.backend.clients.rerank_client import RerankClient
from ra_law_rag.backend.db.engine import ENGINE, SessionLocal, dialect_name, init_db
from ra_law_rag.backend.db.fts import ensure_sqlite_fts
from ra_law_rag.backend.db.sql_store import SqlLegalStore
from ra_law_rag.backend.services.dual_search_service import DualSearchService
from ra_law_rag.backend.services.telemetry import SqlUsageSink, TelemetryRecorder
from ra_law_rag.backend.utils.errors import BadRequestError, DomainError
from ra_law_rag.backend.utils.logging_ import configure_logging
from ra_law_rag.config import settings as default_settings


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """FastAPI body validation -> bad_request (same envelope as service-level input errors)."""
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
    error = BadRequestError(message="invalid request body", detail={"errors": errors})
    return to_json_response(
        error,
        trace_id=getattr(request.state, "trace_id", None),
        request_id=getattr(request.state, "request_id", None),
    )


def build_default_service(settings: Any) -> DualSearchService:
    """Production wiring: SQL store, optional rerank client, SQL usage sink."""
    rerank_client: Optional[RerankClient] = None
    if (settings.RERANK_SERVICE_URL or "").strip():
        rerank_client = RerankClient(
            url=settings.RERANK_SERVICE_URL,
            api_key=settings.RERANK_SERVICE_KEY,
            timeout_s=settings.RERANK_TIMEOUT_S,
        )
    telemetry: Optional[TelemetryRecorder] = None
    if settings.TELEMETRY_ENABLED:
        telemetry = TelemetryRecorder(
            SqlUsageSink(SessionLocal),
            maxsize=settings.TELEMETRY_QUEUE_MAXSIZE,
            timeout_s=settings.TELEMETRY_TIMEOUT_S,
            service_type=settings.TELEMETRY_SERVICE_TYPE,
            model_name=settings.TELEMETRY_MODEL_NAME,
        )
    return DualSearchService(
        store=SqlLegalStore(SessionLocal, dialect=dialect_name(ENGINE)),
        rerank_client=rerank_client,
        telemetry=telemetry,
        settings=settings,
    )


def create_app(
    *,
    settings: Any = None,
    service: Optional[DualSearchService] = None,
    validate_config: bool = True,
) -> FastAPI:
    """
    [职责] 构造 FastAPI app。
    [边界] 传入 service 时立即挂到 app.state（测试无需运行 lifespan）；否则在 lifespan 中按配置装配。
    """
    s = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(level=s.LOG_LEVEL)
        if validate_config:
            s.validate_required()  # docstring: 缺少必需凭据时启动失败

        svc = service if service is not None else build_default_service(s)
        if service is None and dialect_name(ENGINE) == "sqlite":
            await init_db()
            async with SessionLocal() as session:
                await ensure_sqlite_fts(session)

        app.state.dual_search_service = svc
        app.state.telemetry = svc.telemetry
        if svc.telemetry is not None:
            svc.telemetry.start()
        try:
            yield
        finally:
            if svc.telemetry is not None:
                await svc.telemetry.aclose()
            if service is None and svc.rerank_client is not None:
                await svc.rerank_client.aclose()

    app = FastAPI(title="ra-law-rag", version="0.1.0", lifespan=lifespan)
    app.add_middleware(TraceContextMiddleware)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DomainError, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, app_exception_handler)
    app.include_router(search_router)
    app.include_router(health_router)

    if service is not None:
        app.state.dual_search_service = service
        app.state.telemetry = service.telemetry
    return app


app = create_app()
