# src/ra_law_rag/backend/clients/rerank_client.py

"""
[职责] 外部语义检索 + rerank 服务的异步 HTTP 客户端（httpx.AsyncClient）。
[边界] 只负责一次 POST 与响应校验；不重试、不熔断；所有失败统一抛 ExternalDependencyError。
[上游关系] pipelines/retrieval/rerank.py 构造 RerankRequest 调用 search。
[下游关系] 返回 RerankResponse；失败由 run_tier 转为 TierResult.failed。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ra_law_rag.backend.schemas.retrieval import RerankRequest, RerankResponse
from ra_law_rag.backend.utils.constants import REQUEST_ID_HEADER
from ra_law_rag.backend.utils.errors import ExternalDependencyError
from ra_law_rag.backend.utils.logging_ import get_logger


logger = get_logger("clients.rerank")


class RerankClient:
    """
    [职责] 持有一个可复用的 httpx.AsyncClient，并把 HTTP 语义映射为领域错误。
    [边界] 客户端由应用生命周期管理（aclose）；测试可注入 transport（httpx.MockTransport）。
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: Optional[str] = None,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not str(url or "").strip():
            raise ValueError("rerank service url is required")
        self._url = str(url).strip()
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers=headers,
            transport=transport,
        )

    @property
    def url(self) -> str:
        return self._url

    async def search(self, request: RerankRequest, *, request_id: Optional[str] = None) -> RerankResponse:
        """
        [职责] 调用 rerank 服务并解析响应。
        [边界] non-2xx / 非 JSON / 结构不符 / 传输错误 -> ExternalDependencyError。
        """
        headers = {REQUEST_ID_HEADER: request_id} if request_id else None
        try:
            resp = await self._client.post(self._url, json=request.to_payload(), headers=headers)
        except httpx.TimeoutException as exc:
            raise ExternalDependencyError(message="rerank service timeout", cause=exc) from exc
        except httpx.HTTPError as exc:
            raise ExternalDependencyError(
                message="rerank service unreachable",
                detail={"error": exc.__class__.__name__},
                cause=exc,
            ) from exc

        if not resp.is_success:
            raise ExternalDependencyError(
                message=f"rerank service returned HTTP {resp.status_code}",
                detail={"status_code": resp.status_code},
                retryable=resp.status_code >= 500,
            )

        try:
            body: Any = resp.json()
        except ValueError as exc:
            raise ExternalDependencyError(message="rerank service returned non-JSON body", cause=exc) from exc

        try:
            return RerankResponse.model_validate(body)
        except ValidationError as exc:
            raise ExternalDependencyError(
                message="rerank service returned malformed body",
                detail={"errors": exc.error_count()},
                cause=exc,
            ) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
            logger.debug("rerank client closed")
