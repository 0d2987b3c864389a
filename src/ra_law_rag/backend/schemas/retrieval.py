# src/ra_law_rag/backend/schemas/retrieval.py

"""
[职责] Retrieval 契约层：查询输入、dual search 选项，以及外部 rerank 服务的请求/响应结构。
[边界] 不包含检索实现；不依赖 ORM；外部响应体的合法性校验在此完成（非法响应 -> ValidationError）。
[上游关系] HTTP 层 / 生成层调用方构造 RetrievalQuery + DualSearchOptions。
[下游关系] services/dual_search_service.py 消费；clients/rerank_client.py 序列化 RerankRequest、解析 RerankResponse。
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


PracticeCategory = Literal["criminal", "civil", "administrative", "echr"]  # docstring: 判例分类（echr 为 practice 子集）
RerankTables = Literal["kb", "practice", "both"]  # docstring: rerank 服务检索表


class RetrievalQuery(BaseModel):
    """
    [职责] 单次检索查询（单次调用内不可变）。
    [边界] text 去除首尾空白后不可为空；category 仅作用于 practice 索引。
    [上游关系] dual_search 调用方或 HTTP 请求体。
    [下游关系] 三个 tier 共享同一查询对象。
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    text: str = Field(..., min_length=1)  # docstring: 自由文本查询（长度上限由 MAX_QUERY_LENGTH 配置）
    reference_date: Optional[date] = Field(default=None)  # docstring: 法规有效性参考日期
    category: Optional[PracticeCategory] = Field(default=None)  # docstring: practice 分类过滤
    request_id: Optional[str] = Field(default=None, max_length=128)  # docstring: 上游透传的请求 ID

    @field_validator("text")
    @classmethod
    def _strip_text(cls, v: str) -> str:
        s = str(v).strip()
        if not s:
            raise ValueError("query text is required")
        return s


class DualSearchOptions(BaseModel):
    """
    Caller options for dual_search. Unset limits and snippet length take the configured
    defaults; limits are clamped to the configured hard caps server-side, so out-of-range
    values never reject the request.
    """

    model_config = ConfigDict(extra="forbid")

    kb_limit: Optional[int] = Field(default=None)  # docstring: None -> KB_DEFAULT_LIMIT
    practice_limit: Optional[int] = Field(default=None)  # docstring: None -> PRACTICE_DEFAULT_LIMIT
    kb_snippet_length: Optional[int] = Field(default=None, ge=1)  # docstring: None -> KB_DEFAULT_SNIPPET_LENGTH
    full_practice_text: bool = Field(default=True)
    request_id: Optional[str] = Field(default=None, max_length=128)
    kb_token_budget: Optional[int] = Field(default=None, ge=1)  # docstring: KB 上下文 token 预算（可选）
    practice_token_budget: Optional[int] = Field(default=None, ge=1)
    assume_current_date: bool = Field(default=True)  # docstring: 无 reference_date 时追加“现行版本”提示


class RerankRequest(BaseModel):
    """Body sent to the external rerank service."""

    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., min_length=1)
    tables: RerankTables = Field(...)
    category: Optional[str] = Field(default=None)
    limit: int = Field(..., ge=1, le=50)  # docstring: 候选数（期望结果数的 3 倍，上限 50）
    threshold: float = Field(default=0.3, ge=0.0, le=1.0)  # docstring: 相似度阈值
    reference_date: Optional[date] = Field(default=None)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RerankHit(BaseModel):
    """
    [职责] rerank 服务返回的单条命中。
    [边界] 除 id/similarity 外字段均可缺省；未知字段保留（作为 Candidate.fields）。
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    title: str = Field(default="")
    content_text: Optional[str] = Field(default=None)
    content_snippet: Optional[str] = Field(default=None)  # docstring: practice 命中通常只返回片段
    similarity: float = Field(...)

    def extra_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class RerankResponse(BaseModel):
    """Rerank service response; a body that does not match is a tier failure."""

    model_config = ConfigDict(extra="ignore")

    kb: List[RerankHit] = Field(default_factory=list)
    practice: List[RerankHit] = Field(default_factory=list)
    retrieval_mode: Optional[str] = Field(default=None)
    rerank_ok: Optional[bool] = Field(default=None)
    rerank_error: Optional[str] = Field(default=None)
    request_id: Optional[str] = Field(default=None)
