# src/ra_law_rag/backend/api/schemas_http/search.py

"""
[职责] Search HTTP 契约：/search/dual 的请求体与响应体。
[边界] 仅做 HTTP 形状定义；limit 越界不报错（服务端按硬上限裁剪）；不含检索逻辑。
[上游关系] 前端/生成层以 JSON 调用 /search/dual。
[下游关系] routers/search.py 映射为 RetrievalQuery + DualSearchOptions，并把 DualOutcome 映射回本响应。
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ._common import RequestId, TraceId


RetrievalModeView = Literal["keyword+rerank", "keyword_only", "rpc_fallback"]


class DualSearchRequest(BaseModel):
    """
    [职责] dual search 请求体。
    [边界] query 的空白校验在服务层完成（统一为 bad_request 错误体）；未知字段拒绝。
    """

    model_config = ConfigDict(extra="forbid")

    query: str = Field(...)  # docstring: 自由文本查询
    reference_date: Optional[date] = Field(default=None)  # docstring: 法规有效性参考日期
    category: Optional[str] = Field(default=None)  # docstring: practice 分类过滤
    kb_limit: Optional[int] = Field(default=None)  # docstring: 缺省取配置默认值
    practice_limit: Optional[int] = Field(default=None)
    kb_snippet_length: Optional[int] = Field(default=None)
    full_practice_text: bool = Field(default=True)
    kb_token_budget: Optional[int] = Field(default=None)
    practice_token_budget: Optional[int] = Field(default=None)
    assume_current_date: bool = Field(default=True)


class SourceRef(BaseModel):
    """引用列表条目（标题/类别/来源）。"""

    model_config = ConfigDict(extra="allow")

    id: str
    index_kind: str
    title: str
    category: Optional[str] = None
    source_name: Optional[str] = None


class ResultView(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: str
    index_kind: str
    source_tier: str
    raw_score: float
    normalized_score: float
    rank: Optional[float] = None
    preview: str = ""
    fields: Dict[str, Any] = Field(default_factory=dict)


class BucketSummary(BaseModel):
    """单个 index 的遥测摘要。"""

    model_config = ConfigDict(extra="allow")

    retrieval_mode: RetrievalModeView
    rerank_ok: bool
    rerank_error: Optional[str] = None
    result_count: int = 0
    fallback_invoked: bool = False
    cancelled: bool = False
    tier_counts: Dict[str, int] = Field(default_factory=dict)


class DualSearchResponse(BaseModel):
    """
    [职责] dual search 响应体：上下文字符串 + 排序结果 + 引用 + 聚合遥测。
    [边界] 结果中的 content_text 不回传（上下文已包含截断后的正文）。
    """

    model_config = ConfigDict(extra="forbid")

    trace_id: TraceId
    request_id: RequestId
    retrieval_mode: RetrievalModeView
    rerank_ok: bool
    rerank_error: Optional[str] = None
    cancelled: bool = False
    kb_context: str = ""
    practice_context: str = ""
    context: str = ""
    kb_results: List[ResultView] = Field(default_factory=list)
    practice_results: List[ResultView] = Field(default_factory=list)
    sources: List[SourceRef] = Field(default_factory=list)
    kb: BucketSummary
    practice: BucketSummary
    token_usage: Dict[str, int] = Field(default_factory=dict)
    timing_ms: Dict[str, float] = Field(default_factory=dict)
