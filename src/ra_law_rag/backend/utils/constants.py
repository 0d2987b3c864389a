# src/ra_law_rag/backend/utils/constants.py

"""
[职责] 集中定义协议字段名与枚举取值（trace/timing/index/tier/mode），避免跨模块硬编码。
[边界] 不读取环境变量；运行时可调参数在 config.Settings。
[上游关系] pipelines/services/api 构建结果与日志时引用。
[下游关系] 日志字段、telemetry metadata、HTTP 响应使用一致命名。
"""

from __future__ import annotations


TRACE_ID_KEY = "trace_id"  # docstring: trace_id 字段
REQUEST_ID_KEY = "request_id"  # docstring: request_id 字段
PARENT_REQUEST_ID_KEY = "parent_request_id"

TRACE_ID_HEADER = "x-trace-id"
REQUEST_ID_HEADER = "x-request-id"
PARENT_REQUEST_ID_HEADER = "x-parent-request-id"

TIMING_MS_KEY = "timing_ms"
TIMING_TOTAL_KEY = "total"

INDEX_NORMATIVE = "normative"  # docstring: 法规索引（knowledge_base）
INDEX_PRACTICE = "practice"  # docstring: 判例索引（legal_practice_kb，ECHR 为其 category 子集）

TIER_RERANK = "rerank"
TIER_KEYWORD = "keyword"
TIER_FTS_FALLBACK = "fts_fallback"

MODE_KEYWORD_RERANK = "keyword+rerank"
MODE_KEYWORD_ONLY = "keyword_only"
MODE_RPC_FALLBACK = "rpc_fallback"

MODE_PREFERENCE = (MODE_KEYWORD_RERANK, MODE_KEYWORD_ONLY, MODE_RPC_FALLBACK)  # docstring: 聚合时优先级（高->低）

RERANK_TABLE_BY_INDEX = {INDEX_NORMATIVE: "kb", INDEX_PRACTICE: "practice"}  # docstring: rerank 服务 tables 参数

PRACTICE_CATEGORIES = ("criminal", "civil", "administrative", "echr")
COURT_TYPES = ("first_instance", "appeal", "cassation", "constitutional", "echr")
CASE_OUTCOMES = ("granted", "rejected", "partial", "remanded", "discontinued")

CONTEXT_SEPARATOR = "\n\n---\n\n"  # docstring: 上下文块分隔符
DEFAULT_NORMATIVE_SOURCE = "RA Legal Database"
PREVIEW_MAX_CHARS = 300
