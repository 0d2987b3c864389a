# src/ra_law_rag/backend/pipelines/retrieval/keywords.py

"""
[职责] KeywordExtractor：将原始查询拆为有界的检索词，并剔除查询语言中的通配/操作符字符。
[边界] 纯函数，无副作用，无失败路径（退化输入返回空列表）；不做 stemming/同义词。
[上游关系] keyword tier 在调用 LegalStore.query_by_keyword 前调用。
[下游关系] sql_store 以参数绑定方式拼接 ILIKE 条件；scoring 用同一批关键词计算重叠分。
"""

from __future__ import annotations

import re
from typing import Iterable, List


MIN_TOKEN_LEN = 3  # docstring: 长度 <= 2 的 token 丢弃
DEFAULT_MAX_KEYWORDS = 10
MAX_TOKEN_CHARS = 200  # docstring: 单个 token 硬上限

_LIKE_WILDCARDS = re.compile(r"[%_]")  # docstring: LIKE 通配符
_OPERATOR_CHARS = re.compile(r"[(),.*\\]")  # docstring: 过滤表达式操作符
_WHITESPACE = re.compile(r"\s+")
_ASCII_DIGITS = re.compile(r"[0-9]+")  # docstring: 仅 ASCII 数字串视为纯数字


def extract_keywords(text: str | None, max_count: int = DEFAULT_MAX_KEYWORDS) -> List[str]:
    """
    [职责] 按空白切分，丢弃短 token 与纯数字 token，保留前 max_count 个。
    [边界] 保持原始大小写与顺序；不去重（重复词在打分中各自独立计数）。
    """
    if not text or max_count <= 0:
        return []
    tokens = [t for t in str(text).split() if len(t) >= MIN_TOKEN_LEN and not _ASCII_DIGITS.fullmatch(t)]
    return tokens[:max_count]


def sanitize_keyword(token: str) -> str:
    """Strip wildcard/operator characters, collapse whitespace, cap at 200 chars."""
    s = _LIKE_WILDCARDS.sub("", str(token or ""))
    s = _OPERATOR_CHARS.sub("", s)
    s = _WHITESPACE.sub(" ", s).strip()
    return s[:MAX_TOKEN_CHARS]


def safe_keywords(keywords: Iterable[str]) -> List[str]:
    out: List[str] = []
    for kw in keywords:
        s = sanitize_keyword(kw)
        if s:
            out.append(s)
    return out
