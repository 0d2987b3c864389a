# src/ra_law_rag/backend/utils/logging_.py

"""
[职责] 结构化 JSON 日志：统一 logger 根名称、trace 字段提取与安全文本 helper。
[边界] 不绑定日志后端；不记录原始查询全文（调用方使用 truncate_text/hash_text）。
[上游关系] pipelines/services/api 通过 get_logger + log_event 输出日志。
[下游关系] stdout JSON 行，供日志采集系统检索 request_id / tier / retrieval_mode。
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


DEFAULT_LOGGER_NAME = "ra_law_rag"  # docstring: 项目 logger 根名称
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_MAX_TEXT_LEN = 160  # docstring: 日志中文本预览上限

TRACE_FIELD_KEYS = (
    "trace_id",
    "request_id",
    "parent_request_id",
    "index_kind",
)

_LOG_RECORD_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class StructuredLogFormatter(logging.Formatter):
    """
    [职责] LogRecord -> JSON 行（基础字段 + extra）。
    [边界] 不识别敏感字段；None 值丢弃。
    """

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        super().__init__()
        self._ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            {k: v for k, v in record.__dict__.items() if k not in _LOG_RECORD_RESERVED and v is not None}
        )  # docstring: 仅合并 extra 字段

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        return json.dumps(payload, ensure_ascii=self._ensure_ascii, default=str)


def configure_logging(
    *,
    logger_name: str = DEFAULT_LOGGER_NAME,
    level: int | str = DEFAULT_LOG_LEVEL,
    ensure_ascii: bool = True,
) -> logging.Logger:
    """
    [职责] 为项目根 logger 挂载一次 JSON handler。
    [边界] 不触碰 root logger；重复调用幂等。
    [上游关系] main.create_app 或测试初始化。
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    has_handler = any(getattr(h, "name", "") == "structured_json" for h in logger.handlers)
    if not has_handler:
        handler = logging.StreamHandler()
        handler.name = "structured_json"  # docstring: 标记，避免重复挂载
        handler.setFormatter(StructuredLogFormatter(ensure_ascii=ensure_ascii))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Project logger mounted under `ra_law_rag` (e.g. `ra_law_rag.retrieval.pipeline`)."""
    configure_logging()
    full_name = name or DEFAULT_LOGGER_NAME
    if name and not name.startswith(DEFAULT_LOGGER_NAME):
        full_name = f"{DEFAULT_LOGGER_NAME}.{name}"
    return logging.getLogger(full_name)


def build_log_fields(
    *,
    context: Optional[Any] = None,
    request_id: Optional[str] = None,
    trace_id: Optional[str] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    [职责] 合成 logger.extra：context 中的 trace 字段 + 显式 ID + 扩展字段。
    [边界] 不生成缺失 ID；不校验字段类型。
    """
    fields: Dict[str, Any] = {}
    if context is not None:
        for key in TRACE_FIELD_KEYS:
            value = context.get(key) if isinstance(context, Mapping) else getattr(context, key, None)
            if value is not None:
                fields[key] = str(value)

    if request_id is not None:
        fields["request_id"] = str(request_id)
    if trace_id is not None:
        fields["trace_id"] = str(trace_id)

    if extra:
        fields.update({k: v for k, v in extra.items() if v is not None})
    return fields


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    context: Optional[Any] = None,
    fields: Optional[Mapping[str, Any]] = None,
    exc_info: Optional[Any] = None,
) -> None:
    """Single entry point for structured log lines."""
    extra = build_log_fields(context=context, extra=fields)
    logger.log(level, message, extra=extra, exc_info=exc_info)


def truncate_text(text: Optional[str], *, max_len: int = DEFAULT_MAX_TEXT_LEN) -> Optional[str]:
    if text is None:
        return None
    s = str(text)
    if len(s) <= max_len:
        return s
    return f"{s[:max_len]}...(truncated)"


def hash_text(text: Optional[str]) -> Optional[str]:
    """
    [职责] sha256 摘要，日志中代替原始查询文本。
    [边界] 无盐；仅用于定位/去重，不作为安全凭据。
    """
    if text is None:
        return None
    s = str(text)
    if not s:
        return ""
    return hashlib.sha256(s.encode("utf-8")).hexdigest()
