# src/ra_law_rag/backend/utils/errors.py

"""
[职责] 领域错误合同（error_code/message/detail/cause）与 HTTP 映射提示（http_status/retryable）。
[边界] 不依赖 FastAPI；tier 级故障不在此抛出（由 retrieval tier 包装为 TierResult.failed）。
[上游关系] services 入参校验、rerank client、配置校验抛出 DomainError 子类。
[下游关系] api/errors.py 调用 to_http_error 生成 ErrorResponse。
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional, Tuple


ErrorDetail = Dict[str, Any]  # docstring: 错误细节（必须 JSON-safe）

ERROR_CODE_PATTERN_AREA = re.compile(r"^[A-Z][A-Z0-9]*(?:__[A-Z0-9]+)+$")  # docstring: AREA__REASON
ERROR_CODE_PATTERN_DOT = re.compile(r"^[a-z][a-z0-9]*(?:\.[a-z0-9_]+)+$")  # docstring: area.reason

STANDARD_ERROR_CODES = {
    "bad_request",
    "external_dependency",
    "configuration_error",
    "internal_error",
}

ERROR_HTTP_STATUS_BY_CODE = {
    "bad_request": 400,
    "external_dependency": 503,
    "configuration_error": 500,
    "internal_error": 500,
}

ERROR_RETRYABLE_BY_CODE = {
    "bad_request": False,
    "external_dependency": True,
    "configuration_error": False,
    "internal_error": False,
}

INTERNAL_ERROR_CODE = "internal_error"
INTERNAL_ERROR_MESSAGE = "internal error"


def is_valid_error_code(error_code: str) -> bool:
    """Accept the standard codes plus AREA__REASON / area.reason shaped codes."""
    if not error_code:
        return False
    if error_code in STANDARD_ERROR_CODES:
        return True
    return bool(ERROR_CODE_PATTERN_AREA.match(error_code) or ERROR_CODE_PATTERN_DOT.match(error_code))


def ensure_json_safe_detail(detail: ErrorDetail) -> ErrorDetail:
    """
    [职责] 校验 detail 为可 JSON 序列化的 dict。
    [边界] 不裁剪、不降级；失败直接抛 ValueError。
    """
    if not isinstance(detail, dict):
        raise ValueError("detail must be a dict")
    try:
        json.dumps(detail)
    except TypeError as exc:
        raise ValueError("detail must be JSON-serializable") from exc
    return detail


class DomainError(Exception):
    """
    [职责] 领域错误最小合同：error_code/message/detail/cause + http_status/retryable 提示。
    [边界] 只表达语义；日志与 HTTP 输出由调用方负责。
    [上游关系] services/clients 抛出；可携带 cause 保留异常链。
    [下游关系] api/errors.py 映射为 ErrorResponse。
    """

    def __init__(
        self,
        *,
        error_code: str,
        message: str,
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        http_status: Optional[int] = None,
        retryable: Optional[bool] = None,
        allow_nonstandard_code: bool = False,
    ) -> None:
        if not is_valid_error_code(error_code) and not allow_nonstandard_code:
            raise ValueError(f"invalid error_code: {error_code}")
        normalized_detail = detail or {}
        ensure_json_safe_detail(normalized_detail)

        super().__init__(message)
        self.error_code = error_code  # docstring: 稳定错误码
        self.message = message
        self.detail = normalized_detail
        self.cause = cause
        self.http_status = (
            http_status if http_status is not None else ERROR_HTTP_STATUS_BY_CODE.get(error_code, 500)
        )  # docstring: 显式值优先
        self.retryable = (
            retryable if retryable is not None else ERROR_RETRYABLE_BY_CODE.get(error_code, False)
        )

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """ErrorResponse.error payload (no trace_id, no cause)."""
        return {
            "code": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }


class BadRequestError(DomainError):
    """
    [职责] 400：查询文本缺失/非法等输入错误。
    [边界] 必须在任何 retrieval tier 调用之前抛出。
    """

    def __init__(
        self,
        *,
        message: str = "bad request",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            error_code="bad_request",
            message=message,
            detail=detail,
            cause=cause,
            http_status=400,
            retryable=False,
        )


class ExternalDependencyError(DomainError):
    """
    [职责] 503：rerank 服务 / 存储等外部依赖故障。
    [边界] 不泄露 endpoint 密钥；retrieval tier 会捕获并转为 failed 标记。
    [上游关系] clients/rerank_client.py 在 non-2xx / 响应体非法 / 网络错误时抛出。
    [下游关系] pipelines/retrieval/tiers.py 的 run_tier 包装。
    """

    def __init__(
        self,
        *,
        message: str = "external dependency error",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(
            error_code="external_dependency",
            message=message,
            detail=detail,
            cause=cause,
            http_status=503,
            retryable=retryable if retryable is not None else True,
        )


class ConfigurationError(DomainError):
    """
    [职责] 启动期配置错误（缺少必需后端凭据等）。
    [边界] 仅在进程启动时抛出（fail fast），不会在单次请求中出现。
    """

    def __init__(
        self,
        *,
        message: str = "configuration error",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            error_code="configuration_error",
            message=message,
            detail=detail,
            cause=cause,
            http_status=500,
            retryable=False,
        )


def describe_error(error: BaseException) -> str:
    """Short `ClassName: message` summary used in tier failure flags and logs."""
    if isinstance(error, DomainError):
        return f"{error.__class__.__name__}: {error.message}"
    text = str(error).strip()
    return f"{error.__class__.__name__}: {text}" if text else error.__class__.__name__


def to_http_error(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
) -> Tuple[int, Dict[str, Any]]:
    """
    [职责] 异常 -> (HTTP status, ErrorResponse payload)，不耦合 FastAPI。
    [边界] 未知异常统一降级为 internal_error。
    """
    if isinstance(error, DomainError):
        status_code = error.http_status
        payload = {"error": error.to_dict()}
    else:
        status_code = ERROR_HTTP_STATUS_BY_CODE[INTERNAL_ERROR_CODE]
        payload = {
            "error": {
                "code": INTERNAL_ERROR_CODE,
                "message": INTERNAL_ERROR_MESSAGE,
                "detail": {},
            }
        }

    if trace_id:
        payload["error"]["trace_id"] = trace_id

    return status_code, payload
