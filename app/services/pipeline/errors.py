"""
流水线错误分类

所有阶段失败在编排器边界被捕获、分类，并以 StageError 的形式写入记录的 last_error。
ErrorKind 是封闭集合，retryable 标志由类型唯一决定。
"""
import asyncio
from datetime import datetime
from enum import Enum
from typing import Optional

import httpx
import openai
from pydantic import BaseModel, Field

from .state import Stage


class ErrorKind(str, Enum):
    """错误类型"""
    TRANSIENT_NETWORK = "TransientNetworkError"
    RATE_LIMIT = "RateLimitError"
    SERVICE_UNAVAILABLE = "ServiceUnavailableError"
    TIMEOUT = "TimeoutError"
    VALIDATION = "ValidationError"
    AUTH_CONFIG = "AuthConfigError"
    PERMANENT_PARSE = "PermanentParseError"


RETRYABLE_KINDS = frozenset({
    ErrorKind.TRANSIENT_NETWORK,
    ErrorKind.RATE_LIMIT,
    ErrorKind.SERVICE_UNAVAILABLE,
    ErrorKind.TIMEOUT,
})


class StageError(BaseModel):
    """持久化到 last_error 的结构化错误"""
    kind: ErrorKind = Field(..., description="错误类型")
    message: str = Field(..., description="错误信息")
    retryable: bool = Field(..., description="是否可重试")
    stage: Optional[Stage] = Field(None, description="失败阶段")
    occurred_at: Optional[datetime] = Field(None, description="发生时间")


class PipelineError(Exception):
    """流水线异常基类"""

    kind: ErrorKind = ErrorKind.TRANSIENT_NETWORK

    def __init__(self, message: str = ""):
        self.message = message or self.kind.value
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_stage_error(
        self,
        stage: Optional[Stage] = None,
        occurred_at: Optional[datetime] = None,
    ) -> StageError:
        return StageError(
            kind=self.kind,
            message=self.message,
            retryable=self.retryable,
            stage=stage,
            occurred_at=occurred_at,
        )


class TransientNetworkError(PipelineError):
    """连接重置、DNS 失败等"""
    kind = ErrorKind.TRANSIENT_NETWORK


class RateLimitError(PipelineError):
    """外部接口限流"""
    kind = ErrorKind.RATE_LIMIT

    def __init__(self, message: str = "", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ServiceUnavailableError(PipelineError):
    """模型加载中、冷启动或 5xx"""
    kind = ErrorKind.SERVICE_UNAVAILABLE


class StageTimeoutError(PipelineError):
    """外部调用超过截止时间"""
    kind = ErrorKind.TIMEOUT


class InputValidationError(PipelineError):
    """输入文件缺失、损坏或格式不支持"""
    kind = ErrorKind.VALIDATION


class AuthConfigError(PipelineError):
    """凭证无效或配置错误"""
    kind = ErrorKind.AUTH_CONFIG


class PermanentParseError(PipelineError):
    """输入无法转换为文本"""
    kind = ErrorKind.PERMANENT_PARSE


def _retry_after(exc: openai.APIStatusError) -> Optional[float]:
    value = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def classify_exception(exc: BaseException) -> PipelineError:
    """
    将任意异常归类为 PipelineError

    openai SDK、httpx 与 asyncio 的异常映射到固定的错误类型；
    未识别的异常按瞬时错误处理，保留重试机会。
    """
    if isinstance(exc, PipelineError):
        return exc

    message = str(exc) or exc.__class__.__name__

    # APITimeoutError 是 APIConnectionError 的子类，必须先判断
    if isinstance(exc, (openai.APITimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return StageTimeoutError(f"请求超时: {message}")
    if isinstance(exc, (openai.APIConnectionError, httpx.TransportError, ConnectionError)):
        return TransientNetworkError(f"网络错误: {message}")
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(f"接口限流: {message}", retry_after=_retry_after(exc))
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError, openai.NotFoundError)):
        return AuthConfigError(f"认证或配置错误: {message}")
    if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return InputValidationError(f"请求被拒绝: {message}")
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code == 503:
            return ServiceUnavailableError(f"服务不可用（模型加载中）: {message}")
        if exc.status_code >= 500:
            return ServiceUnavailableError(f"服务端错误 {exc.status_code}: {message}")
        return TransientNetworkError(f"接口返回 {exc.status_code}: {message}")
    if isinstance(exc, FileNotFoundError):
        return InputValidationError(f"文件不存在: {message}")
    if isinstance(exc, UnicodeDecodeError):
        return PermanentParseError(f"内容无法解码为文本: {message}")

    return TransientNetworkError(f"未知错误: {message}")
