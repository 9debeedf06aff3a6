"""
SQLModel 模型模块

使用 SQLModel 统一 ORM Model 和 Pydantic Schema
"""
from .base import SQLModelBase, TimestampMixin, utcnow
from .resume import (
    ResumeRecord,
    ResumeUpload,
    RetryRequest,
    RetryMeta,
    ResumeRecordResponse,
    ResumeStatusResponse,
    TranscriptionResult,
    ExtractedField,
    ConfidenceReport,
    ConfidenceRecommendation,
    EnhancementResult,
)

__all__ = [
    # Base
    "SQLModelBase",
    "TimestampMixin",
    "utcnow",
    # Resume
    "ResumeRecord",
    "ResumeUpload",
    "RetryRequest",
    "RetryMeta",
    "ResumeRecordResponse",
    "ResumeStatusResponse",
    "TranscriptionResult",
    "ExtractedField",
    "ConfidenceReport",
    "ConfidenceRecommendation",
    "EnhancementResult",
]
