"""
简历记录模型模块 - SQLModel 版本

一条 ResumeRecord 对应一份上传的简历（文档或语音），
记录其在处理流水线中的状态、各阶段结果和重试元数据。
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import SQLModel, Field, Column, JSON

from app.services.pipeline.errors import StageError
from app.services.pipeline.state import ResumeStatus, SourceType
from .base import SQLModelBase, TimestampMixin, IDMixin, TimestampResponse, UTCDateTime


# ==================== 嵌套 Schema ====================

class TranscriptionResult(SQLModelBase):
    """语音转写结果"""
    text: str = Field(..., description="转写文本")
    word_count: int = Field(0, ge=0, description="词数")
    processing_time_ms: int = Field(0, ge=0, description="转写耗时(毫秒)")
    quality_score: float = Field(0.0, ge=0, le=1, description="转写质量评分")
    transcribed_at: Optional[datetime] = Field(None, description="转写时间")


class ExtractedField(SQLModelBase):
    """单个提取字段及其置信度"""
    value: Any = Field(..., description="字段值")
    confidence: float = Field(..., ge=0, le=1, description="提取置信度")


class ConfidenceRecommendation(SQLModelBase):
    """针对低分组成部分的改进建议"""
    component: str = Field(..., description="组成部分")
    issue: str = Field(..., description="问题")
    suggestion: str = Field(..., description="建议")
    impact: str = Field(..., description="影响程度: high / medium")


class ConfidenceReport(SQLModelBase):
    """整体置信度评估"""
    overall: float = Field(..., ge=0, le=1, description="综合置信度")
    level: str = Field(..., description="置信度等级")
    components: Dict[str, float] = Field(default_factory=dict, description="各组成部分评分")
    insights: List[str] = Field(default_factory=list, description="评分解读")
    recommendations: List[ConfidenceRecommendation] = Field(default_factory=list, description="改进建议，按分数从低到高")


class EnhancementResult(SQLModelBase):
    """AI 增强结果"""
    categorized_skills: Dict[str, List[str]] = Field(default_factory=dict, description="分类后的技能")
    experience_level: Optional[str] = Field(None, description="经验等级")
    missing_fields: List[str] = Field(default_factory=list, description="缺失或低置信度字段")
    industry_classification: Optional[str] = Field(None, description="行业分类")
    confidence: Optional[ConfidenceReport] = Field(None, description="综合置信度")
    enhanced_at: Optional[datetime] = Field(None, description="增强时间")


# ==================== 表模型 ====================

class ResumeRecord(TimestampMixin, IDMixin, SQLModel, table=True):
    """简历处理记录表模型"""
    __tablename__ = "resume_records"

    # 来源信息（创建后不可变）
    source_type: str = Field(..., index=True, description="来源类型")
    raw_content_ref: str = Field(..., description="原始文件引用")
    original_name: Optional[str] = Field(None, max_length=255, description="原始文件名")

    # 状态
    status: str = Field(ResumeStatus.UPLOADED.value, index=True, description="处理状态")

    # 各阶段结果
    transcription: Optional[dict] = Field(default=None, sa_column=Column(JSON), description="转写结果")
    parsed_fields: Optional[dict] = Field(default=None, sa_column=Column(JSON), description="提取字段")
    enhancement: Optional[dict] = Field(default=None, sa_column=Column(JSON), description="增强结果")

    # 重试元数据
    retry_count: int = Field(0, ge=0, description="失败次数")
    last_error: Optional[dict] = Field(default=None, sa_column=Column(JSON), description="最近一次错误")
    last_retry_at: Optional[datetime] = Field(None, sa_type=UTCDateTime, description="最近一次重试时间")
    claimed_until: Optional[datetime] = Field(None, sa_type=UTCDateTime, index=True, description="租约到期时间")
    claimed_by: Optional[str] = Field(None, max_length=64, description="租约持有者令牌")

    @property
    def uploaded_at(self) -> datetime:
        return self.created_at

    def __repr__(self) -> str:
        return f"<ResumeRecord(id={self.id}, status={self.status})>"


# ==================== 请求 Schema ====================

class ResumeUpload(SQLModelBase):
    """上传简历请求"""
    source_type: SourceType = Field(..., description="来源类型: document / voice")
    raw_content_ref: str = Field(..., min_length=1, description="已存储文件的引用（相对上传目录或绝对路径）")
    original_name: Optional[str] = Field(None, max_length=255, description="原始文件名")


class RetryRequest(SQLModelBase):
    """重试请求，resume_id 为空时扫描全部失败记录"""
    resume_id: Optional[str] = Field(None, description="简历记录ID")


# ==================== 响应 Schema ====================

class RetryMeta(SQLModelBase):
    """重试元数据"""
    retry_count: int
    last_error: Optional[StageError] = None
    last_retry_at: Optional[datetime] = None
    claimed_until: Optional[datetime] = None


class ResumeRecordResponse(TimestampResponse):
    """简历记录详情响应"""
    source_type: SourceType
    raw_content_ref: str
    original_name: Optional[str] = None
    status: ResumeStatus
    transcription: Optional[TranscriptionResult] = None
    parsed_fields: Optional[Dict[str, ExtractedField]] = None
    enhancement: Optional[EnhancementResult] = None
    retry_count: int = 0
    last_error: Optional[StageError] = None
    last_retry_at: Optional[datetime] = None
    claimed_until: Optional[datetime] = None


class ResumeStatusResponse(SQLModelBase):
    """简历状态查询响应（轮询用）"""
    id: str
    source_type: SourceType
    status: ResumeStatus
    message: str
    progress: int
    can_retry: bool
    retry: RetryMeta
    parsed_preview: Dict[str, Any] = Field(default_factory=dict)
    enhancement_summary: Optional[Dict[str, Any]] = None
    uploaded_at: datetime
    updated_at: datetime
