"""
简历处理 API 路由
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.response import success_response, paged_response
from app.core.exceptions import NotFoundException, ConflictException
from app.crud import resume_crud
from app.models.resume import (
    ResumeRecord,
    ResumeUpload,
    RetryRequest,
    RetryMeta,
    ResumeRecordResponse,
    ResumeStatusResponse,
)
from app.services.pipeline.extractor import field_value
from app.services.pipeline.factory import Pipeline
from app.services.pipeline.retry import SKIPPED_OUTCOMES
from app.services.pipeline.state import (
    FAILED_STATUSES,
    IN_PROGRESS_STATUSES,
    STATUS_MESSAGES,
    ResumeStatus,
    progress_of,
)

router = APIRouter()

PREVIEW_FIELDS = ("name", "email", "phone", "current_title", "years_of_experience")
PREVIEW_SKILLS = 10


def get_pipeline(request: Request) -> Pipeline:
    """从应用状态获取流水线（lifespan 中创建）"""
    return request.app.state.pipeline


def _can_retry(record: ResumeRecord, max_retries: int) -> bool:
    if ResumeStatus(record.status) not in FAILED_STATUSES:
        return False
    if record.last_error and not record.last_error.get("retryable", True):
        return False
    return record.retry_count < max_retries


def _status_view(record: ResumeRecord, max_retries: int) -> ResumeStatusResponse:
    status = ResumeStatus(record.status)
    message = STATUS_MESSAGES[status]
    if record.last_error and status in FAILED_STATUSES:
        message = f"{message}: {record.last_error.get('message')}"

    preview: Dict[str, Any] = {}
    for name in PREVIEW_FIELDS:
        value = field_value(record.parsed_fields, name)
        if value is not None:
            preview[name] = value
    skills = field_value(record.parsed_fields, "skills")
    if skills:
        preview["skills"] = skills[:PREVIEW_SKILLS]

    summary = None
    if record.enhancement:
        confidence = record.enhancement.get("confidence") or {}
        summary = {
            "experience_level": record.enhancement.get("experience_level"),
            "industry_classification": record.enhancement.get("industry_classification"),
            "missing_fields": record.enhancement.get("missing_fields", []),
            "confidence": confidence.get("overall"),
            "confidence_level": confidence.get("level"),
            "insights": confidence.get("insights", []),
            "recommendations": confidence.get("recommendations", []),
        }

    return ResumeStatusResponse(
        id=record.id,
        source_type=record.source_type,
        status=status,
        message=message,
        progress=progress_of(status),
        can_retry=_can_retry(record, max_retries),
        retry=RetryMeta(
            retry_count=record.retry_count,
            last_error=record.last_error,
            last_retry_at=record.last_retry_at,
            claimed_until=record.claimed_until,
        ),
        parsed_preview=preview,
        enhancement_summary=summary,
        uploaded_at=record.uploaded_at,
        updated_at=record.updated_at,
    )


@router.post("", summary="上传简历")
async def upload_resume(
    data: ResumeUpload,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    接收已存储的简历文件并开始后台处理

    文件传输不在此接口范围内，raw_content_ref 指向上传目录中的文件。
    """
    record = await pipeline.intake.upload(
        db,
        source_type=data.source_type,
        raw_content_ref=data.raw_content_ref,
        original_name=data.original_name,
    )
    return success_response(
        data=ResumeRecordResponse.model_validate(record).model_dump(),
        message="简历上传成功，已开始处理",
    )


@router.get("", summary="获取简历列表")
async def get_resumes(
    page: int = Query(1, ge=1, description="页码"),
    page_size: int = Query(20, ge=1, le=100, description="每页数量"),
    status: Optional[ResumeStatus] = Query(None, description="按状态筛选"),
    db: AsyncSession = Depends(get_db),
):
    """获取简历列表，支持分页和状态筛选"""
    skip = (page - 1) * page_size
    records = await resume_crud.list_records(db, status=status, skip=skip, limit=page_size)
    total = await resume_crud.count_records(db, status=status)
    items = [ResumeRecordResponse.model_validate(r).model_dump() for r in records]
    return paged_response(items, total, page, page_size)


@router.get("/stats", summary="获取处理统计")
async def get_stats(db: AsyncSession = Depends(get_db)):
    """各状态记录数"""
    counts = await resume_crud.count_by_status(db)
    by_status = {s.value: counts.get(s.value, 0) for s in ResumeStatus}
    return success_response(data={
        "total": sum(by_status.values()),
        "completed": by_status[ResumeStatus.ENHANCED.value],
        "failed": sum(by_status[s.value] for s in FAILED_STATUSES),
        "in_progress": sum(by_status[s.value] for s in IN_PROGRESS_STATUSES),
        "by_status": by_status,
    })


@router.post("/retry", summary="重试失败的简历")
async def retry_resumes(
    data: Optional[RetryRequest] = None,
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    扫描失败记录并重试

    指定 resume_id 时只处理该记录。
    """
    record_id = data.resume_id if data else None
    report = await pipeline.coordinator.sweep(record_id)
    return success_response(data=report.to_dict(), message="重试扫描完成")


@router.get("/{resume_id}/status", summary="查询简历处理状态")
async def get_resume_status(
    resume_id: str,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """轮询处理进度，只读"""
    record = await resume_crud.get(db, resume_id)
    if not record:
        raise NotFoundException(f"简历不存在: {resume_id}")
    view = _status_view(record, pipeline.coordinator.max_retries)
    return success_response(data=view.model_dump())


@router.post("/{resume_id}/retry", summary="重试单份简历")
async def retry_resume(
    resume_id: str,
    db: AsyncSession = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    重试指定记录

    记录不处于失败（或租约过期）状态、错误不可重试、已达最大重试次数
    或正被其他 worker 处理时返回 409。
    """
    record = await resume_crud.get(db, resume_id)
    if not record:
        raise NotFoundException(f"简历不存在: {resume_id}")

    report = await pipeline.coordinator.sweep(resume_id)
    if not report.items:
        raise ConflictException(f"简历当前状态不可重试: {record.status}")
    item = report.items[0]
    if item.outcome in SKIPPED_OUTCOMES:
        raise ConflictException(
            f"简历不可重试: {item.outcome.value}",
            data=report.to_dict(),
        )
    return success_response(data=report.to_dict(), message="重试完成")


@router.get("/{resume_id}", summary="获取简历详情")
async def get_resume(
    resume_id: str,
    db: AsyncSession = Depends(get_db),
):
    """根据 ID 获取简历处理记录"""
    record = await resume_crud.get(db, resume_id)
    if not record:
        raise NotFoundException(f"简历不存在: {resume_id}")
    return success_response(data=ResumeRecordResponse.model_validate(record).model_dump())
