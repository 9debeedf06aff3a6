"""
简历接收

校验上传内容、创建记录并交给后台处理池。
"""
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestException
from app.crud.resume import CRUDResume, resume_crud
from app.models.resume import ResumeRecord
from .document import ContentLoader
from .errors import InputValidationError
from .state import SourceType
from .worker import PipelineWorkerPool


class ResumeIntakeService:
    """上传入口"""

    def __init__(
        self,
        loader: ContentLoader,
        pool: Optional[PipelineWorkerPool],
        store: CRUDResume = resume_crud,
    ):
        self.loader = loader
        self.pool = pool
        self.store = store

    async def upload(
        self,
        db: AsyncSession,
        *,
        source_type: SourceType,
        raw_content_ref: str,
        original_name: Optional[str] = None,
    ) -> ResumeRecord:
        """
        接收一份简历

        文件不存在或格式与来源类型不符时直接拒绝，不创建记录。
        记录提交后才调度处理，避免 worker 读不到未提交的行。
        """
        try:
            self.loader.validate(raw_content_ref, source_type)
        except InputValidationError as exc:
            raise BadRequestException(exc.message, data={"kind": exc.kind.value})

        record = await self.store.create_record(
            db,
            source_type=source_type,
            raw_content_ref=raw_content_ref,
            original_name=original_name,
        )
        await db.commit()
        logger.info("简历已接收: id={}, source_type={}, ref={}", record.id, source_type.value, raw_content_ref)

        if self.pool is not None:
            self.pool.submit(record.id)
        return record
