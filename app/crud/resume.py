"""
简历记录 CRUD 操作

记录存储只提供单行原子操作：所有状态变更都通过 compare_and_set_status
以一条带条件的 UPDATE 完成，不做多行事务。
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.resume import ResumeRecord
from app.services.pipeline.state import ResumeStatus, SourceType
from .base import CRUDBase


class CRUDResume(CRUDBase[ResumeRecord]):
    """简历记录 CRUD 操作类"""

    async def create_record(
        self,
        db: AsyncSession,
        *,
        source_type: SourceType,
        raw_content_ref: str,
        original_name: Optional[str] = None,
    ) -> ResumeRecord:
        """创建记录，初始状态为 uploaded"""
        return await self.create(db, obj_in={
            "source_type": source_type.value,
            "raw_content_ref": raw_content_ref,
            "original_name": original_name,
            "status": ResumeStatus.UPLOADED.value,
            "retry_count": 0,
        })

    async def compare_and_set_status(
        self,
        db: AsyncSession,
        id: str,
        *,
        expected_status: ResumeStatus,
        new_status: ResumeStatus,
        fields: Optional[Dict[str, Any]] = None,
        claimed_until: Optional[datetime] = None,
        claimed_by: Optional[str] = None,
        expected_claimed_by: Optional[str] = None,
        claim_free_at: Optional[datetime] = None,
        increment_retry: bool = False,
    ) -> bool:
        """
        原子比较并设置状态

        仅当记录当前状态等于 expected_status 时写入 new_status 与 fields；
        claim_free_at 给定时还要求租约为空或已在该时刻前过期；
        expected_claimed_by 给定时要求租约仍由该令牌持有。
        increment_retry 在同一条 UPDATE 中对 retry_count 加一。

        返回是否更新成功（恰好命中一行）。
        """
        conditions = [
            self.model.id == id,
            self.model.status == expected_status.value,
        ]
        if claim_free_at is not None:
            conditions.append(or_(
                self.model.claimed_until.is_(None),
                self.model.claimed_until <= claim_free_at,
            ))
        if expected_claimed_by is not None:
            conditions.append(self.model.claimed_by == expected_claimed_by)

        values: Dict[str, Any] = dict(fields or {})
        values.update(
            status=new_status.value,
            claimed_until=claimed_until,
            claimed_by=claimed_by,
            updated_at=utcnow(),
        )
        if increment_retry:
            values["retry_count"] = self.model.retry_count + 1

        result = await db.execute(
            update(self.model)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_status(
        self,
        db: AsyncSession,
        statuses: Iterable[ResumeStatus],
        *,
        exclude_claimed: bool = True,
        now: Optional[datetime] = None,
        record_id: Optional[str] = None,
        limit: int = 500,
    ) -> List[ResumeRecord]:
        """按状态集合查询记录，默认排除租约未过期的记录"""
        query = select(self.model).where(
            self.model.status.in_([s.value for s in statuses])
        )
        if exclude_claimed:
            now = now or utcnow()
            query = query.where(or_(
                self.model.claimed_until.is_(None),
                self.model.claimed_until <= now,
            ))
        if record_id is not None:
            query = query.where(self.model.id == record_id)
        query = query.order_by(self.model.updated_at.asc()).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def list_records(
        self,
        db: AsyncSession,
        *,
        status: Optional[ResumeStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ResumeRecord]:
        """分页查询记录，可按状态过滤"""
        where = self.model.status == status.value if status else None
        return await self.get_multi(db, skip=skip, limit=limit, where=where)

    async def count_records(
        self,
        db: AsyncSession,
        *,
        status: Optional[ResumeStatus] = None,
    ) -> int:
        where = self.model.status == status.value if status else None
        return await self.count(db, where=where)

    async def count_by_status(self, db: AsyncSession) -> Dict[str, int]:
        """统计各状态记录数"""
        result = await db.execute(
            select(self.model.status, func.count()).group_by(self.model.status)
        )
        return {status: count for status, count in result.all()}


resume_crud = CRUDResume(ResumeRecord)
