"""
重试协调器

扫描失败（以及租约过期的处理中）记录，按策略重新交给编排器处理。
协调器自身从不直接修改记录，互斥完全依赖编排器的租约协议，
因此可以与自身以及正常上传流程并发运行。
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from loguru import logger

from app.models.resume import ResumeRecord
from .orchestrator import AdvanceResult, PipelineOrchestrator
from .state import FAILED_STATUSES, IN_PROGRESS_STATUSES, ResumeStatus


class RetryOutcome(str, Enum):
    """单条记录的重试结果"""
    RETRIED_SUCCESS = "retried-success"
    RETRIED_FAILED = "retried-failed"
    SKIPPED_MAX_RETRIES = "skipped-max-retries"
    SKIPPED_NON_RETRYABLE = "skipped-non-retryable"
    SKIPPED_CLAIMED = "skipped-claimed"


SKIPPED_OUTCOMES = frozenset({
    RetryOutcome.SKIPPED_MAX_RETRIES,
    RetryOutcome.SKIPPED_NON_RETRYABLE,
    RetryOutcome.SKIPPED_CLAIMED,
})


@dataclass
class RetryItem:
    record_id: str
    outcome: RetryOutcome
    previous_status: str
    status: Optional[str] = None
    retry_count: int = 0
    message: Optional[str] = None


@dataclass
class SweepReport:
    """一次扫描的结果汇总"""
    items: List[RetryItem] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in RetryOutcome}
        for item in self.items:
            counts[item.outcome.value] += 1
        return counts

    def to_dict(self) -> dict:
        return {
            "processed": len(self.items),
            "summary": self.summary,
            "results": [
                {
                    "resume_id": item.record_id,
                    "outcome": item.outcome.value,
                    "previous_status": item.previous_status,
                    "status": item.status,
                    "retry_count": item.retry_count,
                    "message": item.message,
                }
                for item in self.items
            ],
        }


class RetryCoordinator:
    """失败记录重试协调器"""

    def __init__(self, orchestrator: PipelineOrchestrator, max_retries: int = 3):
        self.orchestrator = orchestrator
        self.max_retries = max_retries

    async def _candidates(self, record_id: Optional[str]) -> List[ResumeRecord]:
        statuses = set(FAILED_STATUSES) | set(IN_PROGRESS_STATUSES)
        async with self.orchestrator.session_factory() as db:
            return await self.orchestrator.store.list_by_status(
                db,
                statuses,
                exclude_claimed=True,
                now=self.orchestrator.clock(),
                record_id=record_id,
            )

    def _skip_reason(self, record: ResumeRecord) -> Optional[RetryItem]:
        if ResumeStatus(record.status) not in FAILED_STATUSES:
            # 处理中但租约已过期：worker 崩溃，不计入失败次数，直接回收
            return None
        last_error = record.last_error or {}
        if last_error and not last_error.get("retryable", True):
            return RetryItem(
                record_id=record.id,
                outcome=RetryOutcome.SKIPPED_NON_RETRYABLE,
                previous_status=record.status,
                status=record.status,
                retry_count=record.retry_count,
                message=f"{last_error.get('kind')}: {last_error.get('message')}",
            )
        if record.retry_count >= self.max_retries:
            return RetryItem(
                record_id=record.id,
                outcome=RetryOutcome.SKIPPED_MAX_RETRIES,
                previous_status=record.status,
                status=record.status,
                retry_count=record.retry_count,
                message="已达到最大重试次数，需要人工处理",
            )
        return None

    async def sweep(self, record_id: Optional[str] = None) -> SweepReport:
        """
        扫描并重试

        参数:
            record_id: 仅处理指定记录；为空时处理全部符合条件的记录
        """
        report = SweepReport()
        for record in await self._candidates(record_id):
            skipped = self._skip_reason(record)
            if skipped is not None:
                logger.info("跳过简历 {}: {}", record.id, skipped.outcome.value)
                report.items.append(skipped)
                continue

            try:
                item = await self._retry(record)
            except Exception as exc:
                # 单条记录的存储异常不影响本轮其余记录
                logger.exception("重试简历 {} 时出现异常", record.id)
                item = RetryItem(
                    record_id=record.id,
                    outcome=RetryOutcome.RETRIED_FAILED,
                    previous_status=record.status,
                    retry_count=record.retry_count,
                    message=f"{type(exc).__name__}: {exc}",
                )
            report.items.append(item)

        if report.items:
            logger.info("重试扫描完成: {}", report.summary)
        return report

    async def _retry(self, record: ResumeRecord) -> RetryItem:
        outcome = await self.orchestrator.process(record.id)
        current = await self.orchestrator.get_record(record.id)
        if outcome.result in (AdvanceResult.CLAIMED, AdvanceResult.NOOP):
            # 重试阶段已提交，后续阶段被其他 worker 接手，仍算重试成功；
            # 一步都未推进则说明列出之后已被其他 worker 领取或处理完成
            result = RetryOutcome.RETRIED_SUCCESS if outcome.advanced_steps else RetryOutcome.SKIPPED_CLAIMED
        elif outcome.succeeded:
            result = RetryOutcome.RETRIED_SUCCESS
        else:
            result = RetryOutcome.RETRIED_FAILED

        logger.info("重试简历 {}: {} ({} -> {})", record.id, result.value, record.status,
                    current.status if current else None)
        return RetryItem(
            record_id=record.id,
            outcome=result,
            previous_status=record.status,
            status=current.status if current else None,
            retry_count=current.retry_count if current else record.retry_count,
            message=outcome.error.message if outcome.error else None,
        )
