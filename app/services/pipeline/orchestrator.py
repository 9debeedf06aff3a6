"""
流水线编排器

advance(record_id) 对一条记录执行"下一个"阶段：
1. 以 CAS 把状态从当前值切到处理中标记，同时写入租约（claimed_until + claimed_by 令牌）；
   CAS 失败说明已被其他 worker 占用，直接返回，不产生任何副作用。
2. 执行阶段（转写 / 字段提取 / AI 增强）。
3. 再以 CAS（要求状态仍为处理中标记且令牌仍属于自己）提交结果并释放租约。
   失败时写入结构化错误，并在同一条 UPDATE 中 retry_count + 1。

任何阶段异常都在这里被捕获并转为记录状态，不会向调用方抛出。
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.crud.resume import CRUDResume, resume_crud
from app.models.base import utcnow
from app.models.resume import ResumeRecord
from .document import ContentLoader
from .enhancement import EnhancementClient
from .errors import PermanentParseError, PipelineError, StageError, classify_exception
from .extractor import FieldExtractor, to_parsed_fields
from .state import (
    FAILED_STATUSES,
    STAGE_STATUSES,
    TERMINAL_STATUSES,
    ResumeStatus,
    SourceType,
    Stage,
    next_stage,
)
from .transcription import TranscriptionAdapter


class AdvanceResult(str, Enum):
    """advance 的结果类型"""
    ADVANCED = "advanced"
    FAILED = "failed"
    NOOP = "noop"
    CLAIMED = "claimed"
    NOT_FOUND = "not_found"


@dataclass
class StageOutcome:
    """一次 advance 的结果"""
    record_id: str
    result: AdvanceResult
    stage: Optional[Stage] = None
    status: Optional[ResumeStatus] = None
    error: Optional[StageError] = None
    # process 中成功推进的阶段数
    advanced_steps: int = 0

    @property
    def succeeded(self) -> bool:
        return self.result in (AdvanceResult.ADVANCED, AdvanceResult.NOOP)


class PipelineOrchestrator:
    """
    简历处理编排器

    依赖全部通过构造函数注入，便于测试时替换转写、增强等外部能力。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        transcriber: TranscriptionAdapter,
        extractor: FieldExtractor,
        enhancer: EnhancementClient,
        loader: ContentLoader,
        lease_duration: timedelta,
        store: CRUDResume = resume_crud,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.transcriber = transcriber
        self.extractor = extractor
        self.enhancer = enhancer
        self.loader = loader
        self.lease_duration = lease_duration
        self.store = store
        self.clock = clock

    async def get_record(self, record_id: str) -> Optional[ResumeRecord]:
        async with self.session_factory() as db:
            return await self.store.get(db, record_id)

    async def _cas(self, record_id: str, **kwargs) -> bool:
        async with self.session_factory() as db:
            updated = await self.store.compare_and_set_status(db, record_id, **kwargs)
            await db.commit()
            return updated

    async def advance(self, record_id: str) -> StageOutcome:
        """执行记录的下一个阶段"""
        record = await self.get_record(record_id)
        if record is None:
            return StageOutcome(record_id, AdvanceResult.NOT_FOUND)

        status = ResumeStatus(record.status)
        if status in TERMINAL_STATUSES:
            return StageOutcome(record_id, AdvanceResult.NOOP, status=status)

        stage = next_stage(status, SourceType(record.source_type))
        if stage is None:
            return StageOutcome(record_id, AdvanceResult.NOOP, status=status)
        marker, success_status, failed_status = STAGE_STATUSES[stage]

        # 1. 抢占租约
        token = uuid.uuid4().hex
        now = self.clock()
        claim_fields: Dict[str, Any] = {}
        if status in FAILED_STATUSES:
            claim_fields["last_retry_at"] = now
        claimed = await self._cas(
            record_id,
            expected_status=status,
            new_status=marker,
            fields=claim_fields,
            claimed_until=now + self.lease_duration,
            claimed_by=token,
            claim_free_at=now,
        )
        if not claimed:
            logger.debug("简历 {} 已被其他 worker 占用，跳过 {}", record_id, stage.value)
            return StageOutcome(record_id, AdvanceResult.CLAIMED, stage=stage, status=status)

        logger.info("简历 {} {} -> {}", record_id, status.value, marker.value)

        # 2. 执行阶段
        try:
            result_fields = await self._run_stage(stage, record)
        except Exception as exc:
            error = classify_exception(exc)
            if not isinstance(exc, PipelineError):
                logger.exception("简历 {} 阶段 {} 出现未预期异常", record_id, stage.value)
            return await self._commit_failure(record_id, stage, token, error)

        # 3. 提交结果并释放租约
        committed = await self._cas(
            record_id,
            expected_status=marker,
            new_status=success_status,
            fields=result_fields,
            claimed_until=None,
            claimed_by=None,
            expected_claimed_by=token,
        )
        if not committed:
            logger.warning("简历 {} 租约已失效，丢弃 {} 阶段结果", record_id, stage.value)
            return StageOutcome(record_id, AdvanceResult.CLAIMED, stage=stage, status=marker)

        logger.info("简历 {} {} -> {}", record_id, marker.value, success_status.value)
        return StageOutcome(record_id, AdvanceResult.ADVANCED, stage=stage, status=success_status)

    async def _commit_failure(
        self,
        record_id: str,
        stage: Stage,
        token: str,
        error: PipelineError,
    ) -> StageOutcome:
        marker, _, failed_status = STAGE_STATUSES[stage]
        stage_error = error.to_stage_error(stage=stage, occurred_at=self.clock())
        committed = await self._cas(
            record_id,
            expected_status=marker,
            new_status=failed_status,
            fields={"last_error": stage_error.model_dump(mode="json")},
            claimed_until=None,
            claimed_by=None,
            expected_claimed_by=token,
            increment_retry=True,
        )
        if not committed:
            logger.warning("简历 {} 租约已失效，未记录 {} 阶段失败", record_id, stage.value)
            return StageOutcome(record_id, AdvanceResult.CLAIMED, stage=stage, status=marker, error=stage_error)

        logger.warning(
            "简历 {} {} 阶段失败: kind={}, retryable={}, message={}",
            record_id, stage.value, error.kind.value, error.retryable, error.message,
        )
        return StageOutcome(record_id, AdvanceResult.FAILED, stage=stage, status=failed_status, error=stage_error)

    async def _source_text(self, record: ResumeRecord) -> str:
        if record.source_type == SourceType.VOICE.value:
            text = (record.transcription or {}).get("text")
            if text is None:
                raise PermanentParseError("语音简历缺少转写文本")
            return text
        return await self.loader.load_text(record.raw_content_ref)

    async def _run_stage(self, stage: Stage, record: ResumeRecord) -> Dict[str, Any]:
        """执行单个阶段，返回需要写入记录的字段"""
        if stage == Stage.TRANSCRIPTION:
            transcription = await self.transcriber.transcribe(record.raw_content_ref)
            return {"transcription": transcription.model_dump(mode="json")}

        if stage == Stage.PARSING:
            text = await self._source_text(record)
            fields, confidences = self.extractor.extract(text)
            return {"parsed_fields": to_parsed_fields(fields, confidences)}

        text = await self._source_text(record)
        quality = (record.transcription or {}).get("quality_score")
        enhancement = await self.enhancer.enhance(
            record.parsed_fields or {},
            text,
            transcription_quality=quality,
        )
        return {"enhancement": enhancement.model_dump(mode="json")}

    async def process(self, record_id: str, max_steps: int = len(Stage) + 1) -> StageOutcome:
        """
        连续推进记录，直到完成、失败或被其他 worker 占用

        返回最后一次有意义的结果；记录原本已完成时返回 NOOP。
        结果的 advanced_steps 为本次调用中成功推进的阶段数。
        """
        last: Optional[StageOutcome] = None
        steps = 0
        for _ in range(max_steps):
            outcome = await self.advance(record_id)
            if outcome.result != AdvanceResult.ADVANCED:
                if outcome.result == AdvanceResult.NOOP and last is not None:
                    outcome = last
                break
            steps += 1
            last = outcome
            if outcome.status in TERMINAL_STATUSES:
                break
        outcome.advanced_steps = steps
        return outcome
