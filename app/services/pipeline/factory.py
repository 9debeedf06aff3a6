"""
流水线组装

按配置创建 LLM 客户端、各阶段适配器、编排器、重试协调器和后台处理池。
测试时可传入替身适配器。
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from .confidence import ConfidenceScorer
from .document import ContentLoader
from .enhancement import EnhancementClient
from .extractor import FieldExtractor
from .intake import ResumeIntakeService
from .llm_client import LLMClient
from .orchestrator import PipelineOrchestrator
from .retry import RetryCoordinator
from .transcription import TranscriptionAdapter
from .worker import PipelineWorkerPool, RetrySweepScheduler


@dataclass
class Pipeline:
    """组装好的流水线组件"""
    llm: LLMClient
    loader: ContentLoader
    orchestrator: PipelineOrchestrator
    coordinator: RetryCoordinator
    pool: PipelineWorkerPool
    intake: ResumeIntakeService
    scheduler: RetrySweepScheduler

    async def shutdown(self):
        await self.scheduler.stop()
        await self.pool.shutdown()


def build_pipeline(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    llm: Optional[LLMClient] = None,
    transcriber: Optional[TranscriptionAdapter] = None,
    enhancer: Optional[EnhancementClient] = None,
    scorer: Optional[ConfidenceScorer] = None,
) -> Pipeline:
    llm = llm or LLMClient(settings)
    loader = ContentLoader(settings.upload_dir, settings.audio_max_size_mb)

    orchestrator = PipelineOrchestrator(
        session_factory,
        transcriber=transcriber or TranscriptionAdapter(llm, loader, settings.stage_timeout_seconds),
        extractor=FieldExtractor(settings.skill_vocabulary),
        enhancer=enhancer or EnhancementClient(
            llm,
            timeout=settings.stage_timeout_seconds,
            confidence_floor=settings.confidence_floor,
            scorer=scorer,
        ),
        loader=loader,
        lease_duration=timedelta(seconds=settings.lease_duration_seconds),
    )
    coordinator = RetryCoordinator(orchestrator, max_retries=settings.max_retries)
    pool = PipelineWorkerPool(orchestrator, settings.pipeline_max_workers)

    return Pipeline(
        llm=llm,
        loader=loader,
        orchestrator=orchestrator,
        coordinator=coordinator,
        pool=pool,
        intake=ResumeIntakeService(loader, pool),
        scheduler=RetrySweepScheduler(coordinator, settings.retry_sweep_interval_seconds),
    )
