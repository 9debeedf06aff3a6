"""
后台处理 worker 池与定时重试扫描
"""
import asyncio
from typing import Any, Dict, Optional, Set

from loguru import logger

from .orchestrator import PipelineOrchestrator, StageOutcome
from .retry import RetryCoordinator


class PipelineWorkerPool:
    """
    有界的后台处理池

    同时处理的记录数受信号量限制；同一记录的互斥由编排器的租约保证，
    这里不做任何全局锁。
    """

    def __init__(self, orchestrator: PipelineOrchestrator, max_workers: int):
        self.orchestrator = orchestrator
        self.max_workers = max_workers
        self._semaphore = asyncio.Semaphore(max_workers)
        self._tasks: Set[asyncio.Task] = set()

    async def _run(self, record_id: str) -> Optional[StageOutcome]:
        async with self._semaphore:
            try:
                return await self.orchestrator.process(record_id)
            except Exception:
                # 编排器已吞掉阶段异常，这里只会是存储层故障；租约到期后由重试扫描回收
                logger.exception("简历 {} 后台处理异常", record_id)
                return None

    def submit(self, record_id: str) -> asyncio.Task:
        """提交记录到后台处理"""
        task = asyncio.create_task(self._run(record_id), name=f"resume-{record_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self):
        """等待所有已提交任务完成"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self):
        """取消未完成任务；被中断的记录租约到期后可被重新领取"""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_status(self) -> Dict[str, Any]:
        return {
            "max_workers": self.max_workers,
            "pending_tasks": len(self._tasks),
        }


class RetrySweepScheduler:
    """按固定间隔执行重试扫描"""

    def __init__(self, coordinator: RetryCoordinator, interval_seconds: float):
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.coordinator.sweep()
            except Exception:
                logger.exception("定时重试扫描失败")

    def start(self):
        if self.interval_seconds <= 0 or self._task is not None:
            return
        logger.info("启动定时重试扫描: 间隔 {}s", self.interval_seconds)
        self._task = asyncio.create_task(self._loop(), name="retry-sweep")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
