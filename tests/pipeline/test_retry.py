"""
重试协调器与后台处理池测试
"""
import asyncio
from datetime import timedelta

import pytest

from app.crud import resume_crud
from app.models.base import utcnow
from app.services.pipeline.factory import Pipeline
from app.services.pipeline.retry import RetryOutcome
from app.services.pipeline.state import ResumeStatus
from app.services.pipeline.worker import RetrySweepScheduler
from tests.conftest import DataFactory, FakeLLM


@pytest.mark.asyncio
async def test_retry_after_transcription_timeout(pipeline: Pipeline, factory: DataFactory, fake_llm: FakeLLM):
    """转写超时后重试成功：一路推进到 enhanced，retry_count 保持 1"""
    record = await factory.create_record("voice")
    fake_llm.transcribe_delay = 2.0
    await pipeline.orchestrator.process(record.id)
    fake_llm.transcribe_delay = 0.0

    report = await pipeline.coordinator.sweep()

    assert len(report.items) == 1
    item = report.items[0]
    assert item.outcome == RetryOutcome.RETRIED_SUCCESS
    assert item.previous_status == ResumeStatus.TRANSCRIPTION_FAILED.value
    assert item.status == ResumeStatus.ENHANCED.value
    stored = await pipeline.orchestrator.get_record(record.id)
    assert stored.status == ResumeStatus.ENHANCED.value
    assert stored.retry_count == 1
    assert stored.last_retry_at is not None


@pytest.mark.asyncio
async def test_max_retries(pipeline: Pipeline, factory: DataFactory, fake_llm: FakeLLM):
    """连续三次增强失败后，第四次扫描跳过且不再调用外部服务"""
    record = await factory.create_record("document")
    await pipeline.orchestrator.advance(record.id)  # -> parsed
    fake_llm.enhance_errors.extend(ConnectionResetError("reset") for _ in range(3))

    await pipeline.orchestrator.process(record.id)
    first = await pipeline.coordinator.sweep()
    second = await pipeline.coordinator.sweep()
    assert [i.outcome for i in first.items + second.items] == [RetryOutcome.RETRIED_FAILED] * 2

    stored = await pipeline.orchestrator.get_record(record.id)
    assert stored.status == ResumeStatus.ENHANCEMENT_FAILED.value
    assert stored.retry_count == 3
    calls = fake_llm.enhance_calls

    fourth = await pipeline.coordinator.sweep()

    assert [i.outcome for i in fourth.items] == [RetryOutcome.SKIPPED_MAX_RETRIES]
    assert fourth.summary[RetryOutcome.SKIPPED_MAX_RETRIES.value] == 1
    assert fake_llm.enhance_calls == calls
    assert (await pipeline.orchestrator.get_record(record.id)).retry_count == 3


@pytest.mark.asyncio
async def test_non_retryable_skipped(pipeline: Pipeline, factory: DataFactory):
    ref = factory.write_bytes(b"\xff\xfe\x00\x81\x90", ".txt")
    record = await factory.create_record("document", ref=ref)
    await pipeline.orchestrator.process(record.id)

    report = await pipeline.coordinator.sweep()

    assert [i.outcome for i in report.items] == [RetryOutcome.SKIPPED_NON_RETRYABLE]
    assert "PermanentParseError" in report.items[0].message
    stored = await pipeline.orchestrator.get_record(record.id)
    assert stored.status == ResumeStatus.PARSING_FAILED.value
    assert stored.retry_count == 1


@pytest.mark.asyncio
async def test_sweep_single_record(pipeline: Pipeline, factory: DataFactory, fake_llm: FakeLLM):
    first = await factory.create_record("voice")
    second = await factory.create_record("voice")
    fake_llm.transcribe_errors.extend([ConnectionResetError("reset"), ConnectionResetError("reset")])
    await pipeline.orchestrator.process(first.id)
    await pipeline.orchestrator.process(second.id)

    report = await pipeline.coordinator.sweep(second.id)

    assert [i.record_id for i in report.items] == [second.id]
    assert (await pipeline.orchestrator.get_record(first.id)).status == ResumeStatus.TRANSCRIPTION_FAILED.value
    assert (await pipeline.orchestrator.get_record(second.id)).status == ResumeStatus.ENHANCED.value


@pytest.mark.asyncio
async def test_sweep_ignores_healthy_records(pipeline: Pipeline, factory: DataFactory):
    record = await factory.create_record("document")
    await pipeline.orchestrator.process(record.id)
    await factory.create_record("document")  # uploaded，由处理池负责

    report = await pipeline.coordinator.sweep()

    assert report.items == []
    assert report.to_dict()["processed"] == 0


@pytest.mark.asyncio
async def test_sweep_reclaims_expired_lease(pipeline: Pipeline, factory: DataFactory, session_factory):
    """worker 崩溃遗留的处理中记录在租约过期后被回收，不计失败次数"""
    record = await factory.create_record("document")
    async with session_factory() as db:
        await resume_crud.compare_and_set_status(
            db,
            record.id,
            expected_status=ResumeStatus.UPLOADED,
            new_status=ResumeStatus.PARSING,
            claimed_until=utcnow() - timedelta(seconds=1),
            claimed_by="crashed-worker",
        )
        await db.commit()

    report = await pipeline.coordinator.sweep()

    assert [i.outcome for i in report.items] == [RetryOutcome.RETRIED_SUCCESS]
    stored = await pipeline.orchestrator.get_record(record.id)
    assert stored.status == ResumeStatus.ENHANCED.value
    assert stored.retry_count == 0


@pytest.mark.asyncio
async def test_sweep_skips_active_lease(pipeline: Pipeline, factory: DataFactory, session_factory):
    record = await factory.create_record("document")
    async with session_factory() as db:
        await resume_crud.compare_and_set_status(
            db,
            record.id,
            expected_status=ResumeStatus.UPLOADED,
            new_status=ResumeStatus.PARSING,
            claimed_until=utcnow() + timedelta(minutes=5),
            claimed_by="busy-worker",
        )
        await db.commit()

    report = await pipeline.coordinator.sweep()

    assert report.items == []


@pytest.mark.asyncio
async def test_concurrent_sweeps(pipeline: Pipeline, factory: DataFactory, fake_llm: FakeLLM):
    """两个扫描同时运行，每条记录只被处理一次"""
    record = await factory.create_record("document")
    await pipeline.orchestrator.advance(record.id)  # -> parsed
    fake_llm.enhance_errors.append(ConnectionResetError("reset"))
    await pipeline.orchestrator.advance(record.id)  # -> enhancement_failed
    fake_llm.enhance_delay = 0.2
    calls = fake_llm.enhance_calls

    reports = await asyncio.gather(pipeline.coordinator.sweep(), pipeline.coordinator.sweep())

    outcomes = sorted(i.outcome.value for r in reports for i in r.items)
    assert RetryOutcome.RETRIED_SUCCESS.value in outcomes
    assert outcomes.count(RetryOutcome.RETRIED_SUCCESS.value) == 1
    assert fake_llm.enhance_calls == calls + 1
    stored = await pipeline.orchestrator.get_record(record.id)
    assert stored.status == ResumeStatus.ENHANCED.value
    assert stored.retry_count == 1


@pytest.mark.asyncio
async def test_retry_counts_as_success_when_next_stage_taken(
    pipeline: Pipeline,
    factory: DataFactory,
    fake_llm: FakeLLM,
    session_factory,
    monkeypatch,
):
    """重试的转写阶段已提交，下一阶段被其他 worker 抢走：仍报告 retried-success"""
    record = await factory.create_record("voice")
    fake_llm.transcribe_errors.append(ConnectionResetError("reset"))
    await pipeline.orchestrator.process(record.id)

    advance = pipeline.orchestrator.advance

    async def advance_then_taken(record_id):
        outcome = await advance(record_id)
        if outcome.status == ResumeStatus.TRANSCRIBED:
            async with session_factory() as db:
                await resume_crud.compare_and_set_status(
                    db,
                    record_id,
                    expected_status=ResumeStatus.TRANSCRIBED,
                    new_status=ResumeStatus.PARSING,
                    claimed_until=utcnow() + timedelta(minutes=5),
                    claimed_by="other-worker",
                )
                await db.commit()
        return outcome

    monkeypatch.setattr(pipeline.orchestrator, "advance", advance_then_taken)

    report = await pipeline.coordinator.sweep()

    assert [i.outcome for i in report.items] == [RetryOutcome.RETRIED_SUCCESS]
    assert report.items[0].status == ResumeStatus.PARSING.value


@pytest.mark.asyncio
async def test_sweep_continues_after_store_error(
    pipeline: Pipeline,
    factory: DataFactory,
    fake_llm: FakeLLM,
    monkeypatch,
):
    """单条记录处理时抛出存储异常，其余记录照常重试"""
    broken = await factory.create_record("document")
    healthy = await factory.create_record("document")
    for record in (broken, healthy):
        await pipeline.orchestrator.advance(record.id)  # -> parsed
        fake_llm.enhance_errors.append(ConnectionResetError("reset"))
        await pipeline.orchestrator.advance(record.id)  # -> enhancement_failed

    process = pipeline.orchestrator.process

    async def process_or_fail(record_id, *args, **kwargs):
        if record_id == broken.id:
            raise RuntimeError("database is locked")
        return await process(record_id, *args, **kwargs)

    monkeypatch.setattr(pipeline.orchestrator, "process", process_or_fail)

    report = await pipeline.coordinator.sweep()

    outcomes = {i.record_id: i for i in report.items}
    assert outcomes[broken.id].outcome == RetryOutcome.RETRIED_FAILED
    assert "database is locked" in outcomes[broken.id].message
    assert outcomes[healthy.id].outcome == RetryOutcome.RETRIED_SUCCESS
    stored = await pipeline.orchestrator.get_record(healthy.id)
    assert stored.status == ResumeStatus.ENHANCED.value


# ========== 后台处理池 ==========

@pytest.mark.asyncio
async def test_worker_pool_processes_submitted(pipeline: Pipeline, factory: DataFactory):
    records = [await factory.create_record("document") for _ in range(3)]
    for record in records:
        pipeline.pool.submit(record.id)

    await pipeline.pool.drain()

    for record in records:
        stored = await pipeline.orchestrator.get_record(record.id)
        assert stored.status == ResumeStatus.ENHANCED.value
    assert pipeline.pool.get_status()["pending_tasks"] == 0


@pytest.mark.asyncio
async def test_sweep_scheduler_runs_periodically(pipeline: Pipeline, factory: DataFactory, fake_llm: FakeLLM):
    record = await factory.create_record("voice")
    fake_llm.transcribe_errors.append(ConnectionResetError("reset"))
    await pipeline.orchestrator.process(record.id)

    scheduler = RetrySweepScheduler(pipeline.coordinator, interval_seconds=0.05)
    scheduler.start()
    try:
        for _ in range(50):
            stored = await pipeline.orchestrator.get_record(record.id)
            if stored.status == ResumeStatus.ENHANCED.value:
                break
            await asyncio.sleep(0.05)
    finally:
        await scheduler.stop()

    assert stored.status == ResumeStatus.ENHANCED.value


@pytest.mark.asyncio
async def test_scheduler_disabled_when_interval_zero(pipeline: Pipeline):
    scheduler = RetrySweepScheduler(pipeline.coordinator, interval_seconds=0)
    scheduler.start()
    assert scheduler._task is None
