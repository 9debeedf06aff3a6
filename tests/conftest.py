"""
测试配置文件

提供测试用的 fixtures：独立的文件数据库、替身 LLM、流水线、测试客户端、测试数据工厂等
"""
import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

import app.models  # noqa: F401  注册表模型
from app.core.config import Settings
from app.core.database import get_db
from app.crud import resume_crud
from app.main import create_app
from app.services.pipeline.factory import Pipeline, build_pipeline
from app.services.pipeline.state import SourceType


SAMPLE_RESUME = """Jane Doe
jane.doe@example.com | (555) 123-4567

Summary
Senior Software Engineer with 7 years of experience building data platforms.

Skills
Python, FastAPI, PostgreSQL, Docker, Kubernetes, Leadership

Experience
Senior Software Engineer, Acme Corp (2019 - present)
Built event pipelines on Kafka and AWS.

Education
B.Sc. Computer Science, State University
"""

SAMPLE_TRANSCRIPT = (
    "Hi, my name is John Smith and my email is john.smith@example.com. "
    "I am a backend developer with 4 years of experience. "
    "I work mostly with Python, Django and Redis, and I deploy with Docker on AWS. "
    "I have a bachelor degree in computer science."
)

SAMPLE_ENHANCEMENT = {
    "categorized_skills": {
        "programming_languages": ["Python"],
        "frameworks": ["FastAPI", "Django"],
        "databases": ["PostgreSQL", "Redis"],
        "cloud_devops": ["Docker", "Kubernetes", "AWS"],
    },
    "experience_level": "senior",
    "industry_classification": "software",
}


# ========== 替身 LLM ==========

class FakeLLM:
    """
    替代 LLMClient 的外部服务替身

    *_errors 中的异常按顺序在下一次调用时抛出；*_delay 模拟慢调用。
    """

    def __init__(
        self,
        transcript: str = SAMPLE_TRANSCRIPT,
        response: Optional[Dict[str, Any]] = None,
    ):
        self.transcript = transcript
        self.response = response if response is not None else dict(SAMPLE_ENHANCEMENT)
        self.transcribe_errors: List[BaseException] = []
        self.enhance_errors: List[BaseException] = []
        self.transcribe_delay = 0.0
        self.enhance_delay = 0.0
        self.transcribe_calls = 0
        self.enhance_calls = 0

    def is_configured(self) -> bool:
        return True

    async def transcribe(self, audio: Tuple[str, bytes]) -> str:
        self.transcribe_calls += 1
        if self.transcribe_delay:
            await asyncio.sleep(self.transcribe_delay)
        if self.transcribe_errors:
            raise self.transcribe_errors.pop(0)
        return self.transcript

    async def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        self.enhance_calls += 1
        if self.enhance_delay:
            await asyncio.sleep(self.enhance_delay)
        if self.enhance_errors:
            raise self.enhance_errors.pop(0)
        return self.response

    def get_status(self) -> Dict[str, Any]:
        return {"model": "fake", "api_key_configured": True}


# ========== 基础 fixtures ==========

@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(tmp_path: Path, upload_dir: Path) -> Settings:
    """
    每个测试独立的配置

    使用文件数据库而不是 :memory:，并发领取测试需要多个真实连接
    """
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        upload_dir=str(upload_dir),
        llm_api_key="test-key",
        stage_timeout_seconds=0.5,
        lease_duration_seconds=300,
        max_retries=3,
        pipeline_max_workers=2,
        retry_sweep_interval_seconds=0,
    )


@pytest_asyncio.fixture
async def session_factory(test_settings: Settings) -> AsyncGenerator[async_sessionmaker, None]:
    """建表并提供会话工厂，测试结束后释放引擎"""
    engine = create_async_engine(test_settings.database_url, echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest_asyncio.fixture
async def pipeline(
    test_settings: Settings,
    session_factory: async_sessionmaker,
    fake_llm: FakeLLM,
) -> AsyncGenerator[Pipeline, None]:
    """使用替身 LLM 的完整流水线"""
    pipeline = build_pipeline(test_settings, session_factory, llm=fake_llm)
    yield pipeline
    await pipeline.shutdown()


@pytest_asyncio.fixture
async def client(
    pipeline: Pipeline,
    session_factory: async_sessionmaker,
) -> AsyncGenerator[AsyncClient, None]:
    """
    提供测试用的 HTTP 客户端

    覆盖 get_db 依赖并挂载测试流水线（ASGITransport 不触发 lifespan）
    """
    app = create_app()
    app.state.pipeline = pipeline

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ========== 测试数据工厂 ==========

@dataclass
class DataFactory:
    """
    测试数据工厂类

    集中管理上传文件和记录的创建，避免各测试文件重复代码
    """
    upload_dir: Path
    pipeline: Pipeline
    session_factory: async_sessionmaker
    client: Optional[AsyncClient] = None
    _counter: int = field(default=0, repr=False)

    def _next_id(self) -> str:
        """生成唯一后缀，避免文件名冲突"""
        self._counter += 1
        return str(self._counter)

    def write_document(self, content: str = SAMPLE_RESUME, suffix: str = ".txt") -> str:
        """写入文档文件，返回 raw_content_ref"""
        name = f"resume_{self._next_id()}{suffix}"
        (self.upload_dir / name).write_text(content, encoding="utf-8")
        return name

    def write_bytes(self, data: bytes, suffix: str) -> str:
        name = f"upload_{self._next_id()}{suffix}"
        (self.upload_dir / name).write_bytes(data)
        return name

    def write_audio(self, suffix: str = ".mp3") -> str:
        return self.write_bytes(b"ID3fake-audio-payload", suffix)

    async def create_record(self, source_type: str = "document", ref: Optional[str] = None):
        """直接写入记录（不调度后台处理）"""
        source = SourceType(source_type)
        if ref is None:
            ref = self.write_audio() if source == SourceType.VOICE else self.write_document()
        async with self.session_factory() as db:
            record = await resume_crud.create_record(
                db,
                source_type=source,
                raw_content_ref=ref,
                original_name=ref,
            )
            await db.commit()
            return record

    async def upload(self, source_type: str = "document", ref: Optional[str] = None, **overrides) -> dict:
        """通过 HTTP 上传，返回响应数据"""
        assert self.client is not None
        if ref is None:
            ref = self.write_audio() if source_type == "voice" else self.write_document()
        data = {"source_type": source_type, "raw_content_ref": ref, **overrides}
        resp = await self.client.post("/api/v1/resumes", json=data)
        assert resp.status_code == 200, f"上传简历失败: {resp.text}"
        return resp.json()["data"]


@pytest.fixture
def factory(
    upload_dir: Path,
    pipeline: Pipeline,
    session_factory: async_sessionmaker,
) -> DataFactory:
    """提供测试数据工厂实例（不带 HTTP 客户端）"""
    return DataFactory(upload_dir=upload_dir, pipeline=pipeline, session_factory=session_factory)


@pytest.fixture
def api_factory(factory: DataFactory, client: AsyncClient) -> DataFactory:
    """带 HTTP 客户端的测试数据工厂"""
    factory.client = client
    return factory
