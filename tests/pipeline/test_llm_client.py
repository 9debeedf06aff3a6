"""
LLM 客户端测试（使用替身 AsyncOpenAI，不访问网络）
"""
from types import SimpleNamespace

import pytest

from app.core.config import Settings
from app.services.pipeline.errors import AuthConfigError, ServiceUnavailableError
from app.services.pipeline.llm_client import LLMClient, RateLimiter


class StubOpenAI:
    """只实现 LLMClient 用到的两个接口"""

    def __init__(self, content: str = "{}", transcript: str = "hello"):
        self.content = content
        self.transcript = transcript
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._chat))
        self.audio = SimpleNamespace(transcriptions=SimpleNamespace(create=self._transcribe))

    async def _chat(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    async def _transcribe(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(text=f"  {self.transcript}  ")


def _client(stub: StubOpenAI, api_key: str = "test-key") -> LLMClient:
    settings = Settings(_env_file=None, llm_api_key=api_key, llm_rate_limit=1000)
    return LLMClient(settings, client=stub)


@pytest.mark.asyncio
async def test_complete_json_strips_code_fence():
    stub = StubOpenAI(content='```json\n{"experience_level": "mid"}\n```')
    llm = _client(stub)

    data = await llm.complete_json("system", "user")

    assert data == {"experience_level": "mid"}
    assert stub.requests[0]["messages"][0] == {"role": "system", "content": "system"}
    assert stub.requests[0]["model"] == llm.model


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["not json at all", "[1, 2, 3]"])
async def test_complete_json_rejects_non_object(content):
    llm = _client(StubOpenAI(content=content))
    with pytest.raises(ServiceUnavailableError):
        await llm.complete_json("system", "user")


@pytest.mark.asyncio
async def test_transcribe():
    stub = StubOpenAI(transcript="my name is Jane")
    llm = _client(stub)

    text = await llm.transcribe(("intro.mp3", b"ID3"))

    assert text == "my name is Jane"
    assert stub.requests[0]["file"] == ("intro.mp3", b"ID3")
    assert stub.requests[0]["model"] == llm.transcription_model


@pytest.mark.asyncio
async def test_not_configured():
    stub = StubOpenAI()
    llm = _client(stub, api_key="")

    assert not llm.is_configured()
    assert llm.get_status()["api_key_configured"] is False
    with pytest.raises(AuthConfigError) as exc_info:
        await llm.complete_json("system", "user")
    assert not exc_info.value.retryable
    assert stub.requests == []


def test_rate_limiter():
    limiter = RateLimiter(rate=2)
    assert limiter.acquire()
    assert limiter.acquire()
    assert not limiter.acquire()
