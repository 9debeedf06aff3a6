"""
统一的外部模型客户端封装（OpenAI 兼容接口）。

转写与增强两个阶段共用同一个客户端，共享并发控制与速率限制。
"""
import asyncio
import json
import time
from typing import Dict, List, Any, Optional, Tuple
from openai import AsyncOpenAI
from threading import Lock
from loguru import logger

from app.core.config import Settings
from .errors import AuthConfigError, ServiceUnavailableError


class RateLimiter:
    """简单的速率限制器（令牌桶算法）。"""

    def __init__(self, rate: int):
        self.rate = rate
        self.tokens = rate
        self.last_update = time.time()
        self._lock = Lock()

    def acquire(self) -> bool:
        with self._lock:
            now = time.time()
            elapsed = now - self.last_update
            self.tokens = min(self.rate, self.tokens + elapsed * (self.rate / 60.0))
            self.last_update = now
            if self.tokens >= 1:
                self.tokens -= 1
                return True
            return False

    async def wait_and_acquire(self):
        while not self.acquire():
            await asyncio.sleep(0.1)


class ConcurrencyLimiter:
    """并发限制器。"""

    def __init__(self, max_concurrency: int):
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def __aenter__(self):
        await self._semaphore.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._semaphore.release()


class LLMClient:
    """
    外部模型客户端，提供并发控制、速率限制、JSON 解析和语音转写。

    异常原样抛出，由调用方（阶段适配器）负责分类。
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.model = settings.llm_model
        self.transcription_model = settings.transcription_model
        self.api_key = settings.llm_api_key
        self.base_url = settings.llm_base_url
        self.temperature = settings.llm_temperature
        self.timeout = settings.llm_timeout

        self._client = client or AsyncOpenAI(
            api_key=self.api_key or "unset",
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

        self._rate_limiter = RateLimiter(settings.llm_rate_limit)
        self._concurrency_limiter = ConcurrencyLimiter(settings.llm_max_concurrency)
        logger.info(
            "LLMClient initialized: model={}, max_concurrency={}, rate_limit={}/min",
            self.model,
            settings.llm_max_concurrency,
            settings.llm_rate_limit,
        )

    def is_configured(self) -> bool:
        """检查 API Key 是否已配置。"""
        return bool(self.api_key) and self.api_key != "your-api-key-here"

    def _ensure_configured(self):
        if not self.is_configured():
            raise AuthConfigError("LLM_API_KEY 未配置")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        """解析 JSON 响应，兼容 markdown 代码块。"""
        text = content.strip()
        if text.startswith("```json"):
            text = text[7:]
        elif text.startswith("```"):
            text = text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.error("JSON 解析失败: {}\n原始内容: {}", exc, text[:500])
            raise ServiceUnavailableError(f"模型返回的结果不是有效的 JSON: {exc}")
        if not isinstance(data, dict):
            raise ServiceUnavailableError("模型返回的 JSON 不是对象")
        return data

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
    ) -> str:
        """发送聊天请求并返回文本响应。"""
        self._ensure_configured()
        await self._rate_limiter.wait_and_acquire()

        async with self._concurrency_limiter:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature if temperature is not None else self.temperature,
            )
        if not response or not response.choices:
            raise ServiceUnavailableError("模型返回空响应")
        content = response.choices[0].message.content
        if content is None:
            raise ServiceUnavailableError("模型返回内容为空")
        return content.strip()

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """发送 system + user 消息并返回解析后的 JSON。"""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        content = await self.chat(messages, temperature)
        return self._parse_json(content)

    async def transcribe(self, audio: Tuple[str, bytes]) -> str:
        """
        调用语音转写接口。

        参数:
            audio: (文件名, 音频字节)，文件名用于服务端识别格式
        """
        self._ensure_configured()
        await self._rate_limiter.wait_and_acquire()

        async with self._concurrency_limiter:
            response = await self._client.audio.transcriptions.create(
                model=self.transcription_model,
                file=audio,
            )
        text = getattr(response, "text", None)
        if text is None and isinstance(response, str):
            text = response
        if text is None:
            raise ServiceUnavailableError("转写接口返回格式异常")
        return text.strip()

    def get_status(self) -> Dict[str, Any]:
        """获取当前配置状态。"""
        return {
            "model": self.model,
            "transcription_model": self.transcription_model,
            "base_url": self.base_url,
            "api_key_configured": self.is_configured(),
            "timeout": self.timeout,
        }
