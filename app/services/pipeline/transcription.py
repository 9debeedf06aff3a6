"""
语音转写适配器

音频引用 -> 文本 + 质量元数据。外部调用带截止时间，失败统一分类为 PipelineError。
"""
import asyncio
import re
import time

from loguru import logger

from app.models.base import utcnow
from app.models.resume import TranscriptionResult
from .document import ContentLoader
from .errors import classify_exception
from .llm_client import LLMClient

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_PHONE_RE = re.compile(r"\d{3}[-.\s]?\d{3}[-.\s]?\d{4}")
_REPETITION_RE = re.compile(r"\b(\w+)\b(?:\s+\1\b){2,}", re.IGNORECASE)


def assess_quality(text: str) -> float:
    """
    根据文本特征估计转写质量，返回 [0,1]

    过短、同词连续重复、平均词长异常都视为音频质量问题。
    """
    words = text.split()
    if not words:
        return 0.0

    if len(words) < 50:
        score = 0.4
    elif len(words) < 100:
        score = 0.7
    else:
        score = 0.9

    avg_word_length = len(text) / len(words)
    if _REPETITION_RE.search(text) or avg_word_length > 15 or avg_word_length < 2:
        score = min(score, 0.3)

    if _EMAIL_RE.search(text):
        score += 0.05
    if _PHONE_RE.search(text):
        score += 0.05
    return round(max(0.0, min(1.0, score)), 3)


class TranscriptionAdapter:
    """语音转写服务适配器"""

    def __init__(self, llm: LLMClient, loader: ContentLoader, timeout: float):
        self.llm = llm
        self.loader = loader
        self.timeout = timeout

    async def transcribe(self, raw_content_ref: str) -> TranscriptionResult:
        try:
            audio = await self.loader.load_audio(raw_content_ref)
            started = time.perf_counter()
            text = await asyncio.wait_for(self.llm.transcribe(audio), timeout=self.timeout)
        except Exception as exc:
            raise classify_exception(exc) from exc

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("转写完成: ref={}, words={}, {}ms", raw_content_ref, len(text.split()), elapsed_ms)
        return TranscriptionResult(
            text=text,
            word_count=len(text.split()),
            processing_time_ms=elapsed_ms,
            quality_score=assess_quality(text),
            transcribed_at=utcnow(),
        )
