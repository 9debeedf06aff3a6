"""
原始内容读取

raw_content_ref 是相对上传目录（或绝对）的文件引用。
文档读取为文本，语音读取为字节；文件问题统一转为流水线错误。
"""
import asyncio
from pathlib import Path
from typing import Tuple

import fitz  # PyMuPDF

from .state import SourceType
from .errors import InputValidationError, PermanentParseError

TEXT_EXTENSIONS = (".txt", ".md", ".text")
DOCUMENT_EXTENSIONS = TEXT_EXTENSIONS + (".pdf",)
AUDIO_EXTENSIONS = (".mp3", ".wav", ".m4a", ".ogg", ".webm", ".mp4", ".mpeg", ".mpga", ".flac")


class ContentLoader:
    """按引用读取已存储的简历文件"""

    def __init__(self, upload_dir: str, audio_max_size_mb: int = 25):
        self.upload_dir = Path(upload_dir)
        self.audio_max_bytes = audio_max_size_mb * 1024 * 1024

    def resolve(self, raw_content_ref: str) -> Path:
        path = Path(raw_content_ref)
        if not path.is_absolute():
            path = self.upload_dir / path
        return path

    def validate(self, raw_content_ref: str, source_type: SourceType) -> Path:
        """
        校验文件存在且扩展名与来源类型匹配

        上传时调用一次，之后各阶段不再做存在性检查以外的额外校验。
        """
        path = self.resolve(raw_content_ref)
        if not path.is_file():
            raise InputValidationError(f"文件不存在: {raw_content_ref}")

        allowed = AUDIO_EXTENSIONS if source_type == SourceType.VOICE else DOCUMENT_EXTENSIONS
        if path.suffix.lower() not in allowed:
            raise InputValidationError(
                f"不支持的文件格式 {path.suffix or '(无扩展名)'}，支持: {', '.join(allowed)}"
            )
        if source_type == SourceType.VOICE and path.stat().st_size > self.audio_max_bytes:
            raise InputValidationError(
                f"音频文件过大，最大 {self.audio_max_bytes // 1024 // 1024}MB"
            )
        return path

    async def load_audio(self, raw_content_ref: str) -> Tuple[str, bytes]:
        """读取音频文件，返回 (文件名, 字节)"""
        path = self.validate(raw_content_ref, SourceType.VOICE)
        data = await asyncio.to_thread(path.read_bytes)
        if not data:
            raise InputValidationError(f"音频文件为空: {raw_content_ref}")
        return path.name, data

    async def load_text(self, raw_content_ref: str) -> str:
        """读取文档文本；无法转换为文本时抛出 PermanentParseError"""
        path = self.resolve(raw_content_ref)
        if not path.is_file():
            raise InputValidationError(f"文件不存在: {raw_content_ref}")
        if path.suffix.lower() == ".pdf":
            return await asyncio.to_thread(self._read_pdf, path)
        return await asyncio.to_thread(self._read_text, path)

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise PermanentParseError(f"文件不是 UTF-8 文本: {path.name} ({exc.reason})")

    @staticmethod
    def _read_pdf(path: Path) -> str:
        try:
            document = fitz.open(path)
        except RuntimeError as exc:
            raise PermanentParseError(f"PDF 无法打开: {path.name} ({exc})")
        try:
            return "\n".join(page.get_text() for page in document)
        finally:
            document.close()
