"""
应用配置模块

使用 pydantic-settings 管理环境变量和应用配置
"""
from functools import lru_cache
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
import json

# 项目根目录
BASE_DIR = Path(__file__).resolve().parent.parent.parent

DEFAULT_SKILL_VOCABULARY = [
    "Python", "Java", "JavaScript", "TypeScript", "Go", "C++", "C#", "Ruby", "PHP",
    "Rust", "Kotlin", "Swift", "SQL", "HTML", "CSS",
    "React", "Vue", "Angular", "Node.js", "Django", "Flask", "FastAPI", "Spring",
    "PostgreSQL", "MySQL", "MongoDB", "Redis", "Elasticsearch", "Kafka",
    "Docker", "Kubernetes", "AWS", "Azure", "GCP", "Terraform", "Linux", "Git",
    "Machine Learning", "Deep Learning", "TensorFlow", "PyTorch", "Pandas",
    "Data Analysis", "Excel", "Tableau",
    "Project Management", "Agile", "Scrum", "Leadership", "Communication",
]


class Settings(BaseSettings):
    """应用配置类"""

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # 应用基础配置
    app_name: str = "Resume-Ingest-API"
    app_env: str = "development"
    debug: bool = True

    # 数据库配置
    database_url: str = f"sqlite+aiosqlite:///{BASE_DIR / 'data' / 'resumes.db'}"

    # 上传文件目录（简历原件、语音文件）
    upload_dir: str = str(BASE_DIR / "data" / "uploads")

    # LLM 配置（OpenAI 兼容接口）
    llm_model: str = "gpt-4o-mini"
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_temperature: float = 0.2
    llm_timeout: int = 60
    llm_max_concurrency: int = 5
    llm_rate_limit: int = 60

    # 语音转写配置
    transcription_model: str = "whisper-1"
    audio_max_size_mb: int = 25

    # 处理流水线配置
    lease_duration_seconds: int = 300
    stage_timeout_seconds: float = 120.0
    max_retries: int = 3
    pipeline_max_workers: int = 4
    retry_sweep_interval_seconds: int = 0
    confidence_floor: float = 0.5
    skill_vocabulary: List[str] = DEFAULT_SKILL_VOCABULARY

    @field_validator("skill_vocabulary", mode="before")
    @classmethod
    def parse_skill_vocabulary(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [skill.strip() for skill in v.split(",") if skill.strip()]
        return v

    @field_validator("database_url", mode="before")
    @classmethod
    def fix_database_path(cls, v):
        if isinstance(v, str) and "./data/" in v:
            return v.replace("./data/", str(BASE_DIR / "data") + "/")
        return v

    @property
    def is_development(self) -> bool:
        """是否为开发环境"""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """是否为生产环境"""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()


# 全局配置实例
settings = get_settings()
