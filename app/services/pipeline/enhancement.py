"""
AI 增强客户端

调用外部推理接口完成技能分类、经验等级推断和行业分类，
再与本地结果合并为带综合置信度的 EnhancementResult。

外部接口不可靠：请求带截止时间，异常统一分类；
接口返回可用但不完整的数据时按"尽力合并"处理，未解决的字段记入 missing_fields。
"""
import asyncio
import json
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from app.models.base import utcnow
from app.models.resume import EnhancementResult
from .confidence import ConfidenceInputs, ConfidenceScorer, WeightedConfidenceScorer
from .errors import classify_exception
from .extractor import field_confidence, field_value
from .llm_client import LLMClient

SKILL_CATEGORIES = [
    "programming_languages",
    "frameworks",
    "databases",
    "cloud_devops",
    "data_ml",
    "tools",
    "soft_skills",
    "other",
]
EXPERIENCE_LEVELS = ["entry", "junior", "mid", "senior", "lead", "executive"]
INDUSTRIES = [
    "software", "finance", "healthcare", "education", "retail",
    "manufacturing", "consulting", "media", "government", "other",
]
EXPECTED_FIELDS = ["name", "email", "phone", "skills", "education", "experience"]

SOURCE_TEXT_LIMIT = 6000

SYSTEM_PROMPT = """You are a resume analysis service.
Given already-extracted resume fields and the resume text, return ONLY a JSON object:
{
  "categorized_skills": {"<category>": ["<skill>", ...]},
  "experience_level": "<level>",
  "industry_classification": "<industry>"
}
Rules:
- Only categorize skills that appear in the provided "skills" list, spelled exactly as given.
- Use only the candidate labels provided for categories, levels and industries.
- Use null when a value cannot be determined."""

_SENIORITY_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("executive", re.compile(r"\b(chief|cto|ceo|vp|vice president|director|head of)\b", re.I)),
    ("lead", re.compile(r"\b(lead|principal|staff|architect)\b", re.I)),
    ("senior", re.compile(r"\b(senior|sr\.)", re.I)),
    ("entry", re.compile(r"\b(intern|internship|graduate|entry[- ]level)\b", re.I)),
    ("junior", re.compile(r"\b(junior|jr\.)", re.I)),
]


def infer_experience_level(
    years: Optional[int],
    text: str,
) -> Tuple[Optional[str], float]:
    """
    本地推断经验等级

    优先使用年限；没有年限时看职级用语。返回 (等级, 置信度)。
    """
    if isinstance(years, int):
        if years < 1:
            return "entry", 0.6
        if years < 3:
            return "junior", 0.6
        if years < 6:
            return "mid", 0.6
        if years < 10:
            return "senior", 0.6
        return "lead", 0.6

    for level, pattern in _SENIORITY_PATTERNS:
        if pattern.search(text or ""):
            return level, 0.4
    return None, 0.0


def merge_categorized_skills(skills: List[str], raw: Any) -> Dict[str, List[str]]:
    """
    合并接口返回的技能分类

    只保留 parsed_fields 中存在的技能（大小写不敏感，使用原始写法），
    每个技能只归入第一个匹配的类别；未知类别归入 other，未被分类的技能也归入 other。
    """
    canonical = {skill.lower(): skill for skill in skills}
    assigned: Dict[str, str] = {}

    pairs: List[Tuple[str, str]] = []
    if isinstance(raw, Mapping):
        for category, names in raw.items():
            if isinstance(names, str):
                names = [names]
            if isinstance(names, list):
                pairs.extend((str(category), str(name)) for name in names)
    elif isinstance(raw, list):
        for item in raw:
            if isinstance(item, Mapping) and "skill" in item:
                pairs.append((str(item.get("category") or "other"), str(item["skill"])))

    for category, name in pairs:
        key = name.strip().lower()
        if key not in canonical or key in assigned:
            continue
        assigned[key] = category if category in SKILL_CATEGORIES else "other"

    result: Dict[str, List[str]] = {}
    for skill in skills:
        category = assigned.get(skill.lower(), "other")
        result.setdefault(category, []).append(skill)
    return result


class EnhancementClient:
    """AI 增强客户端"""

    def __init__(
        self,
        llm: LLMClient,
        *,
        timeout: float,
        confidence_floor: float = 0.5,
        scorer: Optional[ConfidenceScorer] = None,
    ):
        self.llm = llm
        self.timeout = timeout
        self.confidence_floor = confidence_floor
        self.scorer = scorer or WeightedConfidenceScorer()

    def _build_prompt(self, parsed_fields: Mapping[str, Any], source_text: str) -> str:
        fields = {name: field_value(parsed_fields, name) for name in parsed_fields}
        payload = {
            "fields": fields,
            "candidate_labels": {
                "skill_categories": SKILL_CATEGORIES,
                "experience_levels": EXPERIENCE_LEVELS,
                "industries": INDUSTRIES,
            },
        }
        return (
            f"{json.dumps(payload, ensure_ascii=False, default=str)}\n\n"
            f"Resume text:\n{(source_text or '')[:SOURCE_TEXT_LIMIT]}"
        )

    async def enhance(
        self,
        parsed_fields: Mapping[str, Any],
        source_text: str,
        *,
        transcription_quality: Optional[float] = None,
    ) -> EnhancementResult:
        """调用推理接口并合并结果，失败时抛出已分类的 PipelineError"""
        try:
            response = await asyncio.wait_for(
                self.llm.complete_json(SYSTEM_PROMPT, self._build_prompt(parsed_fields, source_text)),
                timeout=self.timeout,
            )
        except Exception as exc:
            raise classify_exception(exc) from exc

        return self.merge(
            parsed_fields,
            source_text,
            response,
            transcription_quality=transcription_quality,
        )

    def merge(
        self,
        parsed_fields: Mapping[str, Any],
        source_text: str,
        response: Mapping[str, Any],
        *,
        transcription_quality: Optional[float] = None,
    ) -> EnhancementResult:
        """把接口返回与本地结果合并为 EnhancementResult"""
        skills = field_value(parsed_fields, "skills") or []
        categorized = merge_categorized_skills(skills, response.get("categorized_skills"))

        level = response.get("experience_level")
        if isinstance(level, str) and level.lower() in EXPERIENCE_LEVELS:
            level, level_confidence = level.lower(), 0.9
        else:
            level, level_confidence = infer_experience_level(
                field_value(parsed_fields, "years_of_experience"), source_text
            )
            if level:
                logger.debug("经验等级由本地推断: {}", level)

        industry = response.get("industry_classification")
        if not (isinstance(industry, str) and industry.lower() in INDUSTRIES):
            industry = None
        else:
            industry = industry.lower()

        missing = [
            name for name in EXPECTED_FIELDS
            if name not in parsed_fields
            or field_confidence(parsed_fields, name) < self.confidence_floor
        ]
        if level is None:
            missing.append("experience_level")
        if industry is None:
            missing.append("industry_classification")

        confidence = self.scorer.score(ConfidenceInputs(
            parsed_fields=parsed_fields,
            categorized_skills=categorized,
            missing_fields=missing,
            expected_fields=EXPECTED_FIELDS,
            experience_level_confidence=level_confidence,
            transcription_quality=transcription_quality,
        ))

        return EnhancementResult(
            categorized_skills=categorized,
            experience_level=level,
            missing_fields=missing,
            industry_classification=industry,
            confidence=confidence,
            enhanced_at=utcnow(),
        )
