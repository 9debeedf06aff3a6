"""
置信度评分

把转写质量、字段提取置信度、AI 分类结果合并为一个 [0,1] 的综合置信度。
评分函数可替换：编排器只依赖 ConfidenceScorer 协议。
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from app.models.resume import ConfidenceRecommendation, ConfidenceReport
from .extractor import field_confidence, field_value

DEFAULT_WEIGHTS: Dict[str, float] = {
    "transcription_quality": 0.20,
    "name_extraction": 0.15,
    "contact_extraction": 0.10,
    "skills_categorization": 0.20,
    "experience_level": 0.15,
    "completeness": 0.20,
}

# (下限, 等级)，从高到低匹配
CONFIDENCE_LEVELS = (
    (0.8, "high"),
    (0.6, "medium"),
    (0.4, "low"),
    (0.0, "very_low"),
)

# 低于该分数的组成部分给出改进建议
RECOMMENDATION_THRESHOLD = 0.7
MAX_RECOMMENDATIONS = 3

RECOMMENDATIONS: Dict[str, ConfidenceRecommendation] = {
    "transcription_quality": ConfidenceRecommendation(
        component="transcription_quality",
        issue="语音转写置信度低",
        suggestion="在安静环境中重新录制，减少背景噪音",
        impact="high",
    ),
    "name_extraction": ConfidenceRecommendation(
        component="name_extraction",
        issue="难以识别候选人姓名",
        suggestion="在开头清楚地说明或写明全名",
        impact="medium",
    ),
    "contact_extraction": ConfidenceRecommendation(
        component="contact_extraction",
        issue="联系方式缺失或不清晰",
        suggestion="完整给出邮箱和电话号码",
        impact="high",
    ),
    "skills_categorization": ConfidenceRecommendation(
        component="skills_categorization",
        issue="技能难以归类",
        suggestion="直接写出具体的技术和工具名称",
        impact="medium",
    ),
    "experience_level": ConfidenceRecommendation(
        component="experience_level",
        issue="经验等级依据不明确",
        suggestion="明确写出工作年限和职级",
        impact="medium",
    ),
    "completeness": ConfidenceRecommendation(
        component="completeness",
        issue="简历信息不完整",
        suggestion="补充缺失的字段，如技能、教育和工作经历",
        impact="medium",
    ),
}


@dataclass
class ConfidenceInputs:
    """评分所需的全部输入"""
    parsed_fields: Mapping[str, Any]
    categorized_skills: Mapping[str, List[str]]
    missing_fields: List[str]
    expected_fields: List[str]
    experience_level_confidence: float = 0.0
    transcription_quality: Optional[float] = None


class ConfidenceScorer(Protocol):
    def score(self, inputs: ConfidenceInputs) -> ConfidenceReport:
        ...


def confidence_level(score: float) -> str:
    for floor, label in CONFIDENCE_LEVELS:
        if score >= floor:
            return label
    return "very_low"


def confidence_insights(components: Mapping[str, float], overall: float) -> List[str]:
    """把评分转为可读的解读，供人工复核参考"""
    if overall >= 0.8:
        insights = ["解析结果高度可靠，主要组成部分均以高置信度完成"]
    elif overall >= 0.6:
        insights = ["解析结果总体可靠，部分组成部分置信度中等"]
    else:
        insights = ["解析结果置信度较低，建议人工复核"]

    if components.get("transcription_quality", 1.0) < 0.6:
        insights.append("音频质量可能影响了转写准确度")
    if components.get("name_extraction", 1.0) < 0.7:
        insights.append("未能以高置信度识别候选人姓名")
    if components.get("skills_categorization", 0.0) > 0.8:
        insights.append("技能分类置信度高，技能归类结果可靠")
    if components.get("experience_level", 1.0) < 0.5:
        insights.append("经验等级推断置信度低，简历可能缺少明确的经验描述")
    return insights


def recommendations_for(components: Mapping[str, float]) -> List[ConfidenceRecommendation]:
    """低分组成部分的改进建议，分数最低的在前"""
    low = sorted(
        (score, name) for name, score in components.items()
        if score < RECOMMENDATION_THRESHOLD and name in RECOMMENDATIONS
    )
    return [RECOMMENDATIONS[name].model_copy() for _, name in low[:MAX_RECOMMENDATIONS]]


class WeightedConfidenceScorer:
    """按组成部分加权平均；缺失的组成部分不参与加权"""

    def __init__(self, weights: Optional[Mapping[str, float]] = None):
        self.weights = dict(weights or DEFAULT_WEIGHTS)

    def score(self, inputs: ConfidenceInputs) -> ConfidenceReport:
        components: Dict[str, Optional[float]] = {
            "transcription_quality": inputs.transcription_quality,
            "name_extraction": field_confidence(inputs.parsed_fields, "name"),
            "contact_extraction": (
                field_confidence(inputs.parsed_fields, "email")
                + field_confidence(inputs.parsed_fields, "phone")
            ) / 2,
            "skills_categorization": self._skills_score(inputs),
            "experience_level": inputs.experience_level_confidence,
            "completeness": self._completeness(inputs),
        }

        weighted_sum = 0.0
        total_weight = 0.0
        for name, value in components.items():
            weight = self.weights.get(name, 0.0)
            if value is None or weight <= 0:
                continue
            weighted_sum += max(0.0, min(1.0, value)) * weight
            total_weight += weight

        overall = round(weighted_sum / total_weight, 3) if total_weight > 0 else 0.0
        scored = {k: round(v, 3) for k, v in components.items() if v is not None}
        return ConfidenceReport(
            overall=overall,
            level=confidence_level(overall),
            components=scored,
            insights=confidence_insights(scored, overall),
            recommendations=recommendations_for(scored),
        )

    @staticmethod
    def _skills_score(inputs: ConfidenceInputs) -> float:
        skills = field_value(inputs.parsed_fields, "skills") or []
        if not skills:
            return 0.0
        categorized = sum(
            len(names) for category, names in inputs.categorized_skills.items()
            if category != "other"
        )
        ratio = min(1.0, categorized / len(skills))
        return field_confidence(inputs.parsed_fields, "skills") * (0.5 + 0.5 * ratio)

    @staticmethod
    def _completeness(inputs: ConfidenceInputs) -> float:
        if not inputs.expected_fields:
            return 1.0
        missing = len(set(inputs.missing_fields) & set(inputs.expected_fields))
        return 1.0 - missing / len(inputs.expected_fields)
