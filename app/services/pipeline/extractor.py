"""
简历字段提取器

纯函数式、确定性的文本 -> 结构化字段映射，不做任何 I/O。
- 联系方式（邮箱、电话）：正则匹配
- 技能：与可配置词表做整词匹配，按首次出现顺序输出
- 教育、工作经历：章节标题 + 关键词邻近启发式

每个识别出的字段附带 [0,1] 置信度，匹配越精确分数越高；未识别的字段直接省略。
"""
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

Fields = Dict[str, Any]
Confidences = Dict[str, float]

# 匹配方式 -> 置信度
DEFAULT_CONFIDENCE: Dict[str, float] = {
    "email_exact": 0.95,
    "email_late": 0.8,
    "email_spoken": 0.5,
    "phone_exact": 0.9,
    "phone_loose": 0.5,
    "name_header": 0.7,
    "name_spoken": 0.75,
    "skills_section": 0.9,
    "skills_text": 0.7,
    "section": 0.8,
    "keyword": 0.45,
    "years_explicit": 0.85,
    "years_loose": 0.5,
    "title_section": 0.6,
    "title_spoken": 0.5,
}

SECTION_HEADERS: Dict[str, Tuple[str, ...]] = {
    "education": ("education", "academic background", "qualifications", "academics"),
    "experience": (
        "experience", "work experience", "professional experience",
        "employment", "employment history", "work history", "career history",
    ),
    "skills": ("skills", "technical skills", "core skills", "competencies", "technologies"),
    "summary": ("summary", "profile", "objective", "about me", "personal information"),
    "projects": ("projects", "personal projects"),
    "certifications": ("certifications", "certificates", "licenses"),
    "contact": ("contact", "contact information"),
}

EDUCATION_KEYWORDS = (
    "bachelor", "master", "phd", "ph.d", "mba", "b.sc", "m.sc", "b.s.", "m.s.",
    "degree in", "graduated from", "studied at", "university", "college",
)
EXPERIENCE_KEYWORDS = (
    "worked at", "working at", "currently work", "my experience",
    "previous role", "current role", "experience includes", "years of experience",
)
TITLE_KEYWORDS = (
    "engineer", "developer", "manager", "analyst", "designer", "consultant",
    "scientist", "architect", "administrator", "specialist", "lead", "director",
    "intern", "programmer",
)
NAME_TITLES = re.compile(r"^(mr|mrs|ms|dr|prof)\.?\s+", re.IGNORECASE)

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
SPOKEN_EMAIL_RE = re.compile(
    r"\b([a-z0-9][a-z0-9._]*)\s+at\s+([a-z0-9-]+)\s+dot\s+(com|org|net|io|edu|co)\b",
    re.IGNORECASE,
)
PHONE_RE = re.compile(r"(?:\+?\d{1,3}[\s.-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}\b")
LOOSE_PHONE_RE = re.compile(r"\+?\d[\d\s().-]{6,18}\d")
SPOKEN_NAME_RE = re.compile(r"\b(?i:my name is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+){0,2})")
SPOKEN_TITLE_RE = re.compile(r"\bi(?: am|'m) (?:a|an) ([a-z][a-z ]{2,40}?)(?:\s+(?:with|at|and|who)\b|[.,]|$)", re.IGNORECASE)
YEARS_EXPLICIT_RE = re.compile(
    r"(\d{1,2})\+?\s*(?:years?|yrs?)(?:\s+of)?\s+(?:professional\s+|work\s+|industry\s+|relevant\s+)?experience",
    re.IGNORECASE,
)
YEARS_LOOSE_RE = re.compile(r"(\d{1,2})\+?\s*(?:years?|yrs?)\b", re.IGNORECASE)

SECTION_SNIPPET_LIMIT = 500


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _sentences(text: str) -> List[str]:
    return [s.strip() for s in re.split(r"(?<=[.!?])\s+|\n+", text) if s.strip()]


class FieldExtractor:
    """基于规则的简历字段提取器"""

    def __init__(
        self,
        skill_vocabulary: Iterable[str],
        confidence_table: Optional[Mapping[str, float]] = None,
    ):
        self.confidence_table = {**DEFAULT_CONFIDENCE, **(confidence_table or {})}
        self._skill_patterns: List[Tuple[str, re.Pattern]] = []
        seen = set()
        for skill in skill_vocabulary:
            key = skill.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            pattern = re.compile(
                r"(?<![\w+#.])" + re.escape(skill.strip()) + r"(?![\w+#])",
                re.IGNORECASE,
            )
            self._skill_patterns.append((skill.strip(), pattern))

    def _score(self, match_kind: str) -> float:
        return _clamp(self.confidence_table.get(match_kind, 0.0))

    def extract(self, text: Any) -> Tuple[Fields, Confidences]:
        """
        提取字段

        返回 (fields, confidences)，两者键集合一致；
        非字符串或空白输入返回两个空字典。同一输入多次调用结果完全一致。
        """
        if not isinstance(text, str) or not text.strip():
            return {}, {}

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        sections = self._split_sections(text)
        fields: Fields = {}
        confidences: Confidences = {}

        def put(name: str, value: Any, match_kind: str):
            if value in (None, "", []):
                return
            fields[name] = value
            confidences[name] = self._score(match_kind)

        put(*self._extract_name(text))
        put(*self._extract_email(text))
        put(*self._extract_phone(text))
        put(*self._extract_skills(text, sections.get("skills")))
        put(*self._extract_section_or_keyword("education", text, sections, EDUCATION_KEYWORDS))
        put(*self._extract_section_or_keyword("experience", text, sections, EXPERIENCE_KEYWORDS))
        put(*self._extract_years(text))
        put(*self._extract_title(text, sections.get("experience")))
        return fields, confidences

    # ========== 章节切分 ==========

    def _match_header(self, line: str) -> Optional[Tuple[str, str]]:
        """识别章节标题行，返回 (章节名, 同行剩余内容)"""
        stripped = line.strip().strip("#*").strip()
        lowered = stripped.lower()
        for section, headers in SECTION_HEADERS.items():
            for header in headers:
                if lowered.rstrip(":") == header:
                    return section, ""
                if lowered.startswith(header + ":"):
                    return section, stripped[len(header) + 1:].strip()
        return None

    def _split_sections(self, text: str) -> Dict[str, str]:
        sections: Dict[str, List[str]] = {}
        current: Optional[str] = None
        for line in text.split("\n"):
            header = self._match_header(line)
            if header:
                current, rest = header
                sections.setdefault(current, [])
                if rest:
                    sections[current].append(rest)
            elif current is not None and line.strip():
                sections[current].append(line.strip())
        return {name: "\n".join(lines) for name, lines in sections.items() if lines}

    # ========== 单字段提取 ==========

    def _extract_name(self, text: str) -> Tuple[str, Optional[str], str]:
        spoken = SPOKEN_NAME_RE.search(text)
        if spoken:
            return "name", spoken.group(1), "name_spoken"

        for line in text.split("\n")[:5]:
            candidate = NAME_TITLES.sub("", line.strip())
            if not candidate or self._match_header(candidate):
                continue
            words = candidate.split()
            if 2 <= len(words) <= 4 and all(
                re.fullmatch(r"[A-Z][a-zA-Z'-]*\.?", w) for w in words
            ):
                return "name", candidate, "name_header"
            break
        return "name", None, "name_header"

    def _extract_email(self, text: str) -> Tuple[str, Optional[str], str]:
        match = EMAIL_RE.search(text)
        if match:
            kind = "email_exact" if match.start() < 500 else "email_late"
            return "email", match.group(0).lower(), kind
        spoken = SPOKEN_EMAIL_RE.search(text)
        if spoken:
            user, domain, tld = spoken.groups()
            return "email", f"{user}@{domain}.{tld}".lower(), "email_spoken"
        return "email", None, "email_exact"

    def _extract_phone(self, text: str) -> Tuple[str, Optional[str], str]:
        match = PHONE_RE.search(text)
        if match:
            digits = re.sub(r"\D", "", match.group(0))
            if 10 <= len(digits) <= 15:
                return "phone", digits, "phone_exact"
        for loose in LOOSE_PHONE_RE.finditer(text):
            digits = re.sub(r"\D", "", loose.group(0))
            # 排除年份区间之类的数字串
            if 7 <= len(digits) <= 15 and not re.fullmatch(r"(19|20)\d{2}(19|20)\d{2}", digits):
                return "phone", digits, "phone_loose"
        return "phone", None, "phone_exact"

    def _extract_skills(self, text: str, skills_section: Optional[str]) -> Tuple[str, List[str], str]:
        found: List[Tuple[int, str]] = []
        for canonical, pattern in self._skill_patterns:
            match = pattern.search(text)
            if match:
                found.append((match.start(), canonical))
        found.sort(key=lambda item: (item[0], item[1]))
        skills = [name for _, name in found]

        in_section = bool(skills_section) and any(
            pattern.search(skills_section) for _, pattern in self._skill_patterns
        )
        return "skills", skills, "skills_section" if in_section else "skills_text"

    def _extract_section_or_keyword(
        self,
        name: str,
        text: str,
        sections: Dict[str, str],
        keywords: Tuple[str, ...],
    ) -> Tuple[str, Optional[str], str]:
        section = sections.get(name)
        if section:
            return name, section[:SECTION_SNIPPET_LIMIT], "section"

        for sentence in _sentences(text):
            lowered = sentence.lower()
            if any(keyword in lowered for keyword in keywords):
                return name, sentence[:SECTION_SNIPPET_LIMIT], "keyword"
        return name, None, "keyword"

    def _extract_years(self, text: str) -> Tuple[str, Optional[int], str]:
        explicit = [int(m.group(1)) for m in YEARS_EXPLICIT_RE.finditer(text)]
        if explicit:
            return "years_of_experience", max(explicit), "years_explicit"

        for sentence in _sentences(text):
            if "experience" not in sentence.lower():
                continue
            loose = [int(m.group(1)) for m in YEARS_LOOSE_RE.finditer(sentence)]
            if loose:
                return "years_of_experience", max(loose), "years_loose"
        return "years_of_experience", None, "years_loose"

    def _extract_title(self, text: str, experience_section: Optional[str]) -> Tuple[str, Optional[str], str]:
        if experience_section:
            for line in experience_section.split("\n"):
                lowered = line.lower()
                if any(re.search(rf"\b{keyword}\b", lowered) for keyword in TITLE_KEYWORDS):
                    return "current_title", line.strip()[:100], "title_section"

        spoken = SPOKEN_TITLE_RE.search(text)
        if spoken and any(keyword in spoken.group(1).lower() for keyword in TITLE_KEYWORDS):
            return "current_title", spoken.group(1).strip(), "title_spoken"
        return "current_title", None, "title_section"


def to_parsed_fields(fields: Fields, confidences: Confidences) -> Dict[str, Dict[str, Any]]:
    """合并字段值与置信度为持久化结构 {field: {value, confidence}}"""
    return {
        name: {"value": value, "confidence": _clamp(confidences.get(name, 0.0))}
        for name, value in fields.items()
    }


def field_value(parsed_fields: Optional[Mapping[str, Any]], name: str, default: Any = None) -> Any:
    entry = (parsed_fields or {}).get(name)
    if isinstance(entry, Mapping):
        return entry.get("value", default)
    return default


def field_confidence(parsed_fields: Optional[Mapping[str, Any]], name: str) -> float:
    entry = (parsed_fields or {}).get(name)
    if isinstance(entry, Mapping):
        return _clamp(entry.get("confidence", 0.0) or 0.0)
    return 0.0
