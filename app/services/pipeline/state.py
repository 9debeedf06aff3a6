"""
简历处理状态机

定义状态、来源类型、阶段以及合法的状态迁移。
编排器只根据记录当前状态决定下一个阶段，不维护额外的"断点"信息。
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional, Set, Tuple


class SourceType(str, Enum):
    """简历来源类型（创建后不可变）"""
    DOCUMENT = "document"
    VOICE = "voice"


class ResumeStatus(str, Enum):
    """简历处理状态"""
    UPLOADED = "uploaded"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    TRANSCRIPTION_FAILED = "transcription_failed"
    PARSING = "parsing"
    PARSED = "parsed"
    PARSING_FAILED = "parsing_failed"
    ENHANCING = "enhancing"
    ENHANCED = "enhanced"
    ENHANCEMENT_FAILED = "enhancement_failed"


class Stage(str, Enum):
    """流水线阶段"""
    TRANSCRIPTION = "transcription"
    PARSING = "parsing"
    ENHANCEMENT = "enhancement"


# 阶段 -> (处理中标记, 成功状态, 失败状态)
STAGE_STATUSES: Dict[Stage, Tuple[ResumeStatus, ResumeStatus, ResumeStatus]] = {
    Stage.TRANSCRIPTION: (
        ResumeStatus.TRANSCRIBING,
        ResumeStatus.TRANSCRIBED,
        ResumeStatus.TRANSCRIPTION_FAILED,
    ),
    Stage.PARSING: (
        ResumeStatus.PARSING,
        ResumeStatus.PARSED,
        ResumeStatus.PARSING_FAILED,
    ),
    Stage.ENHANCEMENT: (
        ResumeStatus.ENHANCING,
        ResumeStatus.ENHANCED,
        ResumeStatus.ENHANCEMENT_FAILED,
    ),
}

FAILED_STATUSES: FrozenSet[ResumeStatus] = frozenset(
    failed for _, _, failed in STAGE_STATUSES.values()
)
IN_PROGRESS_STATUSES: FrozenSet[ResumeStatus] = frozenset(
    marker for marker, _, _ in STAGE_STATUSES.values()
)
TERMINAL_STATUSES: FrozenSet[ResumeStatus] = frozenset({ResumeStatus.ENHANCED})

# parsed_fields 必须存在的状态
PARSED_FIELD_STATUSES: FrozenSet[ResumeStatus] = frozenset({
    ResumeStatus.PARSED,
    ResumeStatus.ENHANCING,
    ResumeStatus.ENHANCEMENT_FAILED,
    ResumeStatus.ENHANCED,
})

# 合法迁移图；失败状态只能回到本阶段的重试
TRANSITIONS: Dict[ResumeStatus, Set[ResumeStatus]] = {
    ResumeStatus.UPLOADED: {ResumeStatus.TRANSCRIBING, ResumeStatus.PARSING},
    ResumeStatus.TRANSCRIBING: {
        ResumeStatus.TRANSCRIBING,
        ResumeStatus.TRANSCRIBED,
        ResumeStatus.TRANSCRIPTION_FAILED,
    },
    ResumeStatus.TRANSCRIBED: {ResumeStatus.PARSING},
    ResumeStatus.TRANSCRIPTION_FAILED: {ResumeStatus.TRANSCRIBING},
    ResumeStatus.PARSING: {
        ResumeStatus.PARSING,
        ResumeStatus.PARSED,
        ResumeStatus.PARSING_FAILED,
    },
    ResumeStatus.PARSED: {ResumeStatus.ENHANCING},
    ResumeStatus.PARSING_FAILED: {ResumeStatus.PARSING},
    ResumeStatus.ENHANCING: {
        ResumeStatus.ENHANCING,
        ResumeStatus.ENHANCED,
        ResumeStatus.ENHANCEMENT_FAILED,
    },
    ResumeStatus.ENHANCED: set(),
    ResumeStatus.ENHANCEMENT_FAILED: {ResumeStatus.ENHANCING},
}

# 状态提示文案，供状态查询展示
STATUS_MESSAGES: Dict[ResumeStatus, str] = {
    ResumeStatus.UPLOADED: "简历已接收，等待处理",
    ResumeStatus.TRANSCRIBING: "正在将语音转写为文本",
    ResumeStatus.TRANSCRIBED: "语音转写完成",
    ResumeStatus.TRANSCRIPTION_FAILED: "语音转写失败",
    ResumeStatus.PARSING: "正在提取简历信息",
    ResumeStatus.PARSED: "简历信息提取完成",
    ResumeStatus.PARSING_FAILED: "简历内容无法解析",
    ResumeStatus.ENHANCING: "正在进行 AI 分析",
    ResumeStatus.ENHANCED: "简历已处理完成",
    ResumeStatus.ENHANCEMENT_FAILED: "AI 分析失败",
}

PROGRESS: Dict[ResumeStatus, int] = {
    ResumeStatus.UPLOADED: 10,
    ResumeStatus.TRANSCRIBING: 25,
    ResumeStatus.TRANSCRIBED: 40,
    ResumeStatus.PARSING: 55,
    ResumeStatus.PARSED: 70,
    ResumeStatus.ENHANCING: 85,
    ResumeStatus.ENHANCED: 100,
}


def is_valid_transition(current: ResumeStatus, target: ResumeStatus) -> bool:
    """检查状态迁移是否符合状态机"""
    return target in TRANSITIONS.get(current, set())


def next_stage(status: ResumeStatus, source_type: SourceType) -> Optional[Stage]:
    """
    根据当前状态决定下一个要执行的阶段

    失败状态与处理中状态（租约过期后）都回到本阶段；
    ENHANCED 返回 None 表示没有可执行的阶段。
    """
    if status == ResumeStatus.UPLOADED:
        if source_type == SourceType.VOICE:
            return Stage.TRANSCRIPTION
        return Stage.PARSING
    if status == ResumeStatus.TRANSCRIBED:
        return Stage.PARSING
    if status == ResumeStatus.PARSED:
        return Stage.ENHANCEMENT
    for stage, (marker, _, failed) in STAGE_STATUSES.items():
        if status in (marker, failed):
            return stage
    return None


def progress_of(status: ResumeStatus) -> int:
    """处理进度百分比，失败状态返回 0"""
    if status in FAILED_STATUSES:
        return 0
    return PROGRESS.get(status, 0)
