"""
models/session_state.py

시험 진행 상태 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
UI 코드 없음.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

import config
from proctor_cbt.models.activity import Severity

# 단일 답안(str) 또는 복수 정답형 답안(frozenset)
AnswerValue = Union[str, FrozenSet[str]]


class SessionPhase(str, Enum):
    LOADING = "loading"
    PERMISSIONS_PENDING = "permissions-pending"
    IN_PROGRESS = "in-progress"
    SUBMITTING = "submitting"
    ENDED = "ended"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.ENDED, SessionPhase.ABORTED)


class SubmitTrigger(str, Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"
    QUESTION_TIMEOUT = "question-timeout"
    POLICY = "policy"

    @property
    def is_auto(self) -> bool:
        return self != SubmitTrigger.MANUAL


class QuestionRuntimeState(BaseModel):
    """
    문항별 런타임 상태.

    Attributes:
        locked:             문항 시간 초과로 잠김. 한 번 True 가 되면 되돌릴 수 없다.
        time_spent_seconds: 누적 풀이 시간 (초).
        marked_for_review:  검토 표시.
        started_at:         현재 체류 시작 시각 (time source 기준). 체류 중이 아니면 None.
    """

    locked: bool = False
    time_spent_seconds: int = Field(default=0, ge=0)
    marked_for_review: bool = False
    started_at: Optional[float] = None


class SessionSnapshot(BaseModel):
    """
    재개에 필요한 최소 상태. Progress Persistence 가 쓰고, 로드 시 한 번 읽는다.
    answers 의 복수 정답형 값은 JSON 에서 리스트로 표현된다.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    answers: Dict[str, Union[str, List[str]]] = Field(default_factory=dict)
    time_left: Optional[int] = Field(default=None, ge=0)
    current_question_index: Optional[int] = Field(default=None, ge=0)
    started_at: Optional[str] = None
    tab_switch_count: Optional[int] = Field(default=None, ge=0)

    @field_validator("answers", mode="before")
    @classmethod
    def coerce_answers(cls, v):
        if v is None:
            return {}
        # 과거 버전은 [{qid: answer}, ...] 형태로 보냈다
        if isinstance(v, list):
            merged: Dict[str, object] = {}
            for item in v:
                if isinstance(item, dict):
                    merged.update(item)
            v = merged
        return {
            str(k): sorted(val) if isinstance(val, (set, frozenset, tuple)) else val
            for k, val in v.items()
        }

    @field_validator("time_left", mode="before")
    @classmethod
    def clamp_time_left(cls, v):
        if v is None:
            return None
        return max(0, int(v))

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SessionSettings(BaseModel):
    """
    세션 단위로 주입 가능한 설정. 기본값은 config 모듈 상수를 따른다.
    """

    tick_interval: float = config.TICK_INTERVAL
    progress_save_every: int = Field(default=config.PROGRESS_SAVE_EVERY, ge=1)
    default_question_time_limit: int = Field(default=config.DEFAULT_QUESTION_TIME_LIMIT, gt=0)
    auto_terminate_min_severity: Severity = Severity(config.AUTO_TERMINATE_MIN_SEVERITY)
    alert_durations: Dict[Severity, float] = Field(
        default_factory=lambda: {Severity(k): v for k, v in config.ALERT_DURATIONS.items()}
    )
    warning_banner_seconds: float = config.WARNING_BANNER_SECONDS
    rapid_mouse_threshold: int = config.RAPID_MOUSE_THRESHOLD
    rapid_key_threshold: int = config.RAPID_KEY_THRESHOLD
    scroll_threshold: int = config.SCROLL_THRESHOLD
    devtools_threshold: int = config.DEVTOOLS_THRESHOLD
    tab_switch_limit: int = Field(default=config.TAB_SWITCH_LIMIT, ge=0)
    auto_submit_retries: int = Field(default=config.AUTO_SUBMIT_RETRIES, ge=0)
    auto_submit_retry_delay: float = config.AUTO_SUBMIT_RETRY_DELAY
    post_submit_redirect_delay: float = config.POST_SUBMIT_REDIRECT_DELAY
    dashboard_path: str = config.DASHBOARD_PATH

    @field_serializer("alert_durations")
    def serialize_durations(self, v: Dict[Severity, float]) -> Dict[str, float]:
        return {k.value: d for k, d in v.items()}
