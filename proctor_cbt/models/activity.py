"""
models/activity.py

감독 신호(환경 이벤트)와 의심 행위 기록 모델.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class SignalType(str, Enum):
    TAB_SWITCH = "tab-switch"
    WINDOW_BLUR = "window-blur"
    COPY_PASTE = "copy-paste"
    CONTEXT_MENU = "context-menu"
    KEYBOARD_SHORTCUT = "keyboard-shortcut"
    MOUSE_OUTSIDE = "mouse-outside"
    WINDOW_RESIZE = "window-resize"
    RAPID_MOUSE_MOVEMENT = "rapid-mouse-movement"
    RAPID_KEY_PRESS = "rapid-key-press"
    EXCESSIVE_SCROLLING = "excessive-scrolling"
    FULLSCREEN_EXIT = "fullscreen-exit"
    DEV_TOOLS = "dev-tools"
    PRINT_ATTEMPT = "print-attempt"
    FACE_NOT_DETECTED = "face-not-detected"
    MULTIPLE_FACES = "multiple-faces"


class EventKind(str, Enum):
    """시험 페이지가 보고하는 원시 환경 이벤트 종류."""

    VISIBILITY_CHANGE = "visibilitychange"
    BLUR = "blur"
    FOCUS = "focus"
    COPY = "copy"
    CUT = "cut"
    PASTE = "paste"
    CONTEXT_MENU = "contextmenu"
    KEY_DOWN = "keydown"
    MOUSE_LEAVE = "mouseleave"
    MOUSE_MOVE = "mousemove"
    SCROLL = "scroll"
    RESIZE = "resize"
    FULLSCREEN_CHANGE = "fullscreenchange"
    VIEWPORT = "viewport"
    BEFORE_PRINT = "beforeprint"
    FACE_COUNT = "face-count"


class EnvironmentEvent(BaseModel):
    """
    브라우저 경계에서 들어오는 원시 이벤트.
    종류별로 필요한 필드만 채워진다.
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    kind: EventKind
    hidden: Optional[bool] = None
    key: Optional[str] = None
    ctrl_key: bool = False
    meta_key: bool = False
    client_x: Optional[float] = None
    client_y: Optional[float] = None
    inner_width: Optional[float] = None
    inner_height: Optional[float] = None
    outer_width: Optional[float] = None
    outer_height: Optional[float] = None
    is_fullscreen: Optional[bool] = None
    face_count: Optional[int] = Field(default=None, ge=0)


class SuspiciousActivity(BaseModel):
    """의심 행위 기록. 로그에 추가된 뒤에는 변경되지 않는다."""

    model_config = ConfigDict(frozen=True)

    type: SignalType
    description: str
    severity: Severity
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_wire(self) -> dict:
        return {
            "type": self.type.value,
            "description": self.description,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
        }


class ProctorEvent(BaseModel):
    """실시간 채널로 감독관에게 전달되는 이벤트."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    exam_id: str
    student_id: Optional[str] = None
    type: SignalType
    description: str
    severity: Severity
    timestamp: datetime

    @classmethod
    def from_activity(cls, exam_id: str, student_id: Optional[str], activity: SuspiciousActivity) -> "ProctorEvent":
        return cls(
            exam_id=exam_id,
            student_id=student_id,
            type=activity.type,
            description=activity.description,
            severity=activity.severity,
            timestamp=activity.timestamp,
        )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
