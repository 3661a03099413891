"""
services/integrity_monitor.py

환경 신호 → 의심 행위(SuspiciousActivity) 분류기.

처리 순서 (신호 1건당):
  1. 추가 전용 로그에 기록
  2. 심각도별 시간(5/8/10초) 동안 표시되는 알림 갱신
  3. 실시간 채널로 감독관에게 전달 (fire-and-forget)
  4. 자동 종료 여부는 반환값을 받은 컨트롤러가 정책에 따라 판단

이벤트 핸들러는 모두 O(1)이다. 빈도 기반 신호(마우스/키/스크롤)는
카운터만 올리고, 1초마다 tick() 에서 임계치 비교 후 초기화한다.
"""

import logging
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from proctor_cbt.models.activity import (
    EnvironmentEvent, EventKind, ProctorEvent, Severity, SignalType, SuspiciousActivity,
)
from proctor_cbt.models.question_model import ExamPolicy
from proctor_cbt.models.session_state import SessionSettings

logger = logging.getLogger(__name__)

# 신호별 (심각도, 설명)
SIGNAL_TABLE: Dict[SignalType, Tuple[Severity, str]] = {
    SignalType.TAB_SWITCH: (Severity.MEDIUM, "Student switched to another tab or application"),
    SignalType.WINDOW_BLUR: (Severity.MEDIUM, "Student clicked outside exam window or switched applications"),
    SignalType.COPY_PASTE: (Severity.MEDIUM, "Student attempted to copy/paste content"),
    SignalType.CONTEXT_MENU: (Severity.LOW, "Student attempted to access browser context menu"),
    SignalType.KEYBOARD_SHORTCUT: (Severity.MEDIUM, "Student attempted to use keyboard shortcut"),
    SignalType.MOUSE_OUTSIDE: (Severity.LOW, "Student moved cursor outside exam window"),
    SignalType.WINDOW_RESIZE: (Severity.LOW, "Student resized browser window"),
    SignalType.RAPID_MOUSE_MOVEMENT: (Severity.LOW, "Unusual rapid mouse movement detected"),
    SignalType.RAPID_KEY_PRESS: (Severity.LOW, "Unusual rapid keyboard activity detected"),
    SignalType.EXCESSIVE_SCROLLING: (Severity.LOW, "Excessive scrolling behavior detected"),
    SignalType.FULLSCREEN_EXIT: (Severity.HIGH, "Student exited fullscreen mode"),
    SignalType.DEV_TOOLS: (Severity.HIGH, "Student attempted to open developer tools"),
    SignalType.PRINT_ATTEMPT: (Severity.MEDIUM, "Student attempted to print exam content"),
    SignalType.FACE_NOT_DETECTED: (Severity.HIGH, "Student face not detected in camera"),
    SignalType.MULTIPLE_FACES: (Severity.HIGH, "Multiple faces detected in camera"),
}

_SHORTCUT_KEYS = {"F11", "F12"}
_CLIPBOARD_KINDS = {EventKind.COPY, EventKind.CUT, EventKind.PASTE}


class Observation(NamedTuple):
    activity: Optional[SuspiciousActivity]
    prevent_default: bool = False


class AlertBoard:
    """
    학생 화면의 일시 알림 상태.
    타이머를 따로 두지 않고, 조회 시점에 만료 여부를 계산한다.
    """

    def __init__(self, settings: SessionSettings, time_source: Callable[[], float]):
        self._durations = settings.alert_durations
        self._warning_seconds = settings.warning_banner_seconds
        self._now = time_source
        self._current: Optional[SuspiciousActivity] = None
        self._expires_at = 0.0
        self._warning_until = 0.0
        self.alert_count = 0
        self.warning_count = 0

    def show(self, activity: SuspiciousActivity) -> None:
        self._current = activity
        self._expires_at = self._now() + self._durations.get(activity.severity, 5.0)
        self.alert_count += 1

    def warn(self) -> None:
        self.warning_count += 1
        self._warning_until = self._now() + self._warning_seconds

    def current(self) -> Optional[SuspiciousActivity]:
        if self._current is not None and self._now() >= self._expires_at:
            self._current = None
        return self._current

    @property
    def warning_visible(self) -> bool:
        return self._now() < self._warning_until

    def clear(self) -> None:
        self._current = None
        self._warning_until = 0.0

    def view(self) -> dict:
        current = self.current()
        return {
            "alert": current.to_wire() if current else None,
            "alert_count": self.alert_count,
            "warning_count": self.warning_count,
            "warning_visible": self.warning_visible,
        }


class IntegrityMonitor:
    """
    세션당 하나. start() 로 수집을 시작하고 stop() 으로 끝낸다.
    비활성 상태에서 들어온 신호는 기록하지 않는다.
    """

    def __init__(
        self,
        exam_id: str,
        policy: ExamPolicy,
        settings: SessionSettings,
        alerts: AlertBoard,
        channel=None,
        student_id: Optional[str] = None,
    ):
        self.exam_id = exam_id
        self.student_id = student_id
        self.policy = policy
        self.settings = settings
        self.alerts = alerts
        self.channel = channel
        self._log: List[SuspiciousActivity] = []
        self._active = False

        # 1초 윈도우 카운터
        self._mouse_moves = 0
        self._key_presses = 0
        self._scrolls = 0

        # 마지막으로 보고된 뷰포트 (개발자 도구 추정용)
        self._viewport: Optional[Tuple[float, float, float, float]] = None
        self._devtools_open = False

    # ── 수명 주기 ─────────────────────────────────────────────────────────────

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        self._active = True

    def stop(self) -> None:
        self._active = False
        self._reset_windows()

    @property
    def log(self) -> Tuple[SuspiciousActivity, ...]:
        return tuple(self._log)

    # ── 분류 ─────────────────────────────────────────────────────────────────

    def observe(self, event: EnvironmentEvent) -> Observation:
        """
        원시 이벤트 1건을 분류한다.
        prevent_default 는 수집 활성 여부와 무관하게 정책만으로 결정된다.
        """
        kind = event.kind
        prevent = self._should_prevent(event)
        if not self._active:
            return Observation(None, prevent)

        signal: Optional[SignalType] = None
        warn = False

        if kind == EventKind.VISIBILITY_CHANGE:
            if event.hidden and self.policy.prevent_tab_switch:
                signal, warn = SignalType.TAB_SWITCH, True
        elif kind == EventKind.BLUR:
            signal = SignalType.WINDOW_BLUR
        elif kind in _CLIPBOARD_KINDS:
            if self.policy.prevent_copy_paste:
                signal, warn = SignalType.COPY_PASTE, True
        elif kind == EventKind.CONTEXT_MENU:
            signal = SignalType.CONTEXT_MENU
        elif kind == EventKind.KEY_DOWN:
            self._key_presses += 1
            if self._is_shortcut(event):
                signal = SignalType.KEYBOARD_SHORTCUT
        elif kind == EventKind.MOUSE_MOVE:
            self._mouse_moves += 1
        elif kind == EventKind.SCROLL:
            self._scrolls += 1
        elif kind == EventKind.MOUSE_LEAVE:
            if self._is_outside(event):
                signal = SignalType.MOUSE_OUTSIDE
        elif kind == EventKind.RESIZE:
            self._update_viewport(event)
            signal = SignalType.WINDOW_RESIZE
        elif kind == EventKind.VIEWPORT:
            self._update_viewport(event)
        elif kind == EventKind.BEFORE_PRINT:
            signal = SignalType.PRINT_ATTEMPT
        elif kind == EventKind.FACE_COUNT:
            signal = self._classify_faces(event.face_count)

        if signal is None:
            return Observation(None, prevent)
        activity = self.record(signal)
        if warn:
            self.alerts.warn()
        return Observation(activity, prevent)

    def fullscreen_changed(self, is_fullscreen: bool) -> Optional[SuspiciousActivity]:
        if not self._active or is_fullscreen or not self.policy.require_fullscreen:
            return None
        return self.record(SignalType.FULLSCREEN_EXIT)

    def tick(self) -> List[SuspiciousActivity]:
        """1초 윈도우 마감 + 개발자 도구 추정 샘플링."""
        if not self._active:
            return []
        signals: List[SignalType] = []
        if self._mouse_moves > self.settings.rapid_mouse_threshold:
            signals.append(SignalType.RAPID_MOUSE_MOVEMENT)
        if self._key_presses > self.settings.rapid_key_threshold:
            signals.append(SignalType.RAPID_KEY_PRESS)
        if self._scrolls > self.settings.scroll_threshold:
            signals.append(SignalType.EXCESSIVE_SCROLLING)
        self._reset_windows()

        if self._sample_devtools():
            signals.append(SignalType.DEV_TOOLS)
        return [self.record(s) for s in signals]

    def record(self, signal: SignalType, description: Optional[str] = None) -> SuspiciousActivity:
        """로그 추가 → 알림 → 실시간 전달. 같은 신호가 반복되어도 항목을 합치지 않는다."""
        severity, default_description = SIGNAL_TABLE[signal]
        activity = SuspiciousActivity(
            type=signal,
            description=description or default_description,
            severity=severity,
        )
        self._log.append(activity)
        self.alerts.show(activity)
        logger.info(f"의심 행위 기록: {signal.value} ({severity.value})")
        if self.channel is not None:
            self.channel.publish(ProctorEvent.from_activity(self.exam_id, self.student_id, activity))
        return activity

    # ── 내부 헬퍼 ────────────────────────────────────────────────────────────

    def _should_prevent(self, event: EnvironmentEvent) -> bool:
        if event.kind in _CLIPBOARD_KINDS:
            return self.policy.prevent_copy_paste
        if event.kind == EventKind.CONTEXT_MENU:
            return True
        if event.kind == EventKind.KEY_DOWN:
            return self._is_shortcut(event)
        return False

    @staticmethod
    def _is_shortcut(event: EnvironmentEvent) -> bool:
        return event.ctrl_key or event.meta_key or event.key in _SHORTCUT_KEYS

    def _is_outside(self, event: EnvironmentEvent) -> bool:
        if event.client_x is None or event.client_y is None:
            return True
        width = event.inner_width or (self._viewport[0] if self._viewport else None)
        height = event.inner_height or (self._viewport[1] if self._viewport else None)
        if event.client_x <= 0 or event.client_y <= 0:
            return True
        if width is not None and event.client_x >= width:
            return True
        if height is not None and event.client_y >= height:
            return True
        return False

    def _update_viewport(self, event: EnvironmentEvent) -> None:
        dims = (event.inner_width, event.inner_height, event.outer_width, event.outer_height)
        if all(d is not None for d in dims):
            self._viewport = dims

    def _sample_devtools(self) -> bool:
        """열림 상태로 바뀌는 순간에만 True. 계속 열려 있으면 다시 기록하지 않는다."""
        if self._viewport is None:
            return False
        inner_w, inner_h, outer_w, outer_h = self._viewport
        threshold = self.settings.devtools_threshold
        is_open = (outer_h - inner_h > threshold) or (outer_w - inner_w > threshold)
        rising = is_open and not self._devtools_open
        self._devtools_open = is_open
        return rising

    def _classify_faces(self, count: Optional[int]) -> Optional[SignalType]:
        if not self.policy.detect_head_movement or count is None:
            return None
        if count == 0:
            return SignalType.FACE_NOT_DETECTED
        if count > 1:
            return SignalType.MULTIPLE_FACES
        return None

    def _reset_windows(self) -> None:
        self._mouse_moves = 0
        self._key_presses = 0
        self._scrolls = 0
