"""
services/session_controller.py

시험 세션 컨트롤러 (유한 상태 기계).

  Loading → PermissionsPending → InProgress → Submitting → Ended
  (어느 단계에서든 복구 불가능한 실패 시 Aborted)

전체 시간(Countdown), 문항별 시간(QuestionTimerManager), 감독(IntegrityMonitor),
진행 저장(ProgressPersistence), 제출(SubmissionProtocol)을 조합한다.
모든 주기 작업은 Ticker 하나에서 tick() 으로 실행되고, 종료 경로는 _teardown() 하나다.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Union

from pydantic import ValidationError

import config
from proctor_cbt.errors import ExamLoadError, InvalidAnswerError, PermissionDeniedError, SessionStateError
from proctor_cbt.models.activity import EnvironmentEvent, SignalType, SuspiciousActivity
from proctor_cbt.models.question_model import ExamDefinition, Question
from proctor_cbt.models.session_state import (
    AnswerValue, QuestionRuntimeState, SessionPhase, SessionSettings, SessionSnapshot, SubmitTrigger,
)
from proctor_cbt.models.submission import SubmissionOutcome, SubmissionPayload
from proctor_cbt.services import exam_service
from proctor_cbt.services.clock import Countdown, Ticker, format_time
from proctor_cbt.services.integrity_monitor import AlertBoard, IntegrityMonitor, Observation
from proctor_cbt.services.persistence import LocalSnapshotStore, ProgressPersistence
from proctor_cbt.services.platform import NullCamera, NullFullscreen
from proctor_cbt.services.question_timer import QuestionTimerManager
from proctor_cbt.services.submission import SubmissionProtocol, build_payload

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[SessionPhase, Set[SessionPhase]] = {
    SessionPhase.LOADING: {SessionPhase.PERMISSIONS_PENDING, SessionPhase.IN_PROGRESS, SessionPhase.ABORTED},
    SessionPhase.PERMISSIONS_PENDING: {SessionPhase.IN_PROGRESS, SessionPhase.ABORTED},
    SessionPhase.IN_PROGRESS: {SessionPhase.SUBMITTING, SessionPhase.ABORTED},
    SessionPhase.SUBMITTING: {SessionPhase.IN_PROGRESS, SessionPhase.ENDED, SessionPhase.ABORTED},
    SessionPhase.ENDED: set(),
    SessionPhase.ABORTED: set(),
}

_EMBEDDED_PROGRESS_KEYS = ("answers", "timeLeft", "currentQuestionIndex")
_WEBCAM_REQUIRED = "Webcam access is required for this exam."

NavigationTarget = Union[str, int]


class ExamSessionController:

    def __init__(
        self,
        exam_id: str,
        backend,
        *,
        student_id: Optional[str] = config.STUDENT_ID,
        test_id: Optional[str] = None,
        channel=None,
        fullscreen=None,
        camera=None,
        settings: Optional[SessionSettings] = None,
        local_store: Optional[LocalSnapshotStore] = None,
        time_source: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
    ):
        self.exam_id = exam_id
        self.student_id = student_id
        self.test_id = test_id
        self.backend = backend
        self.channel = channel
        self.fullscreen = fullscreen or NullFullscreen()
        self.camera = camera or NullCamera()
        self.settings = settings or SessionSettings()
        self._now = time_source

        self.phase = SessionPhase.LOADING
        self.exam: Optional[ExamDefinition] = None
        self.question_order: List[str] = []
        self.answers: Dict[str, AnswerValue] = {}
        self.runtime: Dict[str, QuestionRuntimeState] = {}
        self.current_index = 0
        self.started_at: Optional[str] = None

        self.clock: Optional[Countdown] = None
        self.question_timer: Optional[QuestionTimerManager] = None
        self.alerts = AlertBoard(self.settings, time_source)
        self.monitor: Optional[IntegrityMonitor] = None
        self.persistence = ProgressPersistence(exam_id, backend, local_store)
        self.submission = SubmissionProtocol(
            backend, self.camera, self.fullscreen, self.persistence, self.settings, sleep=sleep,
        )

        self.confirm_pending = False
        self.fullscreen_overlay = False
        self.error: Optional[dict] = None
        self.outcome: Optional[SubmissionOutcome] = None
        self.tab_switches = 0

        self._ticker = Ticker(self.settings.tick_interval, self.tick)
        self._ticks = 0
        self._unsubscribe_fullscreen: Optional[Callable[[], None]] = None
        self._tasks: Set[asyncio.Task] = set()
        self._submit_settled: Optional[asyncio.Event] = None
        self._torn_down = False

    # ══════════════════════════════════════════════════════════════════════
    # 상태 전이
    # ══════════════════════════════════════════════════════════════════════

    def _transition(self, target: SessionPhase) -> None:
        if target not in _TRANSITIONS[self.phase]:
            raise SessionStateError(f"허용되지 않는 전이: {self.phase.value} → {target.value}")
        logger.info(f"세션 단계 전이: {self.phase.value} → {target.value} (exam={self.exam_id})")
        self.phase = target

    def _require(self, *phases: SessionPhase) -> None:
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise SessionStateError(f"현재 단계({self.phase.value})에서는 불가능한 동작입니다. 허용: {allowed}")

    # ══════════════════════════════════════════════════════════════════════
    # Loading / PermissionsPending
    # ══════════════════════════════════════════════════════════════════════

    async def load(self) -> SessionPhase:
        """시험 정의를 가져오고 저장된 진행 상태가 있으면 병합한다."""
        self._require(SessionPhase.LOADING)
        try:
            data = await self.backend.start_exam(self.exam_id, self.test_id)
            exam = ExamDefinition.model_validate(data)
        except ExamLoadError as e:
            return await self._abort(_load_failure_message(e))
        except ValidationError as e:
            logger.error(f"시험 데이터 형식 오류: {e}")
            return await self._abort("Failed to load exam. Please try again.")

        self.exam = exam
        self.question_order = exam_service.build_question_order(exam, self.student_id)
        self.runtime = {qid: QuestionRuntimeState() for qid in self.question_order}

        local = self.persistence.restore_local()
        snapshot = await self.persistence.restore()
        if snapshot is None:
            snapshot = _embedded_snapshot(data)
        if snapshot is None:
            snapshot = local
        self._apply_snapshot(snapshot, data)
        # 서버가 탭 전환 횟수를 보관하지 않아도 새로고침으로 초기화되지 않는다
        self.tab_switches = max(
            (s.tab_switch_count or 0 for s in (snapshot, local) if s is not None), default=0
        )

        if exam.policy.time_per_question:
            self.question_timer = QuestionTimerManager(self.settings.default_question_time_limit)
        self.monitor = IntegrityMonitor(
            exam.id, exam.policy, self.settings, self.alerts,
            channel=self.channel, student_id=self.student_id,
        )

        if exam.policy.require_webcam or exam.policy.require_fullscreen:
            self._transition(SessionPhase.PERMISSIONS_PENDING)
        else:
            await self._begin()
        return self.phase

    def _apply_snapshot(self, snapshot: Optional[SessionSnapshot], data: dict) -> None:
        exam = self.exam
        time_left = exam.duration
        if snapshot is not None:
            self.answers = exam_service.answers_from_wire(exam, snapshot.answers)
            if snapshot.time_left is not None:
                time_left = snapshot.time_left
            if snapshot.current_question_index is not None:
                self.current_index = exam_service.clamp_index(
                    snapshot.current_question_index, len(self.question_order)
                )
            self.started_at = snapshot.started_at
            logger.info(
                f"진행 상태 병합: 답안 {len(self.answers)}개, 남은 시간 {time_left}초, "
                f"문항 {self.current_index + 1}/{len(self.question_order)}"
            )
        self.started_at = self.started_at or data.get("startTime") or datetime.now(timezone.utc).isoformat()
        self.clock = Countdown(time_left)

    async def grant_permissions(self) -> SessionPhase:
        """
        웹캠/전체화면 권한을 확보한다.
        웹캠 필수 정책에서 거부되면 세션을 중단하고 PermissionDeniedError,
        전체화면 실패는 오버레이만 띄우고 진행한다.
        """
        self._require(SessionPhase.PERMISSIONS_PENDING)
        policy = self.exam.policy
        if policy.require_webcam and not await self.camera.acquire():
            logger.warning(f"웹캠 권한 거부: exam={self.exam_id}")
            await self._abort(_WEBCAM_REQUIRED)
            raise PermissionDeniedError(_WEBCAM_REQUIRED)
        if policy.require_fullscreen and not self.fullscreen.is_fullscreen():
            if not await self.fullscreen.request_fullscreen():
                self.fullscreen_overlay = True
        await self._begin()
        return self.phase

    async def _begin(self) -> None:
        self._transition(SessionPhase.IN_PROGRESS)
        self.monitor.start()
        # 리스너는 세션당 한 번만 등록하고 _teardown 에서 한 번만 해제한다
        self._unsubscribe_fullscreen = self.fullscreen.on_fullscreen_change(self._on_fullscreen_change)
        if self.channel is not None:
            self._spawn(self.channel.connect())
        self.clock.start()
        self._enter_question(self._now())

    def start(self) -> None:
        """1초 주기 구동 시작. 진행 중 단계에서만 의미가 있다."""
        if self.phase == SessionPhase.IN_PROGRESS and not self._torn_down:
            self._ticker.start()

    # ══════════════════════════════════════════════════════════════════════
    # InProgress 동작
    # ══════════════════════════════════════════════════════════════════════

    @property
    def current_question_id(self) -> str:
        return self.question_order[self.current_index]

    @property
    def current_question(self) -> Question:
        return self.exam.question(self.current_question_id)

    def answer_question(self, question_id: str, value) -> bool:
        """답안 upsert. 잠긴 문항이면 아무것도 하지 않고 False."""
        self._require(SessionPhase.IN_PROGRESS)
        state = self._runtime_for(question_id)
        if state.locked:
            logger.info(f"잠긴 문항 답안 변경 거부: {question_id}")
            return False
        self.answers[question_id] = exam_service.normalize_answer(self.exam.question(question_id), value)
        return True

    def clear_answer(self, question_id: str) -> bool:
        self._require(SessionPhase.IN_PROGRESS)
        if self._runtime_for(question_id).locked:
            return False
        self.answers.pop(question_id, None)
        return True

    def toggle_review(self, question_id: str) -> bool:
        self._require(SessionPhase.IN_PROGRESS)
        state = self._runtime_for(question_id)
        state.marked_for_review = not state.marked_for_review
        return state.marked_for_review

    def navigate(self, target: NavigationTarget) -> bool:
        """
        "next" / "prev" / 인덱스로 이동.
        allowNavigation=False 이면 바로 다음 문항으로만 이동할 수 있다.
        잠긴 문항으로의 이동은 열람 전용으로 허용된다.
        """
        self._require(SessionPhase.IN_PROGRESS)
        if target == "next":
            index = self.current_index + 1
        elif target == "prev":
            index = self.current_index - 1
        elif isinstance(target, int) and not isinstance(target, bool):
            index = target
        else:
            raise ValueError(f"알 수 없는 이동 대상: {target!r}")

        if not 0 <= index < len(self.question_order) or index == self.current_index:
            return False
        if not self.exam.policy.allow_navigation and index != self.current_index + 1:
            logger.info(f"이동 제한 정책으로 거부: {self.current_index} → {index}")
            return False
        self._move_to(index, self._now())
        return True

    def request_submit(self) -> bool:
        """제출 확인 창을 연다. 실제 제출은 confirm_submit()."""
        self._require(SessionPhase.IN_PROGRESS)
        if self.submission.closed:
            return False
        self.confirm_pending = True
        return True

    def cancel_submit(self) -> None:
        self.confirm_pending = False

    async def confirm_submit(self) -> SubmissionOutcome:
        if self.phase in (SessionPhase.SUBMITTING, SessionPhase.ENDED):
            return SubmissionOutcome(trigger=SubmitTrigger.MANUAL, duplicate=True)
        self._require(SessionPhase.IN_PROGRESS)
        if not self.confirm_pending:
            raise SessionStateError("제출 확인 절차 없이 제출할 수 없습니다.")
        return await self._submit(SubmitTrigger.MANUAL)

    # ══════════════════════════════════════════════════════════════════════
    # 환경 신호
    # ══════════════════════════════════════════════════════════════════════

    async def handle_event(self, event: EnvironmentEvent) -> Observation:
        if self.monitor is None:
            return Observation(None, False)
        observation = self.monitor.observe(event)
        if observation.activity is not None:
            await self._escalate(observation.activity)
        return observation

    def _on_fullscreen_change(self, is_fullscreen: bool) -> None:
        if self.phase != SessionPhase.IN_PROGRESS or not self.exam.policy.require_fullscreen:
            return
        if is_fullscreen:
            self.fullscreen_overlay = False
            return
        self.fullscreen_overlay = True
        activity = self.monitor.fullscreen_changed(False)
        self._spawn(self._request_fullscreen_again())
        if activity is not None:
            self._spawn(self._escalate(activity))

    async def _request_fullscreen_again(self) -> None:
        try:
            await self.fullscreen.request_fullscreen()
        except Exception as e:
            logger.warning(f"전체화면 재요청 실패: {e}")

    async def _escalate(self, activity: SuspiciousActivity) -> None:
        if activity.type == SignalType.TAB_SWITCH and self._count_tab_switch():
            logger.warning(f"탭 전환 {self.tab_switches}회, 자동 제출: exam={self.exam_id}")
            await self._submit(SubmitTrigger.POLICY)
            return
        if not self.exam.policy.auto_terminate_on_suspicious:
            return
        if activity.severity.rank < self.settings.auto_terminate_min_severity.rank:
            return
        logger.warning(f"의심 행위로 자동 제출: {activity.type.value}")
        await self._submit(SubmitTrigger.POLICY)

    def _count_tab_switch(self) -> bool:
        """횟수를 올리고 즉시 저장한다. 한도(자동 종료 정책과 별개)에 닿으면 True."""
        self.tab_switches += 1
        self.persistence.save(self.snapshot())
        limit = self.settings.tab_switch_limit
        return limit > 0 and self.tab_switches >= limit

    # ══════════════════════════════════════════════════════════════════════
    # 주기 처리
    # ══════════════════════════════════════════════════════════════════════

    async def tick(self) -> None:
        """1초 경과 처리. 진행 중 단계가 아니면 아무것도 하지 않는다."""
        if self.phase != SessionPhase.IN_PROGRESS:
            return
        self._ticks += 1
        now = self._now()

        if self.clock.tick():
            logger.info(f"시험 시간 종료: exam={self.exam_id}")
            await self._submit(SubmitTrigger.TIMEOUT)
            return

        if self.question_timer is not None:
            expired = self.question_timer.tick(self.current_question_id)
            if expired is not None:
                await self._on_question_expired(expired, now)
                if self.phase != SessionPhase.IN_PROGRESS:
                    return

        for activity in self.monitor.tick():
            await self._escalate(activity)
            if self.phase != SessionPhase.IN_PROGRESS:
                return

        if self._ticks % self.settings.progress_save_every == 0:
            self.persistence.save(self.snapshot())

    async def _on_question_expired(self, question_id: str, now: float) -> None:
        self._fold_time(question_id, now)
        self.runtime[question_id].locked = True
        logger.info(f"문항 시간 종료, 잠금: {question_id}")
        if self.current_index < len(self.question_order) - 1:
            self._move_to(self.current_index + 1, now)
        else:
            await self._submit(SubmitTrigger.QUESTION_TIMEOUT)

    # ══════════════════════════════════════════════════════════════════════
    # 제출
    # ══════════════════════════════════════════════════════════════════════

    async def _submit(self, trigger: SubmitTrigger) -> SubmissionOutcome:
        if self.phase != SessionPhase.IN_PROGRESS or self.submission.closed:
            return SubmissionOutcome(trigger=trigger, duplicate=True)

        now = self._now()
        self._transition(SessionPhase.SUBMITTING)
        self._submit_settled = asyncio.Event()
        self.confirm_pending = False
        self.error = None
        self.monitor.stop()

        try:
            outcome = await self.submission.submit(trigger, lambda: self._build_payload(now))
            self.outcome = outcome

            if outcome.accepted or outcome.navigate_to:
                if not outcome.accepted:
                    self.error = {"message": outcome.message, "action": "dashboard"}
                self._transition(SessionPhase.ENDED)
                await self._teardown()
            else:
                self.error = {"message": outcome.message, "action": "retry"}
                self._transition(SessionPhase.IN_PROGRESS)
                self.monitor.start()
            return outcome
        finally:
            self._submit_settled.set()

    def _build_payload(self, now: float) -> SubmissionPayload:
        qid = self.current_question_id
        self._fold_time(qid, now)
        # 제출 실패 후 시험이 계속되면 현재 문항 체류 시간을 이어서 잰다
        self.runtime[qid].started_at = now
        return build_payload(
            self.exam.id, self.question_order, self.answers, self.runtime, self.monitor.log,
        )

    # ══════════════════════════════════════════════════════════════════════
    # 종료
    # ══════════════════════════════════════════════════════════════════════

    async def close(self) -> None:
        """
        화면 이탈(언마운트). 진행 중이던 세션은 중단 처리하고 자원을 반납한다.
        전송 중인 제출은 취소하지 않고 결과가 나올 때까지 기다린다.
        """
        if self.phase == SessionPhase.SUBMITTING and self._submit_settled is not None:
            logger.info(f"제출 완료 대기 후 종료: exam={self.exam_id}")
            await self._submit_settled.wait()
        if not self.phase.is_terminal:
            self._transition(SessionPhase.ABORTED)
        await self._teardown()

    async def _abort(self, message: str) -> SessionPhase:
        self.error = {"message": message, "action": "dashboard"}
        self._transition(SessionPhase.ABORTED)
        await self._teardown()
        return self.phase

    async def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self._ticker.stop()
        if self.clock is not None:
            self.clock.stop()
        if self.question_timer is not None:
            self.question_timer.stop()
        if self.monitor is not None:
            self.monitor.stop()
        if self._unsubscribe_fullscreen is not None:
            self._unsubscribe_fullscreen()
            self._unsubscribe_fullscreen = None
        self.persistence.cancel()
        if not self.submission.completed:
            await self.submission.release_resources()
        if self.channel is not None:
            await self.channel.disconnect()
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        logger.info(f"세션 정리 완료: exam={self.exam_id} phase={self.phase.value}")

    async def wait_pending(self) -> None:
        """백그라운드로 띄운 작업(전체화면 재요청, 자동 제출 등)이 끝날 때까지 대기."""
        current = asyncio.current_task()
        while True:
            pending = [t for t in self._tasks if t is not current and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ══════════════════════════════════════════════════════════════════════
    # 내부 헬퍼
    # ══════════════════════════════════════════════════════════════════════

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _runtime_for(self, question_id: str) -> QuestionRuntimeState:
        try:
            return self.runtime[question_id]
        except KeyError:
            raise InvalidAnswerError(f"시험에 없는 문항입니다: {question_id}") from None

    def _fold_time(self, question_id: str, now: float) -> None:
        state = self.runtime[question_id]
        if state.started_at is not None:
            state.time_spent_seconds += max(0, round(now - state.started_at))
            state.started_at = None

    def _enter_question(self, now: float) -> None:
        qid = self.current_question_id
        state = self.runtime[qid]
        state.started_at = now
        if self.question_timer is not None:
            self.question_timer.enter(self.current_question, locked=state.locked)

    def _move_to(self, index: int, now: float) -> None:
        self._fold_time(self.current_question_id, now)
        self.current_index = index
        self._enter_question(now)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            answers={qid: exam_service.answer_to_wire(v) for qid, v in self.answers.items()},
            time_left=self.clock.remaining if self.clock else None,
            current_question_index=self.current_index,
            started_at=self.started_at,
            tab_switch_count=self.tab_switches,
        )

    def state_view(self) -> dict:
        """화면 렌더링용 읽기 모델."""
        view = {
            "phase": self.phase.value,
            "exam_id": self.exam_id,
            "error": self.error,
            "navigate_to": self.outcome.navigate_to if self.outcome else (
                self.settings.dashboard_path if self.phase == SessionPhase.ABORTED else None
            ),
            "navigate_delay": self.outcome.delay if self.outcome else 0.0,
            "message": self.outcome.message if self.outcome else None,
        }
        if self.exam is None:
            return view

        qid = self.current_question_id
        question = self.current_question
        state = self.runtime[qid]
        answer = self.answers.get(qid)
        total = len(self.question_order)
        answered = exam_service.count_answered(self.answers)
        view.update({
            "title": self.exam.title,
            "policy": self.exam.policy.model_dump(by_alias=True),
            "total": total,
            "current_index": self.current_index,
            "question": {
                "id": question.id,
                "type": question.type.value,
                "text": question.question_text,
                "options": question.options,
                "points": question.points,
                "answer": exam_service.answer_to_wire(answer) if answer is not None else None,
                "locked": state.locked,
                "marked_for_review": state.marked_for_review,
            },
            "time_left": self.clock.remaining,
            "time_left_display": format_time(self.clock.remaining),
            "question_time_left": self.question_timer.time_left if self.question_timer else None,
            "answered_count": answered,
            "unanswered_count": total - answered,
            "navigator": [
                {
                    "index": i,
                    "id": q,
                    "answered": exam_service.is_answered(self.answers.get(q)),
                    "locked": self.runtime[q].locked,
                    "marked_for_review": self.runtime[q].marked_for_review,
                }
                for i, q in enumerate(self.question_order)
            ],
            "confirm_pending": self.confirm_pending,
            "fullscreen_overlay": self.fullscreen_overlay,
            "suspicious_count": len(self.monitor.log) if self.monitor else 0,
            "tab_switch_count": self.tab_switches,
            "tab_switch_limit": self.settings.tab_switch_limit,
            **self.alerts.view(),
        })
        return view


def _embedded_snapshot(data: dict) -> Optional[SessionSnapshot]:
    """시작 응답에 진행 상태가 실려 온 경우."""
    if not any(data.get(k) is not None for k in _EMBEDDED_PROGRESS_KEYS):
        return None
    try:
        return SessionSnapshot.model_validate({k: data.get(k) for k in _EMBEDDED_PROGRESS_KEYS + ("startedAt",)})
    except ValidationError as e:
        logger.warning(f"시작 응답의 진행 상태 무시: {e}")
        return None


def _load_failure_message(error: ExamLoadError) -> str:
    if error.unavailable:
        return (
            "This exam is no longer available. If you missed the scheduled time, "
            "please check the Unattempted Exams section in My Exams."
        )
    return "Failed to load exam. Please try again."
