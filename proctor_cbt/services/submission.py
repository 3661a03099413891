"""
services/submission.py

최종 제출 프로토콜.

  - 제출은 세션당 최대 한 번 (in_flight / completed 플래그)
  - 수동 제출 실패: 재시도 가능한 오류로 돌려주고 시험은 계속
  - 자동 제출(시간 종료·정책) 실패: 몇 차례 재시도 후에도 실패하면
    경고와 함께 학생을 시험에서 내보낸다
  - 성공/강제 종료 모두 카메라 해제 + 전체화면 해제
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Mapping, Optional, Sequence

from proctor_cbt.errors import SubmissionError
from proctor_cbt.models.activity import SuspiciousActivity
from proctor_cbt.models.session_state import (
    AnswerValue, QuestionRuntimeState, SessionSettings, SubmitTrigger,
)
from proctor_cbt.models.submission import AnswerRecord, SubmissionOutcome, SubmissionPayload
from proctor_cbt.services.exam_service import answer_to_wire, count_answered, is_answered

logger = logging.getLogger(__name__)

_MANUAL_FAILURE = "Failed to submit exam. Please try again."
_AUTO_FAILURE = "Failed to submit exam. Please contact your instructor."
_TIMEOUT_SUCCESS = "Time is up! Exam has been automatically submitted."


def build_payload(
    exam_id: str,
    question_order: Sequence[str],
    answers: Mapping[str, AnswerValue],
    runtime: Mapping[str, QuestionRuntimeState],
    activities: Sequence[SuspiciousActivity],
) -> SubmissionPayload:
    """
    제출 페이로드를 만든다. 문항 체류 시간은 호출 전에 이미 누적되어 있어야 한다.
    답안 배열은 출제 순서를 따르며, 응답한 문항만 포함한다.
    """
    records: List[AnswerRecord] = []
    for qid in question_order:
        value = answers.get(qid)
        if not is_answered(value):
            continue
        state = runtime.get(qid) or QuestionRuntimeState()
        records.append(AnswerRecord(
            question_id=qid,
            answer=answer_to_wire(value),
            time_spent=state.time_spent_seconds,
            is_locked=state.locked,
        ))
    return SubmissionPayload(
        exam_id=exam_id,
        answers=records,
        total_questions=len(question_order),
        answered_questions=count_answered(answers),
        proctor_events=list(activities),
        submitted_at=datetime.now(timezone.utc),
    )


class SubmissionProtocol:

    def __init__(
        self,
        backend,
        camera,
        fullscreen,
        persistence,
        settings: SessionSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.camera = camera
        self.fullscreen = fullscreen
        self.persistence = persistence
        self.settings = settings
        self._sleep = sleep
        self.in_flight = False
        self.completed = False
        self.attempts = 0
        self.payload: Optional[SubmissionPayload] = None

    @property
    def closed(self) -> bool:
        return self.in_flight or self.completed

    async def submit(
        self,
        trigger: SubmitTrigger,
        build: Callable[[], SubmissionPayload],
    ) -> SubmissionOutcome:
        if self.closed:
            logger.info(f"중복 제출 요청 무시: {trigger.value}")
            return SubmissionOutcome(trigger=trigger, duplicate=True)

        self.in_flight = True
        try:
            # 수동 재시도는 그 사이 바뀐 답안을 반영해 새로 만들고,
            # 자동 재시도는 _send 안에서 같은 페이로드를 다시 보낸다
            self.payload = build()
            return await self._send(trigger, self.payload)
        finally:
            self.in_flight = False

    async def _send(self, trigger: SubmitTrigger, payload: SubmissionPayload) -> SubmissionOutcome:
        attempts = 1 + (self.settings.auto_submit_retries if trigger.is_auto else 0)
        last_error: Optional[SubmissionError] = None

        for attempt in range(1, attempts + 1):
            self.attempts += 1
            logger.info(f"제출 시도 {attempt}/{attempts}: exam={payload.exam_id} trigger={trigger.value}")
            try:
                response = await self.backend.submit_result(payload)
            except SubmissionError as e:
                last_error = e
                logger.warning(f"제출 실패 ({attempt}/{attempts}): {e}")
                if attempt < attempts:
                    await self._sleep(self.settings.auto_submit_retry_delay)
                continue

            self.completed = True
            await self.release_resources()
            self.persistence.clear_local()
            message = response.message or (_TIMEOUT_SUCCESS if trigger == SubmitTrigger.TIMEOUT else "Exam submitted.")
            return SubmissionOutcome(
                trigger=trigger,
                accepted=True,
                message=message,
                navigate_to=self.settings.dashboard_path,
                delay=0.0 if response.should_redirect else self.settings.post_submit_redirect_delay,
            )

        if not trigger.is_auto:
            return SubmissionOutcome(
                trigger=trigger,
                retryable=True,
                message=str(last_error) if last_error else _MANUAL_FAILURE,
            )

        # 연결이 끊겨도 학생을 시험 화면에 가두지 않는다
        logger.error(f"자동 제출 최종 실패, 시험 종료 처리: exam={payload.exam_id}")
        self.completed = True
        await self.release_resources()
        return SubmissionOutcome(
            trigger=trigger,
            message=_AUTO_FAILURE,
            navigate_to=self.settings.dashboard_path,
        )

    async def release_resources(self) -> None:
        self.camera.release()
        try:
            await self.fullscreen.exit_fullscreen()
        except Exception as e:
            logger.error(f"전체화면 해제 실패: {e}")
