"""
models/submission.py

최종 제출 페이로드와 제출 결과 모델.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from proctor_cbt.models.activity import SuspiciousActivity
from proctor_cbt.models.session_state import SubmitTrigger


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, frozen=True)


class AnswerRecord(_CamelModel):
    question_id: str
    answer: Union[str, List[str]]
    time_spent: int = Field(default=0, ge=0)
    is_locked: bool = False


class SubmissionPayload(_CamelModel):
    """한 번만 만들어지는 제출 데이터."""

    exam_id: str
    answers: List[AnswerRecord]
    total_questions: int
    answered_questions: int
    proctor_events: List[SuspiciousActivity]
    submitted_at: datetime

    def to_wire(self) -> dict:
        data = self.model_dump(by_alias=True, mode="json", exclude={"proctor_events"})
        data["proctorEvents"] = [a.to_wire() for a in self.proctor_events]
        return data


class SubmissionResponse(_CamelModel):
    success: bool
    message: Optional[str] = None
    redirect: Optional[Union[bool, str]] = None
    error: Optional[str] = None

    @property
    def should_redirect(self) -> bool:
        return bool(self.redirect)


class SubmissionOutcome(BaseModel):
    """
    제출 시도 결과. 화면은 이 값만 보고 다음 행동을 결정한다.

    Attributes:
        accepted:    서버가 제출을 받아들였는지.
        retryable:   실패 후 학생이 다시 시도할 수 있는지 (수동 제출 실패).
        navigate_to: 이동해야 할 경로. None 이면 시험 화면 유지.
        delay:       navigate_to 로 이동하기 전 대기 시간 (초).
        duplicate:   이미 제출 중이거나 완료되어 무시된 요청.
    """

    trigger: SubmitTrigger
    accepted: bool = False
    retryable: bool = False
    message: Optional[str] = None
    navigate_to: Optional[str] = None
    delay: float = 0.0
    duplicate: bool = False
