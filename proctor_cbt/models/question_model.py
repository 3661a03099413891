"""
models/question_model.py

시험 정의(ExamDefinition)와 문항(Question) 모델.
백엔드 응답(camelCase)을 그대로 검증하여 불변 객체로 만든다.
"""

from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    MULTIPLE_CORRECT = "multiple-correct"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    ESSAY = "essay"

    @property
    def is_choice(self) -> bool:
        return self in (QuestionType.MULTIPLE_CHOICE, QuestionType.MULTIPLE_CORRECT, QuestionType.TRUE_FALSE)


class Question(BaseModel):
    """
    시험 문항 모델 (불변).
    options 는 선택형 문항에만 존재한다.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    id: str = Field(
        ...,
        validation_alias=AliasChoices("id", "_id"),
        description="문항 ID"
    )
    question_text: str = Field(
        "",
        validation_alias=AliasChoices("questionText", "question_text", "question"),
        description="발문"
    )
    type: QuestionType = Field(
        ...,
        validation_alias=AliasChoices("type", "questionType", "question_type"),
        description="문항 유형"
    )
    options: Optional[List[str]] = Field(
        None,
        description="보기 리스트 (선택형 문항 전용)"
    )
    time_limit: Optional[int] = Field(
        None,
        gt=0,
        description="문항별 제한 시간 (초). 없으면 정책 기본값 사용"
    )
    points: float = Field(1.0, ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        # 백엔드 ObjectId 등 문자열이 아닌 ID 를 허용
        return str(v)

    @model_validator(mode="after")
    def validate_options(self) -> "Question":
        """
        선택형 문항은 보기가 2개 이상, 서술형 문항은 보기가 없어야 한다.
        true-false 문항에 보기가 없으면 True/False 를 채운다.
        """
        if self.type == QuestionType.TRUE_FALSE and not self.options:
            object.__setattr__(self, "options", ["True", "False"])
        if self.type.is_choice:
            if not self.options or len(self.options) < 2:
                raise ValueError(f"선택형 문항({self.id})은 보기가 최소 2개 필요합니다.")
        elif self.options:
            object.__setattr__(self, "options", None)
        return self


class ExamPolicy(BaseModel):
    """시험별 감독 정책 플래그."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    require_fullscreen: bool = False
    prevent_tab_switch: bool = False
    prevent_copy_paste: bool = False
    time_per_question: bool = False
    auto_terminate_on_suspicious: bool = False
    allow_navigation: bool = True
    require_webcam: bool = False
    detect_head_movement: bool = False
    randomize_questions: bool = False


class ExamDefinition(BaseModel):
    """
    세션 시작 시 한 번 로드되는 시험 정의. 이후 변경되지 않는다.

    Attributes:
        duration:       전체 제한 시간 (초).
        question_order: 출제 순서 (문항 ID 리스트).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"))
    title: str = ""
    duration: int = Field(..., ge=0, description="전체 제한 시간 (초)")
    questions: List[Question] = Field(..., min_length=1)
    policy: ExamPolicy = Field(default_factory=ExamPolicy)
    question_order: List[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v)

    @model_validator(mode="before")
    @classmethod
    def collect_policy(cls, data):
        """백엔드는 정책 플래그를 최상위에 펼쳐서 보내므로 policy 로 모은다."""
        if isinstance(data, dict) and "policy" not in data:
            data = dict(data)
            data["policy"] = {
                k: v for k, v in data.items() if k in _POLICY_FIELDS
            }
        return data

    @model_validator(mode="after")
    def validate_order(self) -> "ExamDefinition":
        ids = [q.id for q in self.questions]
        if len(set(ids)) != len(ids):
            raise ValueError("문항 ID 가 중복되었습니다.")
        if self.question_order:
            order = [str(qid) for qid in self.question_order]
            if sorted(order) != sorted(ids):
                raise ValueError("questionOrder 가 문항 목록과 일치하지 않습니다.")
            object.__setattr__(self, "question_order", order)
        return self

    def question(self, question_id: str) -> Question:
        for q in self.questions:
            if q.id == question_id:
                return q
        raise KeyError(question_id)


_POLICY_FIELDS = set()
for _name in ExamPolicy.model_fields:
    _POLICY_FIELDS.add(_name)
    _POLICY_FIELDS.add(to_camel(_name))
