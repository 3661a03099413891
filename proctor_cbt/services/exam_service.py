"""
services/exam_service.py

답안 정규화 및 출제 순서 관련 비즈니스 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경 없음.
"""

import random
from collections.abc import Iterable, Mapping
from typing import Dict, List, Optional

from proctor_cbt.errors import InvalidAnswerError
from proctor_cbt.models.question_model import ExamDefinition, Question, QuestionType
from proctor_cbt.models.session_state import AnswerValue


def normalize_answer(question: Question, value: object) -> AnswerValue:
    """
    사용자 입력을 문항 유형에 맞는 답안 값으로 변환한다.

    - multiple-correct: 문자열 집합(frozenset). 단일 문자열도 1개짜리 집합으로 취급.
    - 선택형(multiple-choice, true-false): 보기 중 하나의 문자열.
    - 서술형(short-answer, essay): 임의의 문자열.

    Raises:
        InvalidAnswerError: 보기에 없는 값이거나 타입이 맞지 않는 경우.
    """
    if question.type == QuestionType.MULTIPLE_CORRECT:
        if isinstance(value, str):
            items = {value}
        elif isinstance(value, Iterable):
            items = set(value)
        else:
            raise InvalidAnswerError(f"문항 {question.id}: 복수 정답형 답안은 문자열 목록이어야 합니다.")
        unknown = [v for v in items if not isinstance(v, str) or v not in question.options]
        if unknown:
            raise InvalidAnswerError(f"문항 {question.id}: 보기에 없는 답안 {unknown}")
        return frozenset(items)

    if not isinstance(value, str):
        raise InvalidAnswerError(f"문항 {question.id}: 답안은 문자열이어야 합니다.")
    if question.type.is_choice and value not in question.options:
        raise InvalidAnswerError(f"문항 {question.id}: 보기에 없는 답안 '{value}'")
    return value


def is_answered(value: Optional[AnswerValue]) -> bool:
    """빈 문자열, 빈 집합, 공백만 있는 답안은 미응답으로 본다."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return len(value) > 0


def count_answered(answers: Mapping[str, AnswerValue]) -> int:
    return sum(1 for v in answers.values() if is_answered(v))


def answer_to_wire(value: AnswerValue):
    """JSON 직렬화용. 집합은 정렬된 리스트로 변환."""
    if isinstance(value, str):
        return value
    return sorted(value)


def answers_from_wire(exam: ExamDefinition, raw: Mapping[str, object]) -> Dict[str, AnswerValue]:
    """
    스냅샷의 답안 맵을 복원한다.
    알 수 없는 문항이나 유형이 맞지 않는 답안은 버린다 (재개를 막지 않기 위해).
    """
    restored: Dict[str, AnswerValue] = {}
    known = {q.id: q for q in exam.questions}
    for qid, value in raw.items():
        question = known.get(str(qid))
        if question is None or value is None:
            continue
        try:
            restored[question.id] = normalize_answer(question, value)
        except InvalidAnswerError:
            continue
    return restored


def build_question_order(exam: ExamDefinition, student_id: Optional[str] = None) -> List[str]:
    """
    출제 순서를 결정한다.

    우선순위:
      1. 백엔드가 내려준 questionOrder
      2. randomizeQuestions 정책이면 (시험, 학생) 기준 고정 시드로 섞은 순서
         (새로고침해도 같은 순서여야 스냅샷의 인덱스가 유효하다)
      3. 문항 목록 순서
    """
    if exam.question_order:
        return list(exam.question_order)
    order = [q.id for q in exam.questions]
    if exam.policy.randomize_questions:
        rng = random.Random(f"{exam.id}:{student_id or ''}")
        rng.shuffle(order)
    return order


def clamp_index(index: int, total: int) -> int:
    return max(0, min(index, total - 1))
