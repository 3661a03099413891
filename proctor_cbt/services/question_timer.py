"""
services/question_timer.py

문항별 카운트다운 관리자. timePerQuestion 정책일 때만 사용된다.

  - 잠기지 않은 문항에 들어오면 해당 문항의 제한 시간으로 새 카운트다운 시작
  - 문항이 바뀌면 이전 카운트다운은 폐기 (재시작)
  - 0 이 되면 만료된 문항 ID 를 돌려주고, 잠금/이동/제출은 호출자가 처리
"""

import logging
from typing import Optional

from proctor_cbt.models.question_model import Question
from proctor_cbt.services.clock import Countdown

logger = logging.getLogger(__name__)


class QuestionTimerManager:

    def __init__(self, default_limit: int):
        self.default_limit = default_limit
        self._question_id: Optional[str] = None
        self._countdown: Optional[Countdown] = None

    @property
    def active_question_id(self) -> Optional[str]:
        return self._question_id

    @property
    def time_left(self) -> Optional[int]:
        return self._countdown.remaining if self._countdown else None

    def limit_for(self, question: Question) -> int:
        return question.time_limit or self.default_limit

    def enter(self, question: Question, locked: bool) -> None:
        """
        문항 진입. 기존 카운트다운은 항상 폐기하고,
        잠긴 문항이면 새로 시작하지 않는다.
        """
        self.stop()
        if locked:
            return
        self._question_id = question.id
        self._countdown = Countdown(self.limit_for(question))
        self._countdown.start()

    def tick(self, current_question_id: Optional[str]) -> Optional[str]:
        """
        1초 진행. 만료되면 만료된 문항 ID 를 반환한다.

        카운트다운이 잡고 있는 문항이 현재 문항과 다르면 (이전 문항의 잔여 타이머)
        아무것도 하지 않고 폐기한다.
        """
        if self._countdown is None:
            return None
        if self._question_id != current_question_id:
            logger.debug(f"이전 문항 타이머 폐기: {self._question_id}")
            self.stop()
            return None
        if self._countdown.tick():
            expired = self._question_id
            self.stop()
            return expired
        return None

    def stop(self) -> None:
        if self._countdown is not None:
            self._countdown.stop()
        self._countdown = None
        self._question_id = None
