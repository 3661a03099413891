"""
errors.py — 시험 클라이언트 예외 분류

  - ExamLoadError:         시험 로드 실패 (치명적, 세션 중단)
  - PermissionDeniedError: 웹캠 권한 거부 (웹캠 필수 정책에서 치명적)
  - PersistenceError:      진행 상태 저장/복원 실패 (항상 조용히 재시도)
  - SubmissionError:       제출 실패 (수동 제출은 재시도, 자동 제출은 강제 종료)
  - SessionStateError:     현재 단계에서 허용되지 않는 동작
  - InvalidAnswerError:    문항 유형에 맞지 않는 답안
"""

from typing import Optional


class BackendError(RuntimeError):
    """백엔드 통신 실패."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExamLoadError(RuntimeError):
    def __init__(self, message: str, unavailable: bool = False):
        super().__init__(message)
        self.unavailable = unavailable


class PermissionDeniedError(RuntimeError):
    pass


class PersistenceError(RuntimeError):
    pass


class SubmissionError(RuntimeError):
    pass


class SessionStateError(RuntimeError):
    pass


class InvalidAnswerError(ValueError):
    pass
