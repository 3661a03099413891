import copy

import pytest

from proctor_cbt.errors import ExamLoadError, PersistenceError, SubmissionError
from proctor_cbt.models.activity import Severity, SignalType, SuspiciousActivity
from proctor_cbt.models.session_state import QuestionRuntimeState, SessionSettings
from proctor_cbt.models.submission import SubmissionResponse
from proctor_cbt.services.session_controller import ExamSessionController
from proctor_cbt.services.submission import build_payload


def make_exam(questions=None, duration=600, **flags):
    """백엔드 시작 응답의 data 부분. 정책 플래그는 최상위 camelCase 로 넣는다."""
    if questions is None:
        questions = [
            {"_id": "q1", "questionText": "2 + 2 = ?", "type": "multiple-choice", "options": ["3", "4", "5"]},
            {"_id": "q2", "questionText": "짝수를 모두 고르시오", "type": "multiple-correct", "options": ["1", "2", "4"]},
            {"_id": "q3", "questionText": "HTTP 의 약자를 쓰시오", "type": "short-answer"},
        ]
    return {"_id": "exam-1", "title": "중간고사", "duration": duration, "questions": questions, **flags}


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:

    def __init__(self, exam=None, progress=None, submit_results=None, start_error=None):
        self.exam = exam if exam is not None else make_exam()
        self.progress = progress
        self.progress_error = False
        self.save_error = False
        self.start_error = start_error
        # True/None → 성공, SubmissionError 인스턴스 → 실패
        self.submit_results = list(submit_results or [])
        self.start_calls = []
        self.submitted = []
        self.submit_gate = None
        self.saved = []
        self.closed = False

    async def start_exam(self, exam_id, test_id=None):
        self.start_calls.append((exam_id, test_id))
        if self.start_error is not None:
            raise self.start_error
        return copy.deepcopy(self.exam)

    async def get_progress(self, exam_id):
        if self.progress_error:
            raise PersistenceError("progress unavailable")
        return self.progress

    async def save_progress(self, exam_id, snapshot):
        if self.save_error:
            raise PersistenceError("save failed")
        self.saved.append(snapshot)

    async def submit_result(self, payload):
        self.submitted.append(payload)
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        result = self.submit_results.pop(0) if self.submit_results else True
        if isinstance(result, Exception):
            raise result
        return SubmissionResponse(success=True, message="Exam submitted successfully")

    async def aclose(self):
        self.closed = True


class FakeChannel:

    def __init__(self):
        self.published = []
        self.connected = False
        self.disconnects = 0

    async def connect(self):
        self.connected = True
        return True

    def publish(self, event):
        self.published.append(event)

    async def disconnect(self):
        self.connected = False
        self.disconnects += 1


class FakeFullscreen:

    def __init__(self, grant=True):
        self.grant = grant
        self.state = False
        self.requests = 0
        self.exits = 0
        self.listeners = []

    async def request_fullscreen(self):
        self.requests += 1
        if self.grant and not self.state:
            self.state = True
        return self.state

    async def exit_fullscreen(self):
        self.exits += 1
        self.state = False

    def is_fullscreen(self):
        return self.state

    def on_fullscreen_change(self, listener):
        self.listeners.append(listener)

        def unsubscribe():
            if listener in self.listeners:
                self.listeners.remove(listener)

        return unsubscribe

    def user_exits(self):
        """사용자가 Esc 로 전체화면을 빠져나간 상황."""
        self.state = False
        self.grant = False
        for listener in list(self.listeners):
            listener(False)


class FakeCamera:

    def __init__(self, granted=True):
        self.granted = granted
        self._active = False
        self.releases = 0

    @property
    def active(self):
        return self._active

    async def acquire(self):
        self._active = self.granted
        return self._active

    def release(self):
        self._active = False
        self.releases += 1


class Sleeps:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return SessionSettings(auto_submit_retries=2, auto_submit_retry_delay=1.0)


@pytest.fixture
def make_controller(clock, settings):
    """컨트롤러와 가짜 협력 객체를 한 번에 만든다."""

    def _make(backend=None, **kwargs):
        backend = backend or FakeBackend()
        parts = {
            "channel": FakeChannel(),
            "fullscreen": FakeFullscreen(),
            "camera": FakeCamera(),
            "sleep": Sleeps(),
        }
        parts.update(kwargs)
        controller = ExamSessionController(
            "exam-1",
            backend,
            student_id="student-1",
            settings=parts.pop("settings", settings),
            time_source=clock,
            **parts,
        )
        return controller

    return _make


def submission_failure(message="network down"):
    return SubmissionError(message)


def load_failure(message="Failed to start exam", unavailable=False):
    return ExamLoadError(message, unavailable=unavailable)


def make_payload():
    activity = SuspiciousActivity(type=SignalType.WINDOW_BLUR, description="blur", severity=Severity.MEDIUM)
    return build_payload(
        "exam-1",
        ["q1", "q2", "q3"],
        {"q1": "4", "q2": frozenset({"4", "2"}), "q3": "  "},
        {"q1": QuestionRuntimeState(time_spent_seconds=12, locked=True)},
        [activity],
    )
