from fastapi.testclient import TestClient

from conftest import FakeBackend, load_failure, make_exam
from api.app import create_app
from proctor_cbt.models.session_state import SessionSettings
from proctor_cbt.services.platform import BrowserCamera, BrowserFullscreen
from proctor_cbt.services.session_controller import ExamSessionController


def client_with(backend):
    # 테스트 중에는 Ticker 가 돌지 않도록 주기를 길게 둔다
    settings = SessionSettings(tick_interval=3600)

    def factory(exam_id, test_id, bridge):
        controller = ExamSessionController(
            exam_id,
            backend,
            student_id="student-1",
            test_id=test_id,
            fullscreen=BrowserFullscreen(bridge),
            camera=BrowserCamera(bridge),
            settings=settings,
        )
        return controller, backend

    return TestClient(create_app(controller_factory=factory))


def test_no_exam_yet():
    with client_with(FakeBackend()) as client:
        assert client.get("/api/exam-state").json() == {"phase": None}
        response = client.post("/api/answer", json={"question_id": "q1", "answer": "4"})
        assert response.status_code == 404


def test_start_answer_navigate_and_submit():
    backend = FakeBackend()
    with client_with(backend) as client:
        view = client.post("/api/exams/exam-1/start", json={"test_id": "t-1"}).json()
        assert view["phase"] == "in-progress"
        assert view["time_left_display"] == "00:10:00"
        assert view["question"]["id"] == "q1"
        assert backend.start_calls == [("exam-1", "t-1")]

        body = client.post("/api/answer", json={"question_id": "q1", "answer": "4"}).json()
        assert body["ok"]
        assert body["state"]["question"]["answer"] == "4"

        assert client.post("/api/answer", json={"question_id": "q1", "answer": "9"}).status_code == 422
        assert client.post("/api/answer", json={"question_id": "zz", "answer": "9"}).status_code == 422

        body = client.post("/api/navigate", json={"target": 1}).json()
        assert body["state"]["current_index"] == 1
        client.post("/api/answer", json={"question_id": "q2", "answer": ["2", "4"]})

        assert client.post("/api/confirm-submit").status_code == 409
        body = client.post("/api/request-submit").json()
        assert body["state"]["confirm_pending"]
        assert body["state"]["unanswered_count"] == 1

        body = client.post("/api/confirm-submit").json()
        assert body["outcome"]["accepted"]
        assert body["state"]["phase"] == "ended"
        assert body["state"]["navigate_to"] == "/dashboard"

        again = client.post("/api/confirm-submit").json()
        assert again["outcome"]["duplicate"]
        assert len(backend.submitted) == 1
        assert backend.submitted[0].answered_questions == 2


def test_copy_event_is_blocked():
    with client_with(FakeBackend(make_exam(preventCopyPaste=True))) as client:
        client.post("/api/exams/exam-1/start", json={})
        body = client.post("/api/events", json={"kind": "copy"}).json()
        assert body["prevent_default"]
        assert body["activity"]["type"] == "copy-paste"
        assert body["activity"]["severity"] == "medium"
        state = client.get("/api/exam-state").json()
        assert state["alert"]["type"] == "copy-paste"
        assert state["warning_visible"]


def test_fullscreen_exit_requests_fullscreen_again():
    with client_with(FakeBackend(make_exam(requireFullscreen=True))) as client:
        view = client.post("/api/exams/exam-1/start", json={}).json()
        assert view["phase"] == "permissions-pending"

        view = client.post("/api/permissions", json={"camera_granted": False, "fullscreen": True}).json()
        assert view["phase"] == "in-progress"
        assert not view["fullscreen_overlay"]
        client.get("/api/commands")

        body = client.post("/api/events", json={"kind": "fullscreenchange", "isFullscreen": False}).json()
        assert body["prevent_default"] is False
        state = client.get("/api/exam-state").json()
        assert state["fullscreen_overlay"]
        assert state["phase"] == "in-progress"
        assert state["suspicious_count"] == 1
        commands = client.get("/api/commands").json()["commands"]
        assert {"command": "request-fullscreen"} in commands

        client.post("/api/events", json={"kind": "fullscreenchange", "isFullscreen": True})
        assert not client.get("/api/exam-state").json()["fullscreen_overlay"]


def test_webcam_denied_returns_403():
    with client_with(FakeBackend(make_exam(requireWebcam=True))) as client:
        client.post("/api/exams/exam-1/start", json={})
        response = client.post("/api/permissions", json={"camera_granted": False, "fullscreen": False})
        assert response.status_code == 403
        assert client.get("/api/exam-state").json()["phase"] == "aborted"


def test_load_failure_reports_abort():
    backend = FakeBackend(start_error=load_failure())
    with client_with(backend) as client:
        view = client.post("/api/exams/exam-1/start", json={}).json()
        assert view["phase"] == "aborted"
        assert view["navigate_to"] == "/dashboard"
        assert view["error"]["message"] == "Failed to load exam. Please try again."


def test_close_ends_session():
    with client_with(FakeBackend()) as client:
        client.post("/api/exams/exam-1/start", json={})
        body = client.post("/api/close").json()
        assert body == {"ok": True, "phase": "in-progress"}
        assert client.get("/api/exam-state").json() == {"phase": None}
