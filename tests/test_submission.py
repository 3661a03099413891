import pytest

from conftest import FakeBackend, FakeCamera, FakeFullscreen, Sleeps, make_payload, submission_failure
from proctor_cbt.models.session_state import SessionSettings, SubmitTrigger
from proctor_cbt.services.persistence import ProgressPersistence
from proctor_cbt.services.submission import SubmissionProtocol


def make_protocol(backend, settings=None):
    sleeps = Sleeps()
    camera = FakeCamera()
    fullscreen = FakeFullscreen()
    protocol = SubmissionProtocol(
        backend, camera, fullscreen, ProgressPersistence("exam-1", backend),
        settings or SessionSettings(), sleep=sleeps,
    )
    return protocol, camera, fullscreen, sleeps


def test_build_payload_includes_only_answered_in_order():
    data = make_payload().to_wire()
    assert data["examId"] == "exam-1"
    assert data["totalQuestions"] == 3
    assert data["answeredQuestions"] == 2
    assert data["answers"] == [
        {"questionId": "q1", "answer": "4", "timeSpent": 12, "isLocked": True},
        {"questionId": "q2", "answer": ["2", "4"], "timeSpent": 0, "isLocked": False},
    ]
    assert data["proctorEvents"][0]["type"] == "window-blur"
    assert "submittedAt" in data


@pytest.mark.asyncio
async def test_success_releases_resources_and_schedules_redirect():
    backend = FakeBackend()
    protocol, camera, fullscreen, _ = make_protocol(backend)
    outcome = await protocol.submit(SubmitTrigger.MANUAL, make_payload)
    assert outcome.accepted
    assert outcome.navigate_to == "/dashboard"
    assert outcome.delay == 3.5
    assert camera.releases == 1
    assert fullscreen.exits == 1
    duplicate = await protocol.submit(SubmitTrigger.TIMEOUT, make_payload)
    assert duplicate.duplicate
    assert len(backend.submitted) == 1


@pytest.mark.asyncio
async def test_auto_submit_retries_then_succeeds():
    backend = FakeBackend(submit_results=[submission_failure(), True])
    protocol, _, _, sleeps = make_protocol(backend)
    outcome = await protocol.submit(SubmitTrigger.TIMEOUT, make_payload)
    assert outcome.accepted
    assert protocol.attempts == 2
    assert sleeps.calls == [1.0]


@pytest.mark.asyncio
async def test_manual_failure_leaves_protocol_open():
    backend = FakeBackend(submit_results=[submission_failure("server said no")])
    protocol, camera, _, sleeps = make_protocol(backend)
    outcome = await protocol.submit(SubmitTrigger.MANUAL, make_payload)
    assert outcome.retryable
    assert outcome.message == "server said no"
    assert not protocol.closed
    assert camera.releases == 0
    assert sleeps.calls == []


@pytest.mark.asyncio
async def test_auto_failure_closes_and_exits():
    backend = FakeBackend(submit_results=[submission_failure()] * 2)
    protocol, camera, _, _ = make_protocol(backend, SessionSettings(auto_submit_retries=1))
    outcome = await protocol.submit(SubmitTrigger.POLICY, make_payload)
    assert not outcome.accepted
    assert not outcome.retryable
    assert outcome.navigate_to == "/dashboard"
    assert protocol.closed
    assert camera.releases == 1
