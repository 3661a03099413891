"""
api/routes.py — FastAPI 엔드포인트

시험 페이지는 브라우저 이벤트를 /api/events 로 보내고,
컨트롤러 명령(전체화면 요청, 카메라 중지 등)은 /api/commands 로 가져간다.
"""

import logging
from typing import Any, List, Optional, Union

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

import config
import api.session as session
from proctor_cbt.errors import InvalidAnswerError, PermissionDeniedError, SessionStateError
from proctor_cbt.models.activity import EnvironmentEvent, EventKind
from proctor_cbt.models.session_state import SessionPhase
from proctor_cbt.services.backend_client import ExamBackendClient
from proctor_cbt.services.persistence import LocalSnapshotStore
from proctor_cbt.services.platform import BrowserBridge, BrowserCamera, BrowserFullscreen
from proctor_cbt.services.realtime import ProctorChannel
from proctor_cbt.services.session_controller import ExamSessionController

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class StartExamBody(BaseModel):
    test_id: Optional[str] = None

class PermissionsBody(BaseModel):
    camera_granted: bool = False
    fullscreen: bool = False

class AnswerBody(BaseModel):
    question_id: str
    answer: Union[str, List[str]]

class QuestionBody(BaseModel):
    question_id: str

class NavigateBody(BaseModel):
    target: Union[int, str] = "next"


# ── 컨트롤러 생성 ────────────────────────────────────────────────────────────

def default_controller_factory(exam_id: str, test_id: Optional[str], bridge: BrowserBridge):
    """실제 백엔드/실시간 채널에 연결된 컨트롤러. (controller, backend) 반환."""
    backend = ExamBackendClient()
    channel = ProctorChannel() if config.SOCKET_URL else None
    local_key = f"{exam_id}_{config.STUDENT_ID}" if config.STUDENT_ID else exam_id
    controller = ExamSessionController(
        exam_id,
        backend,
        student_id=config.STUDENT_ID,
        test_id=test_id,
        channel=channel,
        fullscreen=BrowserFullscreen(bridge),
        camera=BrowserCamera(bridge),
        local_store=LocalSnapshotStore(config.SNAPSHOT_DIR, local_key),
    )
    return controller, backend


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _state(request: Request) -> dict[str, Any]:
    state = session.get_session(request.state.session_id)
    if state is None:
        raise HTTPException(status_code=401, detail="세션이 만료되었습니다. 페이지를 새로고침해 주세요.")
    return state


def _controller(request: Request) -> ExamSessionController:
    controller = _state(request).get("controller")
    if controller is None:
        raise HTTPException(status_code=404, detail="진행 중인 시험이 없습니다.")
    return controller


def _conflict(e: SessionStateError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


# ── 엔드포인트 ───────────────────────────────────────────────────────────────

@router.post("/api/exams/{exam_id}/start")
async def start_exam(exam_id: str, body: StartExamBody, request: Request):
    sid = request.state.session_id
    await session.reset(sid)
    state = _state(request)

    factory = request.app.state.controller_factory
    controller, backend = factory(exam_id, body.test_id, state["bridge"])
    session.put(sid, "controller", controller)
    session.put(sid, "backend", backend)

    phase = await controller.load()
    if phase == SessionPhase.IN_PROGRESS:
        controller.start()
    logger.info(f"시험 시작 요청: exam={exam_id} phase={phase.value}")
    return controller.state_view()


@router.post("/api/permissions")
async def grant_permissions(body: PermissionsBody, request: Request):
    state = _state(request)
    controller = _controller(request)
    state["bridge"].report_permissions(body.camera_granted, body.fullscreen)
    try:
        await controller.grant_permissions()
    except PermissionDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except SessionStateError as e:
        raise _conflict(e)
    controller.start()
    return controller.state_view()


@router.post("/api/answer")
async def save_answer(body: AnswerBody, request: Request):
    controller = _controller(request)
    try:
        accepted = controller.answer_question(body.question_id, body.answer)
    except InvalidAnswerError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SessionStateError as e:
        raise _conflict(e)
    return {"ok": accepted, "state": controller.state_view()}


@router.post("/api/clear-answer")
async def clear_answer(body: QuestionBody, request: Request):
    controller = _controller(request)
    try:
        cleared = controller.clear_answer(body.question_id)
    except InvalidAnswerError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SessionStateError as e:
        raise _conflict(e)
    return {"ok": cleared, "state": controller.state_view()}


@router.post("/api/review")
async def toggle_review(body: QuestionBody, request: Request):
    controller = _controller(request)
    try:
        marked = controller.toggle_review(body.question_id)
    except InvalidAnswerError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SessionStateError as e:
        raise _conflict(e)
    return {"marked_for_review": marked, "state": controller.state_view()}


@router.post("/api/navigate")
async def navigate(body: NavigateBody, request: Request):
    controller = _controller(request)
    try:
        moved = controller.navigate(body.target)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SessionStateError as e:
        raise _conflict(e)
    return {"ok": moved, "state": controller.state_view()}


@router.post("/api/request-submit")
async def request_submit(request: Request):
    controller = _controller(request)
    try:
        opened = controller.request_submit()
    except SessionStateError as e:
        raise _conflict(e)
    return {"ok": opened, "state": controller.state_view()}


@router.post("/api/cancel-submit")
async def cancel_submit(request: Request):
    controller = _controller(request)
    controller.cancel_submit()
    return controller.state_view()


@router.post("/api/confirm-submit")
async def confirm_submit(request: Request):
    controller = _controller(request)
    try:
        outcome = await controller.confirm_submit()
    except SessionStateError as e:
        raise _conflict(e)
    return {"outcome": outcome.model_dump(mode="json"), "state": controller.state_view()}


@router.post("/api/events")
async def report_event(event: EnvironmentEvent, request: Request):
    state = _state(request)
    if event.kind == EventKind.FULLSCREEN_CHANGE:
        # 전체화면 변화는 브리지 구독자(컨트롤러)에게 전달된다
        state["bridge"].report_fullscreen(bool(event.is_fullscreen))
        return {"prevent_default": False, "activity": None}

    controller = _controller(request)
    observation = await controller.handle_event(event)
    activity = observation.activity
    return {
        "prevent_default": observation.prevent_default,
        "activity": activity.to_wire() if activity else None,
    }


@router.get("/api/commands")
async def drain_commands(request: Request):
    return {"commands": _state(request)["bridge"].drain()}


@router.get("/api/exam-state")
async def exam_state(request: Request):
    state = _state(request)
    controller = state.get("controller")
    if controller is None:
        return {"phase": None}
    return controller.state_view()


@router.post("/api/close")
async def close_exam(request: Request):
    sid = request.state.session_id
    controller = _controller(request)
    phase = controller.phase
    await session.reset(sid)
    return {"ok": True, "phase": phase.value}
