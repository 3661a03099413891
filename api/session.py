"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 브라우저에 UUID 세션 ID를 발급하고, 세션마다 시험 컨트롤러 하나와
페이지 브리지(BrowserBridge)를 보관한다.
TTL(기본 1시간) 경과 시 만료되며, 만료된 세션의 컨트롤러는 close() 로 정리한다.
모든 접근은 이벤트 루프 하나에서 일어나므로 잠금은 두지 않는다.
"""

import logging
import time
import uuid
from typing import Any, Optional

import config
from proctor_cbt.services.platform import BrowserBridge

logger = logging.getLogger(__name__)

_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}

SESSION_TTL = config.SESSION_TTL


def _new_state() -> dict[str, Any]:
    return {
        "bridge": BrowserBridge(),
        "controller": None,
        "backend": None,
    }


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    _sessions[sid] = _new_state()
    _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> Optional[dict[str, Any]]:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    if sid not in _sessions:
        return None
    if time.time() - _timestamps[sid] > SESSION_TTL:
        # 컨트롤러 정리는 cleanup_expired() 가 맡는다
        return None
    _timestamps[sid] = time.time()  # 접근 시 갱신
    return _sessions[sid]


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    if sid in _sessions:
        _sessions[sid][key] = value
        _timestamps[sid] = time.time()


async def reset(sid: str) -> None:
    """진행 중인 시험을 정리하고 새 브리지로 교체."""
    state = _sessions.get(sid)
    if state is None:
        return
    await _close_state(state)
    _sessions[sid] = _new_state()
    _timestamps[sid] = time.time()


async def cleanup_expired() -> int:
    """만료된 세션을 정리. 제거된 수 반환."""
    now = time.time()
    expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
    for sid in expired:
        state = _sessions.pop(sid)
        del _timestamps[sid]
        await _close_state(state)
    return len(expired)


async def close_all() -> None:
    """서버 종료 시 모든 세션 정리."""
    for sid in list(_sessions):
        state = _sessions.pop(sid)
        _timestamps.pop(sid, None)
        await _close_state(state)


async def _close_state(state: dict[str, Any]) -> None:
    controller = state.get("controller")
    if controller is not None:
        try:
            await controller.close()
        except Exception:
            logger.exception("시험 세션 정리 중 오류")
    backend = state.get("backend")
    if backend is not None:
        await backend.aclose()
