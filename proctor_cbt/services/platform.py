"""
services/platform.py

전체화면/카메라 기능 인터페이스와 브라우저 브리지 구현.

컨트롤러는 벤더 접두어(webkit/moz/ms)나 실제 미디어 API 를 모른다.
시험 페이지가 실제 브라우저 API 를 호출하고, 결과를 로컬 API 로 보고하며,
컨트롤러가 내리는 명령(request-fullscreen 등)은 BrowserBridge 큐에 쌓였다가
페이지가 GET /api/commands 로 가져간다.
"""

import logging
from typing import Callable, List, Optional, Protocol

logger = logging.getLogger(__name__)

FullscreenListener = Callable[[bool], None]


class FullscreenCapability(Protocol):
    async def request_fullscreen(self) -> bool: ...

    async def exit_fullscreen(self) -> None: ...

    def is_fullscreen(self) -> bool: ...

    def on_fullscreen_change(self, listener: FullscreenListener) -> Callable[[], None]: ...


class CameraCapability(Protocol):
    @property
    def active(self) -> bool: ...

    async def acquire(self) -> bool: ...

    def release(self) -> None: ...


class BrowserBridge:
    """
    페이지와 컨트롤러 사이의 상태/명령 버퍼.

    Attributes:
        camera_granted:  페이지가 보고한 getUserMedia 결과.
        fullscreen:      페이지가 보고한 현재 전체화면 여부.
    """

    def __init__(self):
        self.camera_granted = False
        self.fullscreen = False
        self._commands: List[dict] = []
        self._listeners: List[FullscreenListener] = []

    # ── 명령 큐 ──────────────────────────────────────────────────────────────

    def push(self, command: str, **params) -> None:
        self._commands.append({"command": command, **params})

    def drain(self) -> List[dict]:
        commands, self._commands = self._commands, []
        return commands

    # ── 페이지 보고 ──────────────────────────────────────────────────────────

    def report_permissions(self, camera_granted: bool, fullscreen: bool) -> None:
        self.camera_granted = camera_granted
        self.fullscreen = fullscreen

    def report_fullscreen(self, is_fullscreen: bool) -> None:
        changed = is_fullscreen != self.fullscreen
        self.fullscreen = is_fullscreen
        if not changed:
            return
        for listener in list(self._listeners):
            listener(is_fullscreen)

    def subscribe(self, listener: FullscreenListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class BrowserFullscreen:

    def __init__(self, bridge: BrowserBridge):
        self.bridge = bridge

    async def request_fullscreen(self) -> bool:
        # 실제 진입 여부는 이후 fullscreenchange 보고로 확정된다
        self.bridge.push("request-fullscreen")
        return self.bridge.fullscreen

    async def exit_fullscreen(self) -> None:
        self.bridge.push("exit-fullscreen")

    def is_fullscreen(self) -> bool:
        return self.bridge.fullscreen

    def on_fullscreen_change(self, listener: FullscreenListener) -> Callable[[], None]:
        return self.bridge.subscribe(listener)


class BrowserCamera:

    def __init__(self, bridge: BrowserBridge):
        self.bridge = bridge
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    async def acquire(self) -> bool:
        self._active = self.bridge.camera_granted
        return self._active

    def release(self) -> None:
        if not self._active and not self.bridge.camera_granted:
            return
        self._active = False
        self.bridge.camera_granted = False
        self.bridge.push("stop-camera")
        logger.info("카메라 해제 요청")


class NullFullscreen:
    """전체화면을 쓰지 않는 환경용 (헤드리스 실행 등)."""

    def __init__(self):
        self._listeners: List[FullscreenListener] = []

    async def request_fullscreen(self) -> bool:
        return False

    async def exit_fullscreen(self) -> None:
        return None

    def is_fullscreen(self) -> bool:
        return False

    def on_fullscreen_change(self, listener: FullscreenListener) -> Callable[[], None]:
        return lambda: None


class NullCamera:

    @property
    def active(self) -> bool:
        return False

    async def acquire(self) -> bool:
        return False

    def release(self) -> None:
        return None
