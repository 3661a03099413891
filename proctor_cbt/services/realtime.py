"""
services/realtime.py

감독관 실시간 채널 (python-socketio AsyncClient).

세션마다 하나씩 주입되며 connect()/disconnect() 수명이 세션과 같다.
publish() 는 기다리지 않는다. 전송 실패는 로그만 남기고 로컬 기록에는 영향이 없다.
"""

import asyncio
import logging
from typing import Optional, Set

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

import config
from proctor_cbt.models.activity import ProctorEvent

logger = logging.getLogger(__name__)

ACTIVITY_EVENT = "student-activity"


class ProctorChannel:

    def __init__(
        self,
        url: str = config.SOCKET_URL,
        token: str = config.AUTH_TOKEN,
        client: Optional[socketio.AsyncClient] = None,
    ):
        self.url = url
        self.token = token
        self._sio = client or socketio.AsyncClient(reconnection=True)
        self._pending: Set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._sio.connected

    async def connect(self) -> bool:
        if self._sio.connected:
            return True
        try:
            await self._sio.connect(
                self.url,
                auth={"token": self.token} if self.token else None,
                transports=["polling", "websocket"],
                wait_timeout=config.HTTP_TIMEOUT,
            )
            logger.info(f"실시간 채널 연결: {self.url}")
            return True
        except (SocketConnectionError, asyncio.TimeoutError, OSError) as e:
            # 채널이 없어도 시험은 계속된다
            logger.warning(f"실시간 채널 연결 실패: {e}")
            return False

    def publish(self, event: ProctorEvent) -> None:
        if not self._sio.connected:
            logger.debug(f"채널 미연결, 이벤트 폐기: {event.type.value}")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._emit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _emit(self, event: ProctorEvent) -> None:
        try:
            await self._sio.emit(ACTIVITY_EVENT, event.to_wire())
        except Exception as e:
            logger.warning(f"실시간 이벤트 전송 실패: {e}")

    async def disconnect(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        if self._sio.connected:
            try:
                await self._sio.disconnect()
            except Exception as e:
                logger.warning(f"실시간 채널 종료 중 오류: {e}")
        logger.info("실시간 채널 종료")
