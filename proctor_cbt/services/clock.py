"""
services/clock.py

카운트다운 원시 객체(Countdown)와 1초 주기 구동기(Ticker).

Countdown 은 순수 객체로, tick() 호출 시에만 줄어든다.
실제 시간 흐름은 Ticker 하나가 담당하며, 세션의 모든 주기 작업은
이 Ticker 를 통해서만 실행된다 (teardown 경로가 하나뿐이도록).
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def format_time(seconds: int) -> str:
    """초 → HH:MM:SS"""
    seconds = max(0, int(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class Countdown:
    """
    단조 감소 카운트다운.

    remaining 은 0 미만으로 내려가지 않으며, 0 에 도달하는 tick 에서만
    tick() 이 True 를 반환한다 (세션당 정확히 한 번).
    """

    def __init__(self, seconds: int, on_tick: Optional[Callable[[int], None]] = None):
        self._remaining = max(0, int(seconds))
        self._on_tick = on_tick
        self._expired_fired = False
        self._running = False

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._running

    @property
    def expired(self) -> bool:
        return self._remaining == 0

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        self._running = False

    def tick(self, seconds: int = 1) -> bool:
        """
        카운트다운을 진행한다.

        Returns:
            이번 tick 으로 처음 0 에 도달하면 True. 만료 처리는 호출자가 한 번만 수행한다.
        """
        if not self._running:
            return False
        if self._remaining > 0:
            self._remaining = max(0, self._remaining - seconds)
            if self._on_tick:
                self._on_tick(self._remaining)
        if self._remaining == 0 and not self._expired_fired:
            self._expired_fired = True
            self._running = False
            return True
        return False


class Ticker:
    """
    interval 마다 비동기 콜백을 실행하는 단일 asyncio 태스크.

    start()/stop() 은 여러 번 호출해도 안전하다. stop() 이후에는
    콜백이 다시 실행되지 않는다.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]]):
        self.interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        me = asyncio.current_task()
        # stop() 후 재시작되면 이전 태스크는 자신이 더 이상 현재 태스크가 아님을 보고 끝난다
        while self._task is me:
            await asyncio.sleep(self.interval)
            if self._task is not me:
                break
            try:
                await self._callback()
            except Exception:
                logger.exception("tick 처리 중 오류")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
