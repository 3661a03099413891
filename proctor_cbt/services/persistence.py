"""
services/persistence.py

진행 상태 스냅샷 저장/복원.

  - save(): 원격 저장은 fire-and-forget. 실패는 삼키고 다음 tick 에 다시 시도한다.
  - restore(): 세션 시작 시 한 번, 원격만 조회. 로컬 파일은 restore_local().
  - 로컬 스냅샷은 원격 저장과 함께 갱신되며, 제출 성공 시 삭제된다.
"""

import asyncio
import json
import logging
import os
from typing import Optional, Set

from pydantic import ValidationError

from proctor_cbt.errors import PersistenceError
from proctor_cbt.models.session_state import SessionSnapshot

logger = logging.getLogger(__name__)


class LocalSnapshotStore:
    """시험·학생별 JSON 파일 하나."""

    def __init__(self, directory: str, key: str):
        self.path = os.path.join(directory, f"exam_session_{key}.json")

    def read(self) -> Optional[SessionSnapshot]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return SessionSnapshot.model_validate(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"로컬 스냅샷 읽기 실패: {e}")
            return None

    def write(self, snapshot: SessionSnapshot) -> None:
        try:
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_wire(), f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning(f"로컬 스냅샷 저장 실패: {e}")

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"로컬 스냅샷 삭제 실패: {e}")


class ProgressPersistence:

    def __init__(self, exam_id: str, backend, local: Optional[LocalSnapshotStore] = None):
        self.exam_id = exam_id
        self.backend = backend
        self.local = local
        self._in_flight: Set[asyncio.Task] = set()
        self.failures = 0

    async def restore(self) -> Optional[SessionSnapshot]:
        """원격 스냅샷. 없거나 실패하면 None (로컬 폴백은 호출자가 순서를 정한다)."""
        try:
            snapshot = await self.backend.get_progress(self.exam_id)
        except PersistenceError as e:
            logger.warning(f"원격 진행 상태 복원 실패: {e}")
            return None
        if snapshot is not None:
            logger.info(f"원격 진행 상태 복원: exam={self.exam_id}")
        return snapshot

    def restore_local(self) -> Optional[SessionSnapshot]:
        if self.local is None:
            return None
        snapshot = self.local.read()
        if snapshot is not None:
            logger.info(f"로컬 진행 상태 복원: exam={self.exam_id}")
        return snapshot

    def save(self, snapshot: SessionSnapshot) -> None:
        """기다리지 않는다. 이전 저장이 아직 진행 중이면 이번 원격 저장은 건너뛴다."""
        if self.local is not None:
            self.local.write(snapshot)
        if any(not task.done() for task in self._in_flight):
            return
        task = asyncio.get_running_loop().create_task(self._send(snapshot))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _send(self, snapshot: SessionSnapshot) -> None:
        try:
            await self.backend.save_progress(self.exam_id, snapshot)
            self.failures = 0
        except PersistenceError as e:
            self.failures += 1
            logger.debug(f"진행 상태 저장 실패 ({self.failures}회 연속): {e}")

    def clear_local(self) -> None:
        if self.local is not None:
            self.local.clear()

    def cancel(self) -> None:
        for task in list(self._in_flight):
            task.cancel()
        self._in_flight.clear()
