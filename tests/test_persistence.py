import asyncio
import json
import os

import pytest

from conftest import FakeBackend
from proctor_cbt.models.session_state import SessionSnapshot
from proctor_cbt.services.persistence import LocalSnapshotStore, ProgressPersistence


def test_local_store_round_trip_and_clear(tmp_path):
    store = LocalSnapshotStore(str(tmp_path / "snaps"), "exam-1")
    assert store.read() is None
    store.write(SessionSnapshot(answers={"q1": ["a", "b"]}, time_left=12, current_question_index=0))
    with open(store.path, encoding="utf-8") as f:
        assert json.load(f)["timeLeft"] == 12
    assert store.read().answers == {"q1": ["a", "b"]}
    store.clear()
    assert not os.path.exists(store.path)
    store.clear()


def test_corrupt_local_snapshot_is_ignored(tmp_path):
    store = LocalSnapshotStore(str(tmp_path), "exam-1")
    with open(store.path, "w", encoding="utf-8") as f:
        f.write("{not json")
    assert store.read() is None


@pytest.mark.asyncio
async def test_remote_restore_failure_returns_none():
    backend = FakeBackend()
    backend.progress_error = True
    persistence = ProgressPersistence("exam-1", backend)
    assert await persistence.restore() is None


@pytest.mark.asyncio
async def test_save_writes_local_and_remote(tmp_path):
    backend = FakeBackend()
    store = LocalSnapshotStore(str(tmp_path), "exam-1")
    persistence = ProgressPersistence("exam-1", backend, store)
    persistence.save(SessionSnapshot(time_left=5))
    await asyncio.sleep(0)
    assert backend.saved[0].time_left == 5
    assert persistence.restore_local().time_left == 5
    persistence.clear_local()
    assert persistence.restore_local() is None


@pytest.mark.asyncio
async def test_save_skips_remote_while_previous_in_flight():
    backend = FakeBackend()
    persistence = ProgressPersistence("exam-1", backend)
    persistence.save(SessionSnapshot(time_left=3))
    persistence.save(SessionSnapshot(time_left=2))
    await asyncio.sleep(0)
    assert [s.time_left for s in backend.saved] == [3]
    persistence.save(SessionSnapshot(time_left=1))
    await asyncio.sleep(0)
    assert [s.time_left for s in backend.saved] == [3, 1]


@pytest.mark.asyncio
async def test_remote_save_failures_are_counted_not_raised():
    backend = FakeBackend()
    backend.save_error = True
    persistence = ProgressPersistence("exam-1", backend)
    persistence.save(SessionSnapshot(time_left=3))
    await asyncio.sleep(0)
    assert persistence.failures == 1
    backend.save_error = False
    persistence.save(SessionSnapshot(time_left=2))
    await asyncio.sleep(0)
    assert persistence.failures == 0
