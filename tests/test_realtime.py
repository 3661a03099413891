import asyncio

import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from proctor_cbt.models.activity import ProctorEvent, Severity, SignalType, SuspiciousActivity
from proctor_cbt.services.realtime import ACTIVITY_EVENT, ProctorChannel


class FakeSocket:

    def __init__(self, fail=False):
        self.fail = fail
        self.connected = False
        self.connect_kwargs = None
        self.emitted = []

    async def connect(self, url, **kwargs):
        if self.fail:
            raise SocketConnectionError("refused")
        self.connect_kwargs = dict(kwargs, url=url)
        self.connected = True

    async def emit(self, event, data):
        self.emitted.append((event, data))

    async def disconnect(self):
        self.connected = False


def proctor_event():
    activity = SuspiciousActivity(type=SignalType.TAB_SWITCH, description="switched", severity=Severity.MEDIUM)
    return ProctorEvent.from_activity("exam-1", "student-1", activity)


@pytest.mark.asyncio
async def test_connect_publish_disconnect():
    sock = FakeSocket()
    channel = ProctorChannel("http://proctor.test", token="tok", client=sock)
    assert await channel.connect()
    assert sock.connect_kwargs["auth"] == {"token": "tok"}
    channel.publish(proctor_event())
    await asyncio.sleep(0)
    event, data = sock.emitted[0]
    assert event == ACTIVITY_EVENT
    assert data["examId"] == "exam-1"
    assert data["studentId"] == "student-1"
    assert data["type"] == "tab-switch"
    await channel.disconnect()
    assert not channel.connected


@pytest.mark.asyncio
async def test_connect_failure_is_not_fatal():
    channel = ProctorChannel("http://proctor.test", token="", client=FakeSocket(fail=True))
    assert await channel.connect() is False
    channel.publish(proctor_event())
    await channel.disconnect()
