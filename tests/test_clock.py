import asyncio

import pytest

from proctor_cbt.models.question_model import Question
from proctor_cbt.services.clock import Countdown, Ticker, format_time
from proctor_cbt.services.question_timer import QuestionTimerManager


def test_format_time():
    assert format_time(0) == "00:00:00"
    assert format_time(3725) == "01:02:05"
    assert format_time(-5) == "00:00:00"


def test_countdown_expires_once_and_never_goes_negative():
    countdown = Countdown(2)
    countdown.start()
    assert countdown.tick() is False
    assert countdown.tick() is True
    assert countdown.remaining == 0
    assert countdown.tick() is False
    assert countdown.remaining == 0


def test_countdown_does_not_move_until_started():
    countdown = Countdown(5)
    assert countdown.tick() is False
    assert countdown.remaining == 5


@pytest.mark.asyncio
async def test_ticker_stops_from_inside_callback():
    calls = []

    async def callback():
        calls.append(1)
        if len(calls) == 3:
            ticker.stop()

    ticker = Ticker(0.001, callback)
    ticker.start()
    ticker.start()
    await asyncio.sleep(0.05)
    assert len(calls) == 3
    assert not ticker.running


@pytest.mark.asyncio
async def test_ticker_survives_callback_errors():
    calls = []

    async def callback():
        calls.append(1)
        raise RuntimeError("boom")

    ticker = Ticker(0.001, callback)
    ticker.start()
    await asyncio.sleep(0.02)
    ticker.stop()
    assert len(calls) >= 2


def _question(qid, limit=None):
    return Question(id=qid, question_text="?", type="short-answer", time_limit=limit)


def test_question_timer_restarts_on_entry():
    timers = QuestionTimerManager(default_limit=60)
    timers.enter(_question("a", 3), locked=False)
    timers.tick("a")
    assert timers.time_left == 2
    timers.enter(_question("a", 3), locked=False)
    assert timers.time_left == 3
    timers.enter(_question("b"), locked=False)
    assert timers.time_left == 60


def test_question_timer_reports_expiry_once():
    timers = QuestionTimerManager(default_limit=60)
    timers.enter(_question("a", 2), locked=False)
    assert timers.tick("a") is None
    assert timers.tick("a") == "a"
    assert timers.tick("a") is None
    assert timers.active_question_id is None


def test_stale_question_timer_is_discarded():
    timers = QuestionTimerManager(default_limit=60)
    timers.enter(_question("a", 1), locked=False)
    assert timers.tick("b") is None
    assert timers.time_left is None


def test_locked_question_gets_no_timer():
    timers = QuestionTimerManager(default_limit=60)
    timers.enter(_question("a", 5), locked=False)
    timers.enter(_question("b", 5), locked=True)
    assert timers.time_left is None
    assert timers.active_question_id is None
