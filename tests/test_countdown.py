"""Tests for the waiting-session countdown."""

from datetime import timedelta

import pytest

from airlink.countdown import SessionCountdown, Urgency
from airlink.errors import SessionExpired
from airlink.session import DataType, Session, SessionStatus

from paths import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def countdown(clock):
    return SessionCountdown(clock() + timedelta(seconds=60), clock=clock, session_id="s1")


class TestCountdown:
    def test_full(self, countdown):
        assert countdown.remaining_seconds() == 60
        assert countdown.fraction_remaining() == 1.0
        assert countdown.format() == "1:00"
        assert countdown.urgency() is Urgency.NORMAL

    def test_floors_partial_seconds(self, countdown, clock):
        clock.advance(0.5)
        assert countdown.remaining_seconds() == 59
        assert countdown.format() == "0:59"

    @pytest.mark.parametrize("elapsed,urgency", [
        (29, Urgency.NORMAL),
        (30, Urgency.WARNING),
        (49, Urgency.WARNING),
        (50, Urgency.CRITICAL),
        (59, Urgency.CRITICAL),
        (60, Urgency.EXPIRED),
        (120, Urgency.EXPIRED),
    ])
    def test_urgency(self, countdown, clock, elapsed, urgency):
        clock.advance(elapsed)
        assert countdown.urgency() is urgency

    def test_expired(self, countdown, clock):
        clock.advance(59)
        countdown.check()
        assert not countdown.expired
        clock.advance(1)
        assert countdown.expired
        assert countdown.remaining_seconds() == 0
        with pytest.raises(SessionExpired) as exc_info:
            countdown.check()
        assert exc_info.value.session_id == "s1"

    def test_for_session(self, clock):
        session = Session(
            id="abc",
            gesture_signature="0123456789",
            sender_id="a",
            data_type=DataType.TEXT,
            plaintext_content="hi",
            status=SessionStatus.WAITING,
            created_at=clock(),
            expires_at=clock() + timedelta(seconds=60),
        )
        countdown = SessionCountdown.for_session(session, clock=clock)
        assert countdown.total_seconds == 60
        assert countdown.session_id == "abc"
        clock.advance(15)
        assert countdown.fraction_remaining() == pytest.approx(0.75)
