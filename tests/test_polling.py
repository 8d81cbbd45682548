"""
Tests for polling.poll_until -- bounded waits on simulated time.

Tests cover:
- first check runs immediately
- check k runs at k * interval; success iff it lands before the deadline
- timeout reports elapsed time and attempt count
- cancellation checked before every poll
- non-positive timeout rejected
"""

import pytest

from fakes import FakeClock
from fpreader.core.errors import CaptureCancelled
from fpreader.polling import PollTimeout, poll_until


def _succeed_on(n):
    """Check returning 'ok' on its n-th call (1-based)."""
    calls = []

    def check():
        calls.append(1)
        return 'ok' if len(calls) >= n else None
    return check, calls


def test_immediate_success_does_not_sleep():
    clock = FakeClock()
    check, calls = _succeed_on(1)
    assert poll_until(check, 1.0, 0.1, clock=clock, sleep=clock.sleep) == 'ok'
    assert len(calls) == 1
    assert clock.sleeps == []


def test_success_within_deadline():
    """Finger placed at t=300ms with 100ms polling and 500ms timeout."""
    clock = FakeClock()
    check, calls = _succeed_on(4)
    assert poll_until(check, 0.5, 0.1, clock=clock, sleep=clock.sleep) == 'ok'
    assert len(calls) == 4
    assert clock.now == pytest.approx(0.3)


def test_timeout_when_result_arrives_too_late():
    clock = FakeClock()
    check, calls = _succeed_on(11)
    with pytest.raises(PollTimeout) as exc:
        poll_until(check, 0.5, 0.1, clock=clock, sleep=clock.sleep)
    assert exc.value.elapsed_s >= 0.5
    assert exc.value.attempts == len(calls)
    assert len(calls) == 5


def test_cancel_checked_before_each_poll():
    clock = FakeClock()
    check, calls = _succeed_on(100)
    flags = iter([False, False, True])
    with pytest.raises(CaptureCancelled):
        poll_until(check, 5.0, 0.1, clock=clock, sleep=clock.sleep,
                   should_cancel=lambda: next(flags))
    assert len(calls) == 2


@pytest.mark.parametrize('timeout', [0, -1.0])
def test_rejects_non_positive_timeout(timeout):
    with pytest.raises(ValueError):
        poll_until(lambda: 'ok', timeout, 0.1)
