from __future__ import annotations

from types import SimpleNamespace

from firesim.services.session_service import timer_view

NOW = 1_700_000_000_000


def make_session(running: bool, end_time: int | None):
    return SimpleNamespace(is_timer_running=running, timer_end_time=end_time)


def test_stopped_timer_shows_placeholder() -> None:
    view = timer_view(make_session(False, None), now=NOW)
    assert view["display"] == "--:--"
    assert view["is_running"] is False
    assert view["is_urgent"] is False


def test_running_timer_formats_minutes_and_seconds() -> None:
    view = timer_view(make_session(True, NOW + (59 * 60 + 7) * 1000), now=NOW)
    assert view["display"] == "59:07"
    assert view["remaining_seconds"] == 59 * 60 + 7
    assert view["is_urgent"] is False


def test_last_five_minutes_are_urgent() -> None:
    view = timer_view(make_session(True, NOW + (4 * 60 + 59) * 1000), now=NOW)
    assert view["display"] == "04:59"
    assert view["is_urgent"] is True


def test_exactly_five_minutes_is_not_urgent() -> None:
    assert timer_view(make_session(True, NOW + 5 * 60 * 1000), now=NOW)["is_urgent"] is False


def test_expired_timer_shows_zero() -> None:
    view = timer_view(make_session(True, NOW - 1), now=NOW)
    assert view["display"] == "00:00"
    assert view["remaining_seconds"] == 0
    assert view["is_running"] is True


def test_long_timer_keeps_total_minutes() -> None:
    view = timer_view(make_session(True, NOW + 360 * 60 * 1000), now=NOW)
    assert view["display"] == "360:00"
