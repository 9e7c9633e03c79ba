from __future__ import annotations

import pytest
from pydantic import ValidationError

from firesim.schemas import (
    JoinRequest,
    NoteCreate,
    ReportImageAttach,
    TimerStartRequest,
    TrainingSessionCreate,
    TrainingSessionUpdate,
)


def test_session_create_defaults_to_six_teams() -> None:
    payload = TrainingSessionCreate(group_name="  신입사원 교육  ")
    assert payload.group_name == "신입사원 교육"
    assert payload.total_teams == 6


@pytest.mark.parametrize("total_teams", [0, 13])
def test_session_create_rejects_team_count_out_of_range(total_teams: int) -> None:
    with pytest.raises(ValidationError):
        TrainingSessionCreate(group_name="교육", total_teams=total_teams)


def test_session_create_rejects_blank_name() -> None:
    with pytest.raises(ValidationError):
        TrainingSessionCreate(group_name="   ")


def test_session_update_forbids_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        TrainingSessionUpdate(is_timer_running=True)


def test_join_request_strips_name() -> None:
    assert JoinRequest(team_id=2, name=" 이영희 ").name == "이영희"


def test_join_request_rejects_blank_name() -> None:
    with pytest.raises(ValidationError):
        JoinRequest(team_id=1, name="  ")


@pytest.mark.parametrize("minutes", [0, 361])
def test_timer_duration_bounds(minutes: int) -> None:
    with pytest.raises(ValidationError):
        TimerStartRequest(duration_minutes=minutes)


def test_timer_duration_defaults_to_an_hour() -> None:
    assert TimerStartRequest().duration_minutes == 60


def test_note_is_trimmed_and_not_blank() -> None:
    assert NoteCreate(text="  소화기 점검일 확인 ").text == "소화기 점검일 확인"
    with pytest.raises(ValidationError):
        NoteCreate(text="   ")


def test_report_image_strips_data_url_prefix() -> None:
    payload = ReportImageAttach(image_base64="data:image/png;base64,aGVsbG8=")
    assert payload.image_base64 == "aGVsbG8="
    assert payload.mime_type == "image/png"


def test_report_image_rejects_unsupported_mime() -> None:
    with pytest.raises(ValidationError):
        ReportImageAttach(image_base64="aGVsbG8=", mime_type="image/gif")
