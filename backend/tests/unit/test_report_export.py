from __future__ import annotations

import base64
import csv
import io
import json
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi import HTTPException

from firesim.services import report_service


def make_report(team_id: int, user_name: str, **report_fields):
    return SimpleNamespace(
        id=uuid4(),
        session_id="1700000000000",
        team_id=team_id,
        user_name=user_name,
        report=report_fields,
        report_image_url=None,
        submitted_at=1_700_000_100_000,
    )


def test_csv_has_bom_header_and_flattened_cells() -> None:
    session_obj = SimpleNamespace(group_name="안전관리 1기")
    reports = [
        make_report(1, "김철수", title="1조 보고서", members="김철수", situation="첫 줄\n둘째 줄"),
        make_report(2, "이영희", title="2조 보고서", members="이영희, 박민수", schedule="즉시\r\n1주 내"),
    ]

    filename, body = report_service.export_reports_csv(session_obj, reports)

    assert filename == "안전관리 1기_전체보고서.csv"
    assert body.startswith("\ufeff")
    rows = list(csv.reader(io.StringIO(body[1:])))
    assert rows[0] == list(report_service.CSV_HEADERS)
    assert rows[1][:5] == ["1조", "김철수", "1조 보고서", "김철수", "첫 줄 둘째 줄"]
    assert rows[2][-1] == "즉시 1주 내"
    assert body[1:].startswith("팀,이름,제목,")
    assert '"1조","김철수"' in body


def test_csv_without_reports_is_not_found() -> None:
    with pytest.raises(HTTPException) as exc_info:
        report_service.export_reports_csv(SimpleNamespace(group_name="x"), [])
    assert exc_info.value.status_code == 404


def test_json_export_filename_and_body() -> None:
    report = make_report(3, "박민수", title="3조 보고서")
    filename, body = report_service.export_report_json(report)
    assert filename == "3조_박민수_보고서.json"
    parsed = json.loads(body)
    assert parsed["report"]["title"] == "3조 보고서"
    assert parsed["teamId"] == 3
    assert "\n  " in body


def test_content_disposition_is_rfc5987_encoded() -> None:
    header = report_service.content_disposition("1조_보고서.json")
    assert header.startswith("attachment; filename*=UTF-8''")
    assert "%EB%B3%B4%EA%B3%A0%EC%84%9C" in header


def test_attach_image_writes_file_under_media_dir(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(report_service, "REPORT_MEDIA_DIR", tmp_path)
    report = make_report(4, "최지우")
    raw = b"\x89PNG\r\n\x1a\nfake"

    report_service.attach_report_image(report, base64.b64encode(raw).decode(), "image/png")

    assert report.report_image_url.startswith("/media/reports/1700000000000/4조_최지우_")
    assert report.report_image_url.endswith(".png")
    stored = tmp_path / report.report_image_url.removeprefix("/media/")
    assert stored.read_bytes() == raw


def test_attach_image_rejects_invalid_base64(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(report_service, "REPORT_MEDIA_DIR", tmp_path)
    with pytest.raises(HTTPException) as exc_info:
        report_service.attach_report_image(make_report(1, "a"), "not base64!!", "image/png")
    assert exc_info.value.status_code == 422


def test_attach_image_rejects_unknown_mime(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(report_service, "REPORT_MEDIA_DIR", tmp_path)
    with pytest.raises(HTTPException) as exc_info:
        report_service.attach_report_image(make_report(1, "a"), "aGVsbG8=", "image/gif")
    assert exc_info.value.status_code == 422
