from __future__ import annotations

import base64
import binascii
import csv
import io
import json
import os
import re
from pathlib import Path
from typing import Any
from urllib.parse import quote

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..enums import WizardStep
from ..logger import logger
from ..models import Participant, Report, TrainingSession
from ..scenario import team_name
from .session_service import now_ms

REPORT_MEDIA_DIR = Path(os.getenv("REPORT_MEDIA_DIR", "./media"))
REPORT_MEDIA_URL_PREFIX = "/media"
MAX_REPORT_IMAGE_BYTES = 10 * 1024 * 1024

CSV_HEADERS = (
    "팀",
    "이름",
    "제목",
    "팀원",
    "현상파악",
    "문제정의",
    "원인분석",
    "해결방안",
    "재발방지",
    "일정",
)
CSV_REPORT_FIELDS = (
    "title",
    "members",
    "situation",
    "definition",
    "cause",
    "solution",
    "prevention",
    "schedule",
)
IMAGE_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg"}
_UNSAFE_FILENAME_CHARS = re.compile(r"[\\/:*?\"<>|\s]+")


def submit_report(
    db: Session,
    participant: Participant,
    session_obj: TrainingSession,
    report: dict[str, Any],
) -> Report:
    if not session_obj.is_report_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Report submission is disabled for this session",
        )
    if participant.current_step != WizardStep.REPORT:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Report can only be submitted from the REPORT step",
        )
    if not str(report.get("title") or "").strip() or not str(report.get("members") or "").strip():
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Title and members are required",
        )

    obj = (
        db.execute(
            select(Report).where(
                Report.session_id == participant.session_id,
                Report.team_id == participant.team_id,
                Report.user_name == participant.name,
            )
        )
        .scalars()
        .first()
    )
    if obj is None:
        obj = Report(
            session_id=participant.session_id,
            team_id=participant.team_id,
            user_name=participant.name,
        )
        db.add(obj)

    obj.report = dict(report)
    obj.submitted_at = now_ms()
    participant.final_report = dict(report)
    logger.info(
        "Report submitted: session {} team {} by {}",
        participant.session_id,
        participant.team_id,
        participant.name,
    )
    return obj


def list_reports(db: Session, session_id: str) -> list[Report]:
    stmt = (
        select(Report)
        .where(Report.session_id == session_id)
        .order_by(Report.team_id.asc(), Report.submitted_at.asc())
    )
    return list(db.execute(stmt).scalars().all())


def get_report_by_team(db: Session, session_id: str, team_id: int) -> Report:
    stmt = (
        select(Report)
        .where(Report.session_id == session_id, Report.team_id == team_id)
        .order_by(Report.submitted_at.desc())
    )
    obj = db.execute(stmt).scalars().first()
    if obj is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return obj


def get_report_or_404(db: Session, report_id) -> Report:
    obj = db.get(Report, report_id)
    if obj is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return obj


def _csv_cell(value: Any) -> str:
    return str(value or "").replace("\r\n", " ").replace("\n", " ").replace("\r", " ")


def content_disposition(filename: str) -> str:
    return f"attachment; filename*=UTF-8''{quote(filename)}"


def export_reports_csv(session_obj: TrainingSession, reports: list[Report]) -> tuple[str, str]:
    """Return ``(filename, body)``; body starts with a BOM so Excel reads UTF-8."""
    if not reports:
        raise HTTPException(status_code=404, detail="No reports to export")

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    buffer.write(",".join(CSV_HEADERS) + "\n")
    for item in reports:
        data = item.report or {}
        writer.writerow(
            [
                team_name(item.team_id),
                _csv_cell(item.user_name),
                *(_csv_cell(data.get(field)) for field in CSV_REPORT_FIELDS),
            ]
        )
    return f"{session_obj.group_name}_전체보고서.csv", "\ufeff" + buffer.getvalue()


def export_report_json(report: Report) -> tuple[str, str]:
    body = json.dumps(
        {
            "sessionId": report.session_id,
            "teamId": report.team_id,
            "userName": report.user_name,
            "report": report.report or {},
            "reportImageUrl": report.report_image_url,
            "submittedAt": report.submitted_at,
        },
        ensure_ascii=False,
        indent=2,
    )
    return f"{report.team_id}조_{report.user_name}_보고서.json", body


def _safe_filename_part(value: str) -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", value).strip("._")
    return cleaned or "report"


def attach_report_image(report: Report, image_base64: str, mime_type: str) -> Report:
    extension = IMAGE_EXTENSIONS.get(mime_type)
    if extension is None:
        raise HTTPException(status_code=422, detail="Only PNG and JPEG images are supported")
    try:
        raw = base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=422, detail="imageBase64 is not valid base64") from exc
    if not raw:
        raise HTTPException(status_code=422, detail="Image is empty")
    if len(raw) > MAX_REPORT_IMAGE_BYTES:
        raise HTTPException(status_code=413, detail="Image is too large")

    relative = Path("reports") / _safe_filename_part(report.session_id) / (
        f"{report.team_id}조_{_safe_filename_part(report.user_name)}_{now_ms()}.{extension}"
    )
    target = REPORT_MEDIA_DIR / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(raw)

    report.report_image_url = f"{REPORT_MEDIA_URL_PREFIX}/{relative.as_posix()}"
    logger.info("Infographic stored for report {} at {}", report.id, report.report_image_url)
    return report
