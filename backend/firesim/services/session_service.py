from __future__ import annotations

import time
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..logger import logger
from ..models import Participant, TrainingSession

TIMER_MIN_MINUTES = 1
TIMER_MAX_MINUTES = 360
TIMER_DEFAULT_MINUTES = 60
TIMER_URGENT_SECONDS = 5 * 60
DEFAULT_SESSION_NAME = "데모 교육 세션"
DEFAULT_TOTAL_TEAMS = 6


def now_ms() -> int:
    return int(time.time() * 1000)


def _new_session_id(db: Session) -> str:
    candidate = now_ms()
    # Two sessions created within the same millisecond get consecutive ids.
    while db.get(TrainingSession, str(candidate)) is not None:
        candidate += 1
    return str(candidate)


def list_sessions(db: Session) -> list[TrainingSession]:
    stmt = select(TrainingSession).order_by(
        TrainingSession.created_at.desc(), TrainingSession.id.desc()
    )
    return list(db.execute(stmt).scalars().all())


def get_session_or_404(db: Session, session_id: str) -> TrainingSession:
    obj = db.get(TrainingSession, session_id)
    if obj is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return obj


def create_session(db: Session, group_name: str, total_teams: int = DEFAULT_TOTAL_TEAMS) -> TrainingSession:
    group_name = group_name.strip()
    if not group_name:
        raise HTTPException(status_code=422, detail="Group name is required")
    if not 1 <= total_teams <= 12:
        raise HTTPException(status_code=422, detail="total_teams must be between 1 and 12")

    obj = TrainingSession(
        id=_new_session_id(db),
        group_name=group_name,
        total_teams=total_teams,
        is_report_enabled=False,
        is_timer_running=False,
        timer_end_time=None,
    )
    db.add(obj)
    logger.info("Training session {} created: {} ({} teams)", obj.id, group_name, total_teams)
    return obj


def update_session(db: Session, session_id: str, changes: dict[str, Any]) -> TrainingSession:
    obj = get_session_or_404(db, session_id)
    for key, value in changes.items():
        if value is None:
            continue
        setattr(obj, key, value)
    if "is_report_enabled" in changes:
        logger.info(
            "Report submission {} for session {}",
            "enabled" if obj.is_report_enabled else "disabled",
            obj.id,
        )
    return obj


def delete_session(db: Session, session_id: str) -> None:
    obj = get_session_or_404(db, session_id)
    db.delete(obj)
    db.flush()
    logger.info("Training session {} deleted", session_id)


def set_report_enabled(db: Session, session_id: str, enabled: bool) -> TrainingSession:
    return update_session(db, session_id, {"is_report_enabled": bool(enabled)})


def start_timer(
    db: Session,
    session_id: str,
    duration_minutes: int = TIMER_DEFAULT_MINUTES,
    now: int | None = None,
) -> TrainingSession:
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise HTTPException(status_code=422, detail="durationMinutes must be an integer")
    if not TIMER_MIN_MINUTES <= duration_minutes <= TIMER_MAX_MINUTES:
        raise HTTPException(
            status_code=422,
            detail=f"durationMinutes must be between {TIMER_MIN_MINUTES} and {TIMER_MAX_MINUTES}",
        )

    obj = get_session_or_404(db, session_id)
    now = now_ms() if now is None else now
    obj.timer_end_time = now + duration_minutes * 60_000
    obj.is_timer_running = True
    db.flush()
    logger.info("Timer started for session {}: {} min", obj.id, duration_minutes)
    return obj


def stop_timer(db: Session, session_id: str) -> TrainingSession:
    obj = get_session_or_404(db, session_id)
    obj.timer_end_time = None
    obj.is_timer_running = False
    db.flush()
    logger.info("Timer stopped for session {}", obj.id)
    return obj


def timer_view(session: TrainingSession, now: int | None = None) -> dict[str, Any]:
    """Countdown as the clients render it.

    The server only stores the end time; nothing is enforced when it passes.
    """
    if not session.is_timer_running or session.timer_end_time is None:
        return {
            "is_running": False,
            "end_time": None,
            "remaining_seconds": 0,
            "display": "--:--",
            "is_urgent": False,
        }

    now = now_ms() if now is None else now
    remaining_ms = session.timer_end_time - now
    if remaining_ms <= 0:
        return {
            "is_running": True,
            "end_time": session.timer_end_time,
            "remaining_seconds": 0,
            "display": "00:00",
            "is_urgent": True,
        }

    remaining_seconds = remaining_ms // 1000
    minutes, seconds = divmod(remaining_seconds, 60)
    return {
        "is_running": True,
        "end_time": session.timer_end_time,
        "remaining_seconds": remaining_seconds,
        "display": f"{minutes:02d}:{seconds:02d}",
        "is_urgent": remaining_seconds < TIMER_URGENT_SECONDS,
    }


def join_session(db: Session, session_id: str, team_id: int, name: str) -> Participant:
    session_obj = get_session_or_404(db, session_id)
    name = (name or "").strip()
    if not name:
        raise HTTPException(status_code=422, detail="Name is required")
    if not 1 <= team_id <= session_obj.total_teams:
        raise HTTPException(
            status_code=422,
            detail=f"team_id must be between 1 and {session_obj.total_teams}",
        )

    participant = (
        db.execute(
            select(Participant).where(
                Participant.session_id == session_id,
                Participant.team_id == team_id,
                Participant.name == name,
            )
        )
        .scalars()
        .first()
    )
    if participant is not None:
        logger.info("{} rejoined session {} as team {}", name, session_id, team_id)
        return participant

    participant = Participant(session_id=session_id, team_id=team_id, name=name)
    db.add(participant)
    logger.info("{} joined session {} as team {}", name, session_id, team_id)
    return participant


def seed_default_session(db: Session) -> TrainingSession | None:
    if db.execute(select(TrainingSession.id)).first() is not None:
        return None
    return create_session(db, DEFAULT_SESSION_NAME, DEFAULT_TOTAL_TEAMS)
